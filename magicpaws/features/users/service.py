"""
User domain service.
- elevate_if_admin_email(principal, configured_admin_email)
- sign_in(user_id, email, name)
- get_user(user_id)
- set_role(actor, user_id, role)
"""

import logging
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from magicpaws.core.config import settings
from magicpaws.core.database import get_db_session, users
from magicpaws.core.errors import ConflictError, NotFoundError, PermissionError, ValidationError
from magicpaws.models.principal import Principal, Role

logger = logging.getLogger("magicpaws")


def elevate_if_admin_email(principal: Principal, configured_admin_email: Optional[str]) -> Principal:
    """Return the principal with role ADMIN when its email is the configured admin address.

    Comparison ignores case and surrounding whitespace. An unset admin
    email never elevates, and the rule never demotes.
    """
    admin_email = Principal.normalize_email(configured_admin_email)
    if not admin_email or principal.role == Role.ADMIN:
        return principal
    if Principal.normalize_email(principal.email) != admin_email:
        return principal
    return principal.model_copy(update={"role": Role.ADMIN})


def _row_to_principal(row) -> Principal:
    return Principal(id=row.id, email=row.email, name=row.name, role=Role(row.role))


def get_user(user_id: str) -> Optional[Principal]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.id == user_id)).first()
        return _row_to_principal(row) if row else None


def _persist_role(user_id: str, role: Role) -> None:
    with get_db_session() as session:
        session.execute(update(users).where(users.c.id == user_id).values(role=role.value))


def sign_in(user_id: str, email: str, name: Optional[str] = None, admin_email: Optional[str] = None) -> Principal:
    """Resolve the session principal, creating the account on first sight.

    The admin-email rule runs both when the account is created and on every
    later sign-in, so configuring ADMIN_EMAIL after the account exists still
    takes effect.
    """
    configured = admin_email if admin_email is not None else settings.ADMIN_EMAIL
    normalized = Principal.normalize_email(email)
    if not normalized:
        raise ValidationError.for_field("email", "Email is required")

    existing = get_user(user_id)
    if existing is None:
        candidate = elevate_if_admin_email(
            Principal(id=user_id, email=normalized, name=name, role=Role.CLIENT),
            configured,
        )
        try:
            with get_db_session() as session:
                session.execute(
                    insert(users).values(
                        id=candidate.id,
                        email=candidate.email,
                        name=candidate.name,
                        role=candidate.role.value,
                    )
                )
            logger.info("user.created", extra={"user_id": user_id, "role": candidate.role.value})
            return candidate
        except IntegrityError:
            # Concurrent first sign-in for the same id, or email already linked elsewhere
            existing = get_user(user_id)
            if existing is None:
                raise ConflictError("Email is already linked to another account", code="email_in_use")

    elevated = elevate_if_admin_email(existing, configured)
    if elevated.role != existing.role:
        _persist_role(existing.id, elevated.role)
        logger.info("user.role_elevated", extra={"user_id": existing.id, "role": elevated.role.value})
    return elevated


def set_role(actor: Principal, user_id: str, role: Role) -> Principal:
    """Explicit role change by an administrator."""
    if actor.role != Role.ADMIN:
        raise PermissionError("Only administrators can change roles")
    target = get_user(user_id)
    if target is None:
        raise NotFoundError("User not found")
    if target.role != role:
        _persist_role(user_id, role)
        logger.info(
            "user.role_changed",
            extra={"user_id": user_id, "actor_id": actor.id, "from_role": target.role.value, "role": role.value},
        )
    return target.model_copy(update={"role": role})
