"""
Bookings and bookable services.

Clients request a slot for a service; the admin confirms, rejects or
otherwise moves the booking through its lifecycle. A client may only
cancel their own booking while it is still PENDING.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from magicpaws.core.config import settings
from magicpaws.core.database import (
    get_db_session,
    bookings,
    client_profiles,
    service_types,
    users,
    ensure_utc,
    new_id,
)
from magicpaws.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionError,
    UnauthenticatedError,
    ValidationError,
)
from magicpaws.features.content.service import slugify
from magicpaws.features.notifications import templates
from magicpaws.features.notifications.email import EmailMessage, EmailSender, get_email_sender
from magicpaws.features.notifications.service import wants
from magicpaws.models.principal import Principal

logger = logging.getLogger("magicpaws")

PENDING = "PENDING"
CONFIRMED = "CONFIRMED"
REJECTED = "REJECTED"
CANCELLED = "CANCELLED"
COMPLETED = "COMPLETED"
NO_SHOW = "NO_SHOW"
BOOKING_STATUSES = (PENDING, CONFIRMED, REJECTED, CANCELLED, COMPLETED, NO_SHOW)


def format_slot(confirmed_date: Optional[datetime], confirmed_time: Optional[str], tz: Optional[str] = None):
    """Human date and time for emails, in the business timezone. Missing parts read "TBD"."""
    if confirmed_date is None:
        return "TBD", confirmed_time or "TBD"
    local = ensure_utc(confirmed_date).astimezone(ZoneInfo(tz or settings.BUSINESS_TIMEZONE))
    date = f"{local:%A, %B} {local.day}, {local.year}"
    if confirmed_time:
        return date, confirmed_time
    hour = local.hour % 12 or 12
    return date, f"{hour}:{local:%M} {'AM' if local.hour < 12 else 'PM'}"


# --- services ---------------------------------------------------------------


def list_services(include_inactive: bool = False) -> List[Dict[str, Any]]:
    query = select(service_types).order_by(service_types.c.name)
    if not include_inactive:
        query = query.where(service_types.c.is_active.is_(True))
    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [dict(row._mapping) for row in rows]


def create_service_type(
    name: str,
    base_price: Decimal,
    *,
    slug: Optional[str] = None,
    description: Optional[str] = None,
    duration_minutes: Optional[int] = None,
    is_active: bool = True,
) -> Dict[str, Any]:
    if not name or not name.strip():
        raise ValidationError.for_field("name", "Name is required")
    if base_price is None or Decimal(str(base_price)) < 0:
        raise ValidationError.for_field("base_price", "Price must be zero or more")

    service_id = new_id()
    try:
        with get_db_session() as session:
            session.execute(
                insert(service_types).values(
                    id=service_id,
                    name=name.strip(),
                    slug=slug or slugify(name),
                    description=description,
                    duration_minutes=duration_minutes,
                    base_price=base_price,
                    is_active=is_active,
                )
            )
    except IntegrityError:
        raise ConflictError("A service with this slug already exists", code="duplicate_slug")

    with get_db_session() as session:
        row = session.execute(select(service_types).where(service_types.c.id == service_id)).first()
    return dict(row._mapping)


# --- bookings ---------------------------------------------------------------


def _booking_query():
    return (
        select(
            bookings,
            service_types.c.name.label("service_name"),
            client_profiles.c.user_id.label("client_user_id"),
            users.c.name.label("client_name"),
            users.c.email.label("client_email"),
        )
        .join(service_types, service_types.c.id == bookings.c.service_type_id)
        .join(client_profiles, client_profiles.c.id == bookings.c.client_id)
        .join(users, users.c.id == client_profiles.c.user_id)
    )


def _to_dict(row) -> Dict[str, Any]:
    data = dict(row._mapping)
    for key in ("requested_date", "confirmed_date", "created_at", "updated_at"):
        data[key] = ensure_utc(data.get(key))
    return data


def _client_profile_id(session, user_id: str) -> Optional[str]:
    row = session.execute(select(client_profiles.c.id).where(client_profiles.c.user_id == user_id)).first()
    return row.id if row else None


def get_or_create_client_profile(user_id: str) -> str:
    with get_db_session() as session:
        profile_id = _client_profile_id(session, user_id)
    if profile_id:
        return profile_id
    try:
        with get_db_session() as session:
            profile_id = new_id()
            session.execute(insert(client_profiles).values(id=profile_id, user_id=user_id))
        return profile_id
    except IntegrityError:
        with get_db_session() as session:
            return _client_profile_id(session, user_id)


def get_booking(principal: Optional[Principal], booking_id: str) -> Dict[str, Any]:
    """
    Raises:
        NotFoundError: unknown booking
        PermissionError: caller is neither the owner nor an admin
    """
    if principal is None:
        raise UnauthenticatedError("Authentication required")
    with get_db_session() as session:
        row = session.execute(_booking_query().where(bookings.c.id == booking_id)).first()
    if row is None:
        raise NotFoundError("Booking not found")
    if not principal.is_admin and row.client_user_id != principal.id:
        raise PermissionError("Not your booking")
    return _to_dict(row)


def create_booking(
    principal: Optional[Principal],
    service_type_id: str,
    requested_date: datetime,
    *,
    requested_time: Optional[str] = None,
    duration_minutes: Optional[int] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Request a booking; the client profile is created on first use.

    Raises:
        ValidationError: service missing or inactive
    """
    if principal is None:
        raise UnauthenticatedError("Authentication required")

    with get_db_session() as session:
        service = session.execute(select(service_types).where(service_types.c.id == service_type_id)).first()
    if service is None or not service.is_active:
        raise ValidationError.for_field("service_type_id", "Service not available")

    client_id = get_or_create_client_profile(principal.id)
    booking_id = new_id()
    with get_db_session() as session:
        session.execute(
            insert(bookings).values(
                id=booking_id,
                client_id=client_id,
                service_type_id=service_type_id,
                requested_date=requested_date,
                requested_time=requested_time,
                duration_minutes=duration_minutes or service.duration_minutes,
                client_notes=notes,
                status=PENDING,
            )
        )
    logger.info("booking.created", extra={"user_id": principal.id, "booking_id": booking_id})
    return get_booking(principal, booking_id)


def list_bookings(principal: Optional[Principal], status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    if principal is None:
        raise UnauthenticatedError("Authentication required")
    if status is not None and status not in BOOKING_STATUSES:
        raise ValidationError.for_field("status", "Unknown booking status")

    query = _booking_query().order_by(bookings.c.requested_date.desc()).limit(limit)
    if not principal.is_admin:
        query = query.where(client_profiles.c.user_id == principal.id)
    if status:
        query = query.where(bookings.c.status == status)

    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [_to_dict(row) for row in rows]


ADMIN_FIELDS = ("status", "confirmed_date", "confirmed_time", "admin_notes", "rejection_reason")


def update_booking(
    principal: Optional[Principal],
    booking_id: str,
    changes: Dict[str, Any],
    sender: Optional[EmailSender] = None,
) -> Dict[str, Any]:
    """
    Apply changes to a booking.

    Admins may set any of ADMIN_FIELDS. Clients may only move their own
    PENDING booking to CANCELLED.
    """
    current = get_booking(principal, booking_id)
    values = {key: value for key, value in changes.items() if key in ADMIN_FIELDS and value is not None}
    status = values.get("status")
    if status is not None and status not in BOOKING_STATUSES:
        raise ValidationError.for_field("status", "Unknown booking status")

    if not principal.is_admin:
        if set(values) != {"status"} or status != CANCELLED:
            raise PermissionError("You can only cancel your bookings")
        if current["status"] != PENDING:
            raise ValidationError.for_field("status", "Can only cancel pending bookings")

    if not values:
        return current

    with get_db_session() as session:
        session.execute(update(bookings).where(bookings.c.id == booking_id).values(**values))
    logger.info(
        "booking.updated",
        extra={"user_id": principal.id, "booking_id": booking_id, "status": status, "fields": sorted(values)},
    )

    updated = get_booking(principal, booking_id)
    if status == CONFIRMED and current["status"] != CONFIRMED:
        _send_confirmation(updated, sender)
    return updated


def _send_confirmation(booking: Dict[str, Any], sender: Optional[EmailSender]) -> None:
    """Best effort: a failed email never fails the booking update."""
    if not booking.get("client_email") or not wants(booking["client_user_id"], "booking_updates"):
        return
    date, time = format_slot(booking.get("confirmed_date"), booking.get("confirmed_time"))
    rendered = templates.booking_confirmation(
        booking.get("client_name") or "Client",
        booking.get("service_name") or "Service",
        date,
        time,
    )
    try:
        (sender or get_email_sender()).send(EmailMessage(booking["client_email"], rendered.subject, rendered.html))
    except Exception:
        logger.exception("booking.confirmation_email_failed", extra={"booking_id": booking["id"]})
