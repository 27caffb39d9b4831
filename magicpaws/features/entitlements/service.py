"""
magicpaws/features/entitlements/service.py

Entitlement resolution for training content.

A lesson is reachable by a principal when the principal is an ADMIN, the
lesson is a free preview, or the principal owns the lesson's tier.
resolve_access is the single decision point; everything else here feeds
it data or turns its decisions into errors.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Set
import logging

from sqlalchemy import select, and_

from magicpaws.core.database import get_db_session, content_lessons, content_modules, content_tiers, tier_purchases
from magicpaws.core.errors import ConflictError, NotFoundError, PermissionError, UnauthenticatedError
from magicpaws.core.metrics import access_decisions_total
from magicpaws.core.tracing import start_span
from magicpaws.models.principal import Principal, Role


logger = logging.getLogger(__name__)

PurchaseLookup = Callable[[str, str], bool]


class AccessReason(str, Enum):
    ADMIN = "admin"
    FREE_PREVIEW = "free_preview"
    PURCHASED = "purchased"
    UNAUTHENTICATED = "unauthenticated"
    NOT_PURCHASED = "not_purchased"


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: AccessReason

    @classmethod
    def grant(cls, reason: AccessReason) -> "AccessDecision":
        return cls(granted=True, reason=reason)

    @classmethod
    def deny(cls, reason: AccessReason) -> "AccessDecision":
        return cls(granted=False, reason=reason)


@dataclass(frozen=True)
class LessonRef:
    """The slice of a lesson the resolver reasons over."""
    id: str
    tier_id: Optional[str]
    is_free_preview: bool = False
    is_published: bool = True
    module_published: bool = True

    @property
    def visible(self) -> bool:
        """Published itself and inside a published module."""
        return self.is_published and self.module_published


def has_tier_purchase(user_id: str, tier_id: str) -> bool:
    with get_db_session() as session:
        row = session.execute(
            select(tier_purchases.c.id).where(
                and_(
                    tier_purchases.c.user_id == user_id,
                    tier_purchases.c.tier_id == tier_id,
                )
            )
        ).first()
        return row is not None


def list_purchased_tier_ids(user_id: str) -> Set[str]:
    with get_db_session() as session:
        rows = session.execute(
            select(tier_purchases.c.tier_id).where(tier_purchases.c.user_id == user_id)
        ).fetchall()
        return {row.tier_id for row in rows}


def resolve_access(
    principal: Optional[Principal],
    lesson: LessonRef,
    purchase_lookup: Optional[PurchaseLookup] = None,
) -> AccessDecision:
    """Decide whether principal may act on lesson. First matching rule wins.

    1. anonymous            -> deny (unauthenticated)
    2. ADMIN                -> grant (admin)
    3. free preview         -> grant (free_preview)
    4. tier owned           -> grant (purchased)
    5. otherwise            -> deny (not_purchased)

    Raises NotFoundError when the purchase check is reached and the lesson
    has no resolvable tier. Reads only; never writes purchase or progress
    records.
    """
    if principal is None:
        return AccessDecision.deny(AccessReason.UNAUTHENTICATED)
    if principal.role == Role.ADMIN:
        return AccessDecision.grant(AccessReason.ADMIN)
    if lesson.is_free_preview:
        return AccessDecision.grant(AccessReason.FREE_PREVIEW)
    if not lesson.tier_id:
        raise NotFoundError(f"Tier for lesson {lesson.id} not found")

    lookup = purchase_lookup or has_tier_purchase
    if lookup(principal.id, lesson.tier_id):
        return AccessDecision.grant(AccessReason.PURCHASED)
    return AccessDecision.deny(AccessReason.NOT_PURCHASED)


def check_lesson_access(
    principal: Optional[Principal],
    lesson: LessonRef,
    purchase_lookup: Optional[PurchaseLookup] = None,
) -> AccessDecision:
    """resolve_access plus tracing and decision counters."""
    with start_span("entitlements.resolve_access", {"lesson_id": lesson.id, "user_id": principal.id if principal else None}) as span:
        decision = resolve_access(principal, lesson, purchase_lookup)
        if span is not None:
            span.set_attribute("access.granted", decision.granted)
            span.set_attribute("access.reason", decision.reason.value)

    access_decisions_total.inc(labels={
        "outcome": "grant" if decision.granted else "deny",
        "reason": decision.reason.value,
    })
    logger.debug(
        "entitlements.decision",
        extra={
            "lesson_id": lesson.id,
            "user_id": principal.id if principal else None,
            "granted": decision.granted,
            "reason": decision.reason.value,
        },
    )
    return decision


def require_access(
    principal: Optional[Principal],
    lesson: LessonRef,
    purchase_lookup: Optional[PurchaseLookup] = None,
) -> AccessDecision:
    """Raise for a deny decision; return the grant otherwise."""
    decision = check_lesson_access(principal, lesson, purchase_lookup)
    if decision.granted:
        return decision
    if decision.reason == AccessReason.UNAUTHENTICATED:
        raise UnauthenticatedError("Authentication required")
    raise PermissionError("You do not have access to this lesson", code="not_purchased")


def load_lesson_ref(lesson_id: str) -> LessonRef:
    """Fetch a lesson and resolve its owning tier through its module."""
    with get_db_session() as session:
        row = session.execute(
            select(
                content_lessons.c.id,
                content_lessons.c.is_free_preview,
                content_lessons.c.is_published,
                content_modules.c.is_published.label("module_published"),
                content_tiers.c.id.label("tier_id"),
            )
            .select_from(
                content_lessons
                .outerjoin(content_modules, content_modules.c.id == content_lessons.c.module_id)
                .outerjoin(content_tiers, content_tiers.c.id == content_modules.c.tier_id)
            )
            .where(content_lessons.c.id == lesson_id)
        ).first()

    if row is None:
        raise NotFoundError("Lesson not found")
    return LessonRef(
        id=row.id,
        tier_id=row.tier_id,
        is_free_preview=bool(row.is_free_preview),
        is_published=bool(row.is_published),
        module_published=bool(row.module_published),
    )


def ensure_not_owned(user_id: str, tier_id: str) -> None:
    """Refuse a purchase intent for a tier the user already owns."""
    if has_tier_purchase(user_id, tier_id):
        logger.info("entitlements.already_owned", extra={"user_id": user_id, "tier_id": tier_id})
        raise ConflictError("You already own this tier", code="already_owned")
