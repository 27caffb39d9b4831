"""
Notification preferences.

A user without a stored row has every category enabled.
"""

import logging
from typing import Dict, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from magicpaws.core.database import get_db_session, notification_preferences
from magicpaws.core.errors import ValidationError

logger = logging.getLogger("magicpaws")

PREFERENCE_KEYS = (
    "booking_reminders",
    "booking_updates",
    "invoice_notifications",
    "marketing_emails",
    "training_updates",
)

DEFAULT_PREFERENCES: Dict[str, bool] = {key: True for key in PREFERENCE_KEYS}


def _from_row(row) -> Dict[str, bool]:
    if row is None:
        return dict(DEFAULT_PREFERENCES)
    return {key: bool(getattr(row, key)) for key in PREFERENCE_KEYS}


def get_preferences(user_id: str) -> Dict[str, bool]:
    with get_db_session() as session:
        row = session.execute(
            select(notification_preferences).where(notification_preferences.c.user_id == user_id)
        ).first()
    return _from_row(row)


def wants(user_id: Optional[str], key: str) -> bool:
    """True when the user has not opted out of the category."""
    if not user_id:
        return False
    return get_preferences(user_id)[key]


def update_preferences(user_id: str, changes: Dict[str, Optional[bool]]) -> Dict[str, bool]:
    """
    Apply a partial update; keys left out or None keep their value.

    Raises:
        ValidationError: unknown preference key
    """
    unknown = sorted(set(changes) - set(PREFERENCE_KEYS))
    if unknown:
        raise ValidationError(
            "Unknown notification preference",
            fields=[{"field": key, "message": "unknown preference"} for key in unknown],
        )
    values = {key: bool(value) for key, value in changes.items() if value is not None}

    def _apply(session) -> bool:
        existing = session.execute(
            select(notification_preferences.c.id).where(notification_preferences.c.user_id == user_id)
        ).first()
        if existing is None:
            return False
        if values:
            session.execute(
                update(notification_preferences)
                .where(notification_preferences.c.id == existing.id)
                .values(**values)
            )
        return True

    with get_db_session() as session:
        updated = _apply(session)
    if not updated:
        try:
            with get_db_session() as session:
                session.execute(insert(notification_preferences).values(user_id=user_id, **{**DEFAULT_PREFERENCES, **values}))
        except IntegrityError:
            # Created concurrently; apply on top of it
            with get_db_session() as session:
                _apply(session)

    logger.info("notifications.preferences_updated", extra={"user_id": user_id, "changed": sorted(values)})
    return get_preferences(user_id)
