"""New training content announcements for tier owners."""

import logging
from typing import Optional

from sqlalchemy import select

from magicpaws.core.database import (
    get_db_session,
    content_lessons,
    content_modules,
    content_tiers,
    notification_preferences,
    tier_purchases,
    users,
)
from magicpaws.features.notifications import templates
from magicpaws.features.notifications.email import EmailMessage, EmailSender, get_email_sender

logger = logging.getLogger("magicpaws")


def announce_new_lesson(lesson_id: str, sender: Optional[EmailSender] = None) -> int:
    """
    Email every owner of the lesson's tier who allows training updates.

    Best effort per recipient. Returns the number of emails sent.
    """
    with get_db_session() as session:
        lesson = session.execute(
            select(
                content_lessons.c.title,
                content_lessons.c.is_published,
                content_tiers.c.id.label("tier_id"),
                content_tiers.c.name.label("tier_name"),
            )
            .join(content_modules, content_modules.c.id == content_lessons.c.module_id)
            .join(content_tiers, content_tiers.c.id == content_modules.c.tier_id)
            .where(content_lessons.c.id == lesson_id)
        ).first()
        if lesson is None or not lesson.is_published:
            return 0
        owners = session.execute(
            select(users.c.id, users.c.name, users.c.email, notification_preferences.c.training_updates)
            .join(tier_purchases, tier_purchases.c.user_id == users.c.id)
            .outerjoin(notification_preferences, notification_preferences.c.user_id == users.c.id)
            .where(tier_purchases.c.tier_id == lesson.tier_id)
        ).fetchall()

    recipients = [row for row in owners if row.email and row.training_updates is not False]
    if not recipients:
        return 0
    sender = sender or get_email_sender()

    sent = 0
    for row in recipients:
        rendered = templates.new_training_content(row.name or "there", lesson.tier_name, lesson.title)
        try:
            sender.send(EmailMessage(row.email, rendered.subject, rendered.html))
            sent += 1
        except Exception:
            logger.warning("content.announcement_failed", extra={"user_id": row.id, "lesson_id": lesson_id}, exc_info=True)

    logger.info("content.lesson_announced", extra={"lesson_id": lesson_id, "sent": sent, "recipients": len(recipients)})
    return sent
