"""
Next-day booking reminders.

The sweep runs once a day. It emails every client with a CONFIRMED booking
whose confirmed date falls on tomorrow in the business timezone. One
recipient failing never stops the others.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, and_

from magicpaws.core.config import settings
from magicpaws.core.logging import log_event
from magicpaws.core.database import (
    get_db_session,
    bookings,
    client_profiles,
    notification_preferences,
    service_types,
    users,
    utc_now,
    ensure_utc,
)
from magicpaws.core.metrics import reminder_emails_total
from magicpaws.core.tracing import start_span
from magicpaws.features.bookings.service import CONFIRMED, format_slot
from magicpaws.features.notifications import templates
from magicpaws.features.notifications.email import EmailMessage, EmailSender, get_email_sender

logger = logging.getLogger("magicpaws")


@dataclass
class ReminderSweepResult:
    total_bookings: int = 0
    sent_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "success": True,
            "total_bookings": self.total_bookings,
            "sent_count": self.sent_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "failures": list(self.failures),
        }


def reminder_window(now: Optional[datetime] = None, tz: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    Tomorrow as a half-open UTC interval [start, end).

    start is the next local midnight in the business timezone and the
    window is 24 hours long.
    """
    zone = ZoneInfo(tz or settings.BUSINESS_TIMEZONE)
    local_now = ensure_utc(now or utc_now()).astimezone(zone)
    tomorrow = local_now.date() + timedelta(days=1)
    start = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=zone)
    start_utc = start.astimezone(timezone.utc)
    return start_utc, start_utc + timedelta(hours=24)


def _due_bookings(start: datetime, end: datetime):
    query = (
        select(
            bookings.c.id,
            bookings.c.confirmed_date,
            bookings.c.confirmed_time,
            service_types.c.name.label("service_name"),
            users.c.id.label("user_id"),
            users.c.name.label("client_name"),
            users.c.email.label("client_email"),
            notification_preferences.c.booking_reminders,
        )
        .join(client_profiles, client_profiles.c.id == bookings.c.client_id)
        .join(users, users.c.id == client_profiles.c.user_id)
        .outerjoin(service_types, service_types.c.id == bookings.c.service_type_id)
        .outerjoin(notification_preferences, notification_preferences.c.user_id == users.c.id)
        .where(
            and_(
                bookings.c.status == CONFIRMED,
                bookings.c.confirmed_date >= start,
                bookings.c.confirmed_date < end,
            )
        )
        .order_by(bookings.c.confirmed_date)
    )
    with get_db_session() as session:
        return session.execute(query).fetchall()


def run_reminder_sweep(now: Optional[datetime] = None, sender: Optional[EmailSender] = None) -> ReminderSweepResult:
    start, end = reminder_window(now)
    result = ReminderSweepResult()

    with start_span("reminders.sweep", {"window_start": start.isoformat(), "window_end": end.isoformat()}):
        rows = _due_bookings(start, end)
        result.total_bookings = len(rows)
        if rows and sender is None:
            sender = get_email_sender()

        for row in rows:
            # No stored row means the defaults, which include reminders
            if row.booking_reminders is False:
                result.skipped_count += 1
                reminder_emails_total.inc(labels={"result": "skipped"})
                continue

            if not row.client_email:
                result.failed_count += 1
                result.failures.append({"booking_id": row.id, "error": "missing_email"})
                reminder_emails_total.inc(labels={"result": "failed"})
                logger.warning("reminders.missing_email", extra={"booking_id": row.id, "user_id": row.user_id})
                continue

            date, time = format_slot(row.confirmed_date, row.confirmed_time)
            rendered = templates.booking_reminder(row.client_name or "Client", row.service_name or "Service", date, time)
            try:
                sender.send(EmailMessage(row.client_email, rendered.subject, rendered.html))
            except Exception as e:
                result.failed_count += 1
                result.failures.append({"booking_id": row.id, "error": type(e).__name__})
                reminder_emails_total.inc(labels={"result": "failed"})
                log_event(
                    "warning", "reminders.send_failed", user_id=row.user_id, booking_id=row.id, error=e, exc_info=True
                )
                continue

            result.sent_count += 1
            reminder_emails_total.inc(labels={"result": "sent"})

    logger.info(
        "reminders.sweep_complete",
        extra={
            "total_bookings": result.total_bookings,
            "sent_count": result.sent_count,
            "skipped_count": result.skipped_count,
            "failed_count": result.failed_count,
        },
    )
    return result
