"""
Scheduled job triggers.

POST /api/cron/reminders is called once a day by an external scheduler.
When CRON_SECRET is set the caller must send it as a bearer token.
"""
import hmac
from typing import Optional

from fastapi import APIRouter, Header

from magicpaws.core.config import settings
from magicpaws.core.errors import UnauthenticatedError
from magicpaws.features.reminders.service import run_reminder_sweep


router = APIRouter(prefix="/api/cron", tags=["cron"])


def _check_cron_secret(authorization: Optional[str]) -> None:
    secret = settings.CRON_SECRET
    if not secret:
        return
    if not hmac.compare_digest(authorization or "", f"Bearer {secret}"):
        raise UnauthenticatedError("Invalid cron credentials")


@router.post("/reminders")
def send_reminders(authorization: Optional[str] = Header(None)):
    _check_cron_secret(authorization)
    return run_reminder_sweep().as_dict()
