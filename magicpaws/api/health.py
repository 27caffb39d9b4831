"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from magicpaws.core import database

logger = logging.getLogger("magicpaws")

router = APIRouter(tags=["health"])

# Tables the core flows cannot run without
REQUIRED_TABLES = (
    "users",
    "content_tiers",
    "content_modules",
    "content_lessons",
    "tier_purchases",
    "lesson_progress",
    "bookings",
    "billing_events",
)


def _not_ready(detail: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@router.get("/healthz")
def healthz():
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Ready when the database answers and the schema is in place."""
    try:
        database.ping()
        missing = database.missing_tables(REQUIRED_TABLES)
    except Exception as e:
        logger.error("readyz.database_unreachable", extra={"error": str(e)})
        return _not_ready("database unreachable")

    if missing:
        logger.warning("readyz.missing_tables", extra={"missing": missing})
        return _not_ready(f"missing tables: {', '.join(missing)}")
    return {"status": "ok"}
