"""
Lesson progress tracking.

One row per (lesson, user). Writes are partial: only fields supplied by the
caller change, and completed_at is stamped when a call moves is_completed
from false to true.
"""

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import IntegrityError

from magicpaws.core.database import get_db_session, lesson_progress, utc_now, ensure_utc
from magicpaws.core.errors import NotFoundError, UnauthenticatedError, ValidationError
from magicpaws.features.entitlements.service import load_lesson_ref, require_access
from magicpaws.models.content import LessonProgress
from magicpaws.models.principal import Principal, Role

logger = logging.getLogger("magicpaws")


def _row_to_progress(row) -> LessonProgress:
    return LessonProgress(
        lesson_id=row.lesson_id,
        user_id=row.user_id,
        last_position=row.last_position,
        is_completed=bool(row.is_completed),
        completed_at=ensure_utc(row.completed_at),
    )


def _select_progress(session, user_id: str, lesson_id: str):
    return session.execute(
        select(lesson_progress).where(
            and_(
                lesson_progress.c.lesson_id == lesson_id,
                lesson_progress.c.user_id == user_id,
            )
        )
    ).first()


def get_progress(user_id: str, lesson_id: str) -> Optional[LessonProgress]:
    with get_db_session() as session:
        row = _select_progress(session, user_id, lesson_id)
        return _row_to_progress(row) if row else None


def get_progress_map(user_id: str, lesson_ids: Iterable[str]) -> Dict[str, LessonProgress]:
    ids = list(lesson_ids)
    if not ids:
        return {}
    with get_db_session() as session:
        rows = session.execute(
            select(lesson_progress).where(
                and_(
                    lesson_progress.c.user_id == user_id,
                    lesson_progress.c.lesson_id.in_(ids),
                )
            )
        ).fetchall()
        return {row.lesson_id: _row_to_progress(row) for row in rows}


def _changes(existing, last_position: Optional[int], is_completed: Optional[bool]) -> dict:
    values = {}
    if last_position is not None:
        values["last_position"] = last_position
    if is_completed is not None:
        values["is_completed"] = is_completed
        if is_completed and not existing.is_completed:
            values["completed_at"] = utc_now()
        elif not is_completed:
            values["completed_at"] = None
    return values


def _update_existing(user_id: str, lesson_id: str, last_position: Optional[int], is_completed: Optional[bool]) -> LessonProgress:
    with get_db_session() as session:
        existing = _select_progress(session, user_id, lesson_id)
        values = _changes(existing, last_position, is_completed)
        if values:
            session.execute(
                update(lesson_progress)
                .where(lesson_progress.c.id == existing.id)
                .values(**values)
            )
            existing = _select_progress(session, user_id, lesson_id)
        return _row_to_progress(existing)


def record_progress(
    principal: Optional[Principal],
    lesson_id: str,
    last_position: Optional[int] = None,
    is_completed: Optional[bool] = None,
) -> LessonProgress:
    """Upsert the caller's progress on a lesson they may access.

    Raises:
        UnauthenticatedError: no principal
        ValidationError: negative position
        NotFoundError: lesson missing, or it or its module unpublished for a non-admin
        PermissionError: caller has no access to the lesson
    """
    if principal is None:
        raise UnauthenticatedError("Authentication required")
    if last_position is not None and last_position < 0:
        raise ValidationError.for_field("last_position", "Position must be zero or greater")

    lesson = load_lesson_ref(lesson_id)
    if not lesson.visible and principal.role != Role.ADMIN:
        raise NotFoundError("Lesson not found")
    require_access(principal, lesson)

    existing = get_progress(principal.id, lesson_id)
    if existing is not None:
        return _update_existing(principal.id, lesson_id, last_position, is_completed)

    completed = bool(is_completed)
    try:
        with get_db_session() as session:
            session.execute(
                insert(lesson_progress).values(
                    lesson_id=lesson_id,
                    user_id=principal.id,
                    last_position=last_position or 0,
                    is_completed=completed,
                    completed_at=utc_now() if completed else None,
                )
            )
            row = _select_progress(session, principal.id, lesson_id)
            progress = _row_to_progress(row)
    except IntegrityError:
        # A concurrent first write created the row; apply ours on top of it
        logger.info("progress.insert_race", extra={"user_id": principal.id, "lesson_id": lesson_id})
        return _update_existing(principal.id, lesson_id, last_position, is_completed)

    logger.info(
        "progress.recorded",
        extra={"user_id": principal.id, "lesson_id": lesson_id, "is_completed": progress.is_completed},
    )
    return progress
