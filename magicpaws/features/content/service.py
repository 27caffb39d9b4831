"""
Training content service.

Tiers own modules, modules own lessons. Public reads only ever show
active tiers and published modules/lessons; the admin authoring helpers see
everything. Each lesson a caller sees carries the entitlement decision for
that caller, and lesson media is withheld when access is denied.
"""

import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select, insert, update, func, and_
from sqlalchemy.exc import IntegrityError

from magicpaws.core.database import get_db_session, content_tiers, content_modules, content_lessons, new_id
from magicpaws.core.errors import ConflictError, NotFoundError, ValidationError
from magicpaws.features.entitlements.service import (
    AccessDecision,
    LessonRef,
    check_lesson_access,
    list_purchased_tier_ids,
)
from magicpaws.features.progress.service import get_progress, get_progress_map
from magicpaws.models.content import (
    LessonDetail,
    LessonNeighbor,
    LessonSummary,
    ModuleTree,
    TierSummary,
    TierTree,
)
from magicpaws.models.principal import Principal, Role

logger = logging.getLogger("magicpaws")

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Lowercase, collapse runs of non-alphanumerics to '-', trim dashes."""
    return _SLUG_RE.sub("-", (value or "").lower()).strip("-")


def next_sort_order(session, table, parent_column=None, parent_id: Optional[str] = None) -> int:
    """One past the highest sibling sort_order, or 0 for the first child."""
    query = select(func.max(table.c.sort_order))
    if parent_column is not None:
        query = query.where(parent_column == parent_id)
    current = session.execute(query).scalar()
    return 0 if current is None else current + 1


def _purchased_for(principal: Optional[Principal]) -> Set[str]:
    if principal is None:
        return set()
    return list_purchased_tier_ids(principal.id)


def _published_modules(session, tier_ids: List[str]):
    if not tier_ids:
        return []
    return session.execute(
        select(content_modules)
        .where(and_(content_modules.c.tier_id.in_(tier_ids), content_modules.c.is_published.is_(True)))
        .order_by(content_modules.c.sort_order, content_modules.c.created_at)
    ).fetchall()


def _published_lessons(session, module_ids: List[str]):
    if not module_ids:
        return []
    return session.execute(
        select(content_lessons)
        .where(and_(content_lessons.c.module_id.in_(module_ids), content_lessons.c.is_published.is_(True)))
        .order_by(content_lessons.c.sort_order, content_lessons.c.created_at)
    ).fetchall()


def _summary_fields(tier) -> Dict[str, Any]:
    return {
        "id": tier.id,
        "name": tier.name,
        "slug": tier.slug,
        "description": tier.description,
        "price": Decimal(tier.price),
        "sort_order": tier.sort_order,
    }


def list_tiers(principal: Optional[Principal] = None) -> List[TierSummary]:
    """Active tiers with purchase flag and published-content totals."""
    with get_db_session() as session:
        tiers = session.execute(
            select(content_tiers)
            .where(content_tiers.c.is_active.is_(True))
            .order_by(content_tiers.c.sort_order, content_tiers.c.created_at)
        ).fetchall()
        modules = _published_modules(session, [t.id for t in tiers])
        lessons = _published_lessons(session, [m.id for m in modules])

    purchased = _purchased_for(principal)
    module_tier = {m.id: m.tier_id for m in modules}
    result = []
    for tier in tiers:
        tier_lessons = [l for l in lessons if module_tier.get(l.module_id) == tier.id]
        result.append(
            TierSummary(
                **_summary_fields(tier),
                is_purchased=tier.id in purchased,
                module_count=sum(1 for m in modules if m.tier_id == tier.id),
                lesson_count=len(tier_lessons),
                total_duration=sum(l.video_duration or 0 for l in tier_lessons),
            )
        )
    return result


def _lesson_ref(lesson, tier_id: str) -> LessonRef:
    return LessonRef(
        id=lesson.id,
        tier_id=tier_id,
        is_free_preview=bool(lesson.is_free_preview),
        is_published=bool(lesson.is_published),
    )


def get_tier_tree(slug: str, principal: Optional[Principal] = None) -> TierTree:
    """
    Tier -> published modules -> published lessons, with per-lesson access.

    An inactive tier is NotFound except to admins and to users who bought it.
    """
    purchased = _purchased_for(principal)
    is_admin = principal is not None and principal.role == Role.ADMIN
    with get_db_session() as session:
        tier = session.execute(select(content_tiers).where(content_tiers.c.slug == slug)).first()
        if tier is None or not (tier.is_active or is_admin or tier.id in purchased):
            raise NotFoundError("Tier not found")
        modules = _published_modules(session, [tier.id])
        lessons = _published_lessons(session, [m.id for m in modules])

    def owned(user_id: str, tier_id: str) -> bool:
        return tier_id in purchased

    decisions: Dict[str, AccessDecision] = {
        lesson.id: check_lesson_access(principal, _lesson_ref(lesson, tier.id), purchase_lookup=owned)
        for lesson in lessons
    }
    progress = {}
    if principal is not None:
        progress = get_progress_map(principal.id, [lid for lid, d in decisions.items() if d.granted])

    module_trees = []
    for module in modules:
        summaries = []
        for lesson in (l for l in lessons if l.module_id == module.id):
            decision = decisions[lesson.id]
            summaries.append(
                LessonSummary(
                    id=lesson.id,
                    title=lesson.title,
                    slug=lesson.slug,
                    description=lesson.description,
                    video_duration=lesson.video_duration,
                    is_free_preview=bool(lesson.is_free_preview),
                    sort_order=lesson.sort_order,
                    has_access=decision.granted,
                    access_reason=decision.reason.value,
                    youtube_video_id=lesson.youtube_video_id if decision.granted else None,
                    progress=progress.get(lesson.id),
                )
            )
        module_trees.append(
            ModuleTree(
                id=module.id,
                title=module.title,
                slug=module.slug,
                description=module.description,
                sort_order=module.sort_order,
                lessons=summaries,
            )
        )

    return TierTree(
        **_summary_fields(tier),
        is_purchased=tier.id in purchased,
        module_count=len(modules),
        lesson_count=len(lessons),
        total_duration=sum(l.video_duration or 0 for l in lessons),
        modules=module_trees,
    )


def _neighbors(session, tier_id: str, lesson_id: str):
    """Previous and next published lesson across the whole tier."""
    ordered = session.execute(
        select(content_lessons.c.id, content_lessons.c.title, content_lessons.c.slug)
        .select_from(content_lessons.join(content_modules, content_modules.c.id == content_lessons.c.module_id))
        .where(
            and_(
                content_modules.c.tier_id == tier_id,
                content_modules.c.is_published.is_(True),
                content_lessons.c.is_published.is_(True),
            )
        )
        .order_by(content_modules.c.sort_order, content_lessons.c.sort_order, content_lessons.c.created_at)
    ).fetchall()
    ids = [row.id for row in ordered]
    if lesson_id not in ids:
        return None, None
    idx = ids.index(lesson_id)
    neighbors = []
    for pos in (idx - 1, idx + 1):
        if 0 <= pos < len(ordered):
            row = ordered[pos]
            neighbors.append(LessonNeighbor(id=row.id, title=row.title, slug=row.slug))
        else:
            neighbors.append(None)
    return neighbors[0], neighbors[1]


def get_lesson(lesson_id: str, principal: Optional[Principal] = None) -> LessonDetail:
    """A single lesson. Denied callers get the teaser without media or body."""
    is_admin = principal is not None and principal.role == Role.ADMIN
    with get_db_session() as session:
        row = session.execute(
            select(
                content_lessons,
                content_modules.c.title.label("module_title"),
                content_modules.c.is_published.label("module_published"),
                content_tiers.c.id.label("tier_id"),
                content_tiers.c.name.label("tier_name"),
                content_tiers.c.slug.label("tier_slug"),
                content_tiers.c.price.label("tier_price"),
            )
            .select_from(
                content_lessons
                .join(content_modules, content_modules.c.id == content_lessons.c.module_id)
                .join(content_tiers, content_tiers.c.id == content_modules.c.tier_id)
            )
            .where(content_lessons.c.id == lesson_id)
        ).first()
        if row is None or (not is_admin and not (row.is_published and row.module_published)):
            raise NotFoundError("Lesson not found")

        decision = check_lesson_access(principal, _lesson_ref(row, row.tier_id))
        previous_lesson = next_lesson = None
        if decision.granted:
            previous_lesson, next_lesson = _neighbors(session, row.tier_id, row.id)

    base = dict(
        id=row.id,
        title=row.title,
        slug=row.slug,
        description=row.description,
        video_duration=row.video_duration,
        is_free_preview=bool(row.is_free_preview),
        module_id=row.module_id,
        module_title=row.module_title,
        tier_id=row.tier_id,
        tier_name=row.tier_name,
        tier_slug=row.tier_slug,
        tier_price=Decimal(row.tier_price),
        has_access=decision.granted,
        access_reason=decision.reason.value,
    )
    if not decision.granted:
        return LessonDetail(**base)

    return LessonDetail(
        **base,
        youtube_video_id=row.youtube_video_id,
        content=row.content,
        progress=get_progress(principal.id, row.id),
        previous_lesson=previous_lesson,
        next_lesson=next_lesson,
    )


def get_active_tier(slug: str):
    with get_db_session() as session:
        tier = session.execute(
            select(content_tiers).where(
                and_(content_tiers.c.slug == slug, content_tiers.c.is_active.is_(True))
            )
        ).first()
    if tier is None:
        raise NotFoundError("Tier not found")
    return tier


# Admin authoring


def _fetch(session, table, row_id: str) -> Dict[str, Any]:
    row = session.execute(select(table).where(table.c.id == row_id)).first()
    return dict(row._mapping)


def list_all_tiers() -> List[Dict[str, Any]]:
    """Every tier with every module and lesson, for the authoring screen."""
    with get_db_session() as session:
        tiers = session.execute(select(content_tiers).order_by(content_tiers.c.sort_order)).fetchall()
        modules = session.execute(select(content_modules).order_by(content_modules.c.sort_order)).fetchall()
        lessons = session.execute(select(content_lessons).order_by(content_lessons.c.sort_order)).fetchall()

    lessons_by_module: Dict[str, List[dict]] = {}
    for lesson in lessons:
        lessons_by_module.setdefault(lesson.module_id, []).append(dict(lesson._mapping))
    modules_by_tier: Dict[str, List[dict]] = {}
    for module in modules:
        data = dict(module._mapping)
        data["lessons"] = lessons_by_module.get(module.id, [])
        modules_by_tier.setdefault(module.tier_id, []).append(data)

    result = []
    for tier in tiers:
        data = dict(tier._mapping)
        data["modules"] = modules_by_tier.get(tier.id, [])
        result.append(data)
    return result


def _validate_price(price) -> Decimal:
    try:
        value = Decimal(str(price))
    except Exception:
        raise ValidationError.for_field("price", "Price must be a number")
    if value <= 0:
        raise ValidationError.for_field("price", "Price must be greater than zero")
    return value.quantize(Decimal("0.01"))


def _slug_or_derived(slug: Optional[str], title: str) -> str:
    value = slugify(slug) if slug else slugify(title)
    if not value:
        raise ValidationError.for_field("slug", "Slug could not be derived from the title")
    return value


def create_tier(
    name: str,
    price,
    slug: Optional[str] = None,
    description: Optional[str] = None,
    is_active: bool = True,
    sort_order: Optional[int] = None,
) -> Dict[str, Any]:
    if not name or not name.strip():
        raise ValidationError.for_field("name", "Name is required")
    tier_slug = _slug_or_derived(slug, name)
    amount = _validate_price(price)
    try:
        with get_db_session() as session:
            order = sort_order if sort_order is not None else next_sort_order(session, content_tiers)
            tier_id = new_id()
            session.execute(
                insert(content_tiers).values(
                    id=tier_id,
                    name=name.strip(),
                    slug=tier_slug,
                    description=description,
                    price=amount,
                    sort_order=order,
                    is_active=is_active,
                )
            )
            tier = _fetch(session, content_tiers, tier_id)
    except IntegrityError:
        raise ConflictError("A tier with this slug already exists", code="duplicate_slug")
    logger.info("content.tier_created", extra={"tier_id": tier["id"], "slug": tier_slug})
    return tier


def update_tier(slug: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Apply only the supplied fields."""
    values = {k: v for k, v in changes.items() if v is not None}
    if "price" in values:
        values["price"] = _validate_price(values["price"])
    if "slug" in values:
        values["slug"] = _slug_or_derived(values["slug"], "")
    if "name" in values and not str(values["name"]).strip():
        raise ValidationError.for_field("name", "Name is required")

    try:
        with get_db_session() as session:
            existing = session.execute(select(content_tiers).where(content_tiers.c.slug == slug)).first()
            if existing is None:
                raise NotFoundError("Tier not found")
            if values:
                session.execute(update(content_tiers).where(content_tiers.c.id == existing.id).values(**values))
            return _fetch(session, content_tiers, existing.id)
    except IntegrityError:
        raise ConflictError("A tier with this slug already exists", code="duplicate_slug")


def create_module(
    tier_id: str,
    title: str,
    slug: Optional[str] = None,
    description: Optional[str] = None,
    is_published: bool = True,
    sort_order: Optional[int] = None,
) -> Dict[str, Any]:
    if not title or not title.strip():
        raise ValidationError.for_field("title", "Title is required")
    module_slug = _slug_or_derived(slug, title)
    try:
        with get_db_session() as session:
            parent = session.execute(select(content_tiers.c.id).where(content_tiers.c.id == tier_id)).first()
            if parent is None:
                raise NotFoundError("Tier not found")
            order = sort_order if sort_order is not None else next_sort_order(
                session, content_modules, content_modules.c.tier_id, tier_id
            )
            module_id = new_id()
            session.execute(
                insert(content_modules).values(
                    id=module_id,
                    tier_id=tier_id,
                    title=title.strip(),
                    slug=module_slug,
                    description=description,
                    is_published=is_published,
                    sort_order=order,
                )
            )
            return _fetch(session, content_modules, module_id)
    except IntegrityError:
        raise ConflictError("A module with this slug already exists in the tier", code="duplicate_slug")


def create_lesson(
    module_id: str,
    title: str,
    slug: Optional[str] = None,
    description: Optional[str] = None,
    youtube_video_id: Optional[str] = None,
    video_duration: Optional[int] = None,
    content: Optional[str] = None,
    is_free_preview: bool = False,
    is_published: bool = True,
    sort_order: Optional[int] = None,
) -> Dict[str, Any]:
    if not title or not title.strip():
        raise ValidationError.for_field("title", "Title is required")
    if video_duration is not None and video_duration < 0:
        raise ValidationError.for_field("video_duration", "Duration must be zero or greater")
    lesson_slug = _slug_or_derived(slug, title)
    try:
        with get_db_session() as session:
            parent = session.execute(select(content_modules.c.id).where(content_modules.c.id == module_id)).first()
            if parent is None:
                raise NotFoundError("Module not found")
            order = sort_order if sort_order is not None else next_sort_order(
                session, content_lessons, content_lessons.c.module_id, module_id
            )
            lesson_id = new_id()
            session.execute(
                insert(content_lessons).values(
                    id=lesson_id,
                    module_id=module_id,
                    title=title.strip(),
                    slug=lesson_slug,
                    description=description,
                    youtube_video_id=youtube_video_id,
                    video_duration=video_duration,
                    content=content,
                    is_free_preview=is_free_preview,
                    is_published=is_published,
                    sort_order=order,
                )
            )
            return _fetch(session, content_lessons, lesson_id)
    except IntegrityError:
        raise ConflictError("A lesson with this slug already exists in the module", code="duplicate_slug")


def update_lesson(lesson_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    values = {k: v for k, v in changes.items() if v is not None}
    if "slug" in values:
        values["slug"] = _slug_or_derived(values["slug"], "")
    try:
        with get_db_session() as session:
            existing = session.execute(select(content_lessons.c.id).where(content_lessons.c.id == lesson_id)).first()
            if existing is None:
                raise NotFoundError("Lesson not found")
            if values:
                session.execute(update(content_lessons).where(content_lessons.c.id == lesson_id).values(**values))
            return _fetch(session, content_lessons, lesson_id)
    except IntegrityError:
        raise ConflictError("A lesson with this slug already exists in the module", code="duplicate_slug")
