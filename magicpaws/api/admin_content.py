"""
Content authoring routes (admin only).

- GET   /api/admin/content/tiers            every tier with modules and lessons
- POST  /api/admin/content/tiers            create tier
- PATCH /api/admin/content/tiers/{slug}     update tier fields
- POST  /api/admin/content/modules          create module
- POST  /api/admin/content/lessons          create lesson (optionally announce it)
- PATCH /api/admin/content/lessons/{id}     update lesson fields
- POST  /api/admin/services                 create bookable service
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from magicpaws.core.auth import require_admin
from magicpaws.features.bookings.service import create_service_type
from magicpaws.features.content.service import (
    create_lesson,
    create_module,
    create_tier,
    list_all_tiers,
    update_lesson,
    update_tier,
)
from magicpaws.features.notifications.announcements import announce_new_lesson
from magicpaws.models.principal import Principal


router = APIRouter(prefix="/api/admin", tags=["admin-content"])


class TierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., gt=0)
    slug: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    sort_order: Optional[int] = Field(None, ge=0)


class TierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(None, gt=0)
    slug: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = Field(None, ge=0)


class ModuleCreate(BaseModel):
    tier_id: str
    title: str = Field(..., min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    is_published: bool = True
    sort_order: Optional[int] = Field(None, ge=0)


class LessonCreate(BaseModel):
    module_id: str
    title: str = Field(..., min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    youtube_video_id: Optional[str] = None
    video_duration: Optional[int] = Field(None, ge=0)
    content: Optional[str] = None
    is_free_preview: bool = False
    is_published: bool = True
    sort_order: Optional[int] = Field(None, ge=0)
    notify: bool = False


class LessonUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    youtube_video_id: Optional[str] = None
    video_duration: Optional[int] = Field(None, ge=0)
    content: Optional[str] = None
    is_free_preview: Optional[bool] = None
    is_published: Optional[bool] = None
    sort_order: Optional[int] = Field(None, ge=0)


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    base_price: Decimal = Field(..., ge=0)
    slug: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    is_active: bool = True


@router.get("/content/tiers")
def admin_list_tiers(admin: Principal = Depends(require_admin)):
    return {"tiers": list_all_tiers()}


@router.post("/content/tiers", status_code=201)
def admin_create_tier(body: TierCreate, admin: Principal = Depends(require_admin)):
    return {"tier": create_tier(**body.model_dump())}


@router.patch("/content/tiers/{slug}")
def admin_update_tier(slug: str, body: TierUpdate, admin: Principal = Depends(require_admin)):
    return {"tier": update_tier(slug, body.model_dump(exclude_unset=True))}


@router.post("/content/modules", status_code=201)
def admin_create_module(body: ModuleCreate, admin: Principal = Depends(require_admin)):
    return {"module": create_module(**body.model_dump())}


@router.post("/content/lessons", status_code=201)
def admin_create_lesson(body: LessonCreate, admin: Principal = Depends(require_admin)):
    """Create a lesson; with notify set, announce it to the tier's owners."""
    data = body.model_dump()
    notify = data.pop("notify")
    lesson = create_lesson(**data)
    announced = announce_new_lesson(lesson["id"]) if notify else 0
    return {"lesson": lesson, "announced": announced}


@router.patch("/content/lessons/{lesson_id}")
def admin_update_lesson(lesson_id: str, body: LessonUpdate, admin: Principal = Depends(require_admin)):
    return {"lesson": update_lesson(lesson_id, body.model_dump(exclude_unset=True))}


@router.post("/services", status_code=201)
def admin_create_service(body: ServiceCreate, admin: Principal = Depends(require_admin)):
    data = body.model_dump()
    return {"service": create_service_type(data.pop("name"), data.pop("base_price"), **data)}
