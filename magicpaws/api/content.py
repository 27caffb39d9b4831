"""
Training content routes.

Listing and tier trees are open to anonymous callers; each lesson carries
the access decision for the caller. Lesson bodies and videos are only
returned when access is granted.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from magicpaws.core.auth import get_current_principal, get_optional_principal
from magicpaws.features.content.service import get_lesson, get_tier_tree, list_tiers
from magicpaws.features.progress.service import record_progress
from magicpaws.features.purchases.service import start_tier_checkout
from magicpaws.models.content import LessonDetail, LessonProgress, TierSummary, TierTree
from magicpaws.models.principal import Principal


router = APIRouter(prefix="/api/content", tags=["content"])


class CheckoutResponse(BaseModel):
    url: str


class ProgressRequest(BaseModel):
    last_position: Optional[int] = Field(None, ge=0, description="Playback position in seconds")
    is_completed: Optional[bool] = None


@router.get("/tiers", response_model=List[TierSummary])
def tiers(principal: Optional[Principal] = Depends(get_optional_principal)):
    return list_tiers(principal)


@router.get("/tiers/{slug}", response_model=TierTree)
def tier_tree(slug: str, principal: Optional[Principal] = Depends(get_optional_principal)):
    return get_tier_tree(slug, principal)


@router.post("/tiers/{slug}/purchase", response_model=CheckoutResponse)
def purchase_tier(slug: str, request: Request, principal: Principal = Depends(get_current_principal)):
    """
    Start a checkout for the tier.

    Errors:
        409 already_owned: the caller owns the tier
        503: billing not configured
    """
    url = start_tier_checkout(principal, slug, origin=request.headers.get("origin"))
    return {"url": url}


@router.get("/lessons/{lesson_id}", response_model=LessonDetail)
def lesson(lesson_id: str, principal: Optional[Principal] = Depends(get_optional_principal)):
    return get_lesson(lesson_id, principal)


@router.post("/lessons/{lesson_id}/progress", response_model=LessonProgress)
def lesson_progress(lesson_id: str, body: ProgressRequest, principal: Principal = Depends(get_current_principal)):
    return record_progress(
        principal,
        lesson_id,
        last_position=body.last_position,
        is_completed=body.is_completed,
    )
