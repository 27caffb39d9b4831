from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class LessonProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    lesson_id: str
    user_id: str
    last_position: int = 0
    is_completed: bool = False
    completed_at: Optional[datetime] = None


class LessonSummary(BaseModel):
    """A lesson row as shown in a tier tree.

    video and body fields are withheld (None) when has_access is false.
    """
    id: str
    title: str
    slug: str
    description: Optional[str] = None
    video_duration: Optional[int] = None
    is_free_preview: bool = False
    sort_order: int = 0
    has_access: bool = False
    access_reason: str
    youtube_video_id: Optional[str] = None
    progress: Optional[LessonProgress] = None


class ModuleTree(BaseModel):
    id: str
    title: str
    slug: str
    description: Optional[str] = None
    sort_order: int = 0
    lessons: List[LessonSummary] = []


class TierSummary(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    price: Decimal
    sort_order: int = 0
    is_purchased: bool = False
    module_count: int = 0
    lesson_count: int = 0
    total_duration: int = 0


class TierTree(TierSummary):
    modules: List[ModuleTree] = []


class LessonNeighbor(BaseModel):
    id: str
    title: str
    slug: str


class LessonDetail(BaseModel):
    id: str
    title: str
    slug: str
    description: Optional[str] = None
    video_duration: Optional[int] = None
    is_free_preview: bool = False
    module_id: str
    module_title: str
    tier_id: str
    tier_name: str
    tier_slug: str
    tier_price: Decimal
    has_access: bool
    access_reason: str
    youtube_video_id: Optional[str] = None
    content: Optional[str] = None
    progress: Optional[LessonProgress] = None
    previous_lesson: Optional[LessonNeighbor] = None
    next_lesson: Optional[LessonNeighbor] = None
