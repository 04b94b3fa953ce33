# Duplicate lesson review models.
from typing import Optional, List, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field

DetectionMethod = Literal["same_title", "embedding", "both", "mixed"]
# Values accepted by the dismissals table (no "mixed").
DismissMethod = Literal["same_title", "embedding", "both"]
Confidence = Literal["high", "medium", "low"]
ResolutionAction = Literal["keep", "archive"]
SubmitAction = Literal["keep_all", "save_and_next"]


def group_key(lesson_ids: List[str]) -> str:
    """Stable key for a lesson set: sorted ids joined by commas."""
    return ",".join(sorted(lesson_ids))


class DuplicatePair(BaseModel):
    id1: str
    id2: str
    title1: Optional[str] = None
    title2: Optional[str] = None
    detection_method: DismissMethod
    similarity: Optional[float] = None


class LessonSummary(BaseModel):
    lesson_id: str
    title: str
    summary: Optional[str] = None
    content_length: int = 0
    grade_levels: List[str] = Field(default_factory=list)
    has_table_format: bool = False
    has_summary: bool = False
    file_link: Optional[str] = None
    content_preview: Optional[str] = None
    recommended_canonical: bool = False


class DuplicateGroup(BaseModel):
    group_id: str
    lesson_ids: List[str]
    lessons: List[LessonSummary]
    detection_method: DetectionMethod
    confidence: Confidence = "medium"
    avg_similarity: Optional[float] = None
    pair_count: int = 0

    @property
    def key(self) -> str:
        return group_key(self.lesson_ids)


class Selection(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: ResolutionAction = "keep"
    archive_to: Optional[str] = None


class LessonResolution(BaseModel):
    lesson_id: str
    action: ResolutionAction
    archive_to: Optional[str] = None


class GroupResolution(BaseModel):
    group_id: str
    resolutions: List[LessonResolution]


class ResolveResult(BaseModel):
    success: bool
    kept_count: int = 0
    archived_count: int = 0
    error: Optional[str] = None


class DismissResult(BaseModel):
    success: bool
    error: Optional[str] = None


class ResolutionNotice(BaseModel):
    """Handed back to the client after a resolve/dismiss; consumed by the list view."""
    message: str
    resolved_group: DuplicateGroup


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

class SelectionRequest(BaseModel):
    action: ResolutionAction
    archive_to: Optional[str] = None


class ReviewStateResponse(BaseModel):
    group: Optional[DuplicateGroup] = None
    current_index: int = -1
    total_groups: int = 0
    selections: Dict[str, Selection] = Field(default_factory=dict)
    kept_lesson_ids: List[str] = Field(default_factory=list)
    has_changes: bool = False
    has_valid_selection: bool = False
    is_submitting: bool = False
    submitting_action: Optional[SubmitAction] = None
    submit_error: Optional[str] = None


class ReviewActionResponse(BaseModel):
    status: Literal["ok", "error"]
    navigate_to: Optional[str] = None
    next_group_id: Optional[str] = None
    notice: Optional[ResolutionNotice] = None
    state: ReviewStateResponse


class QueueLoadResponse(BaseModel):
    status: str
    total_groups: int
    first_group_id: Optional[str] = None
    navigate_to: str


class DuplicateGroupListResponse(BaseModel):
    groups: List[DuplicateGroup]
    total: int
    hidden_resolved: int = 0


class LeaveReviewResponse(BaseModel):
    status: Literal["ok", "warning"]
    warning: Optional[str] = None
    navigate_to: Optional[str] = None
