# Lesson submission review models.
from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ReviewDecision = Literal["approve_new", "approve_update", "reject", "needs_revision"]
SubmissionStatus = Literal["submitted", "in_review", "under_review", "needs_revision", "approved", "rejected"]


class ReviewMetadata(BaseModel):
    """Tags the reviewer assigns; accepted in snake_case or the client's camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    activity_type: Optional[Literal["cooking", "garden", "both", "academic"]] = None
    location: Optional[str] = None
    grade_levels: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    season: List[str] = Field(default_factory=list)
    core_competencies: List[str] = Field(default_factory=list)
    social_emotional_learning: List[str] = Field(default_factory=list)
    cultural_heritage: List[str] = Field(default_factory=list)
    lesson_format: Optional[str] = None
    academic_integration: List[str] = Field(default_factory=list)
    cooking_methods: List[str] = Field(default_factory=list)
    main_ingredients: List[str] = Field(default_factory=list)
    cooking_skills: List[str] = Field(default_factory=list)
    garden_skills: List[str] = Field(default_factory=list)
    observances_holidays: List[str] = Field(default_factory=list)
    cultural_responsiveness_features: List[str] = Field(default_factory=list)
    processing_notes: Optional[str] = None


class SubmissionReviewRequest(BaseModel):
    decision: ReviewDecision
    notes: Optional[str] = None
    metadata: ReviewMetadata = Field(default_factory=ReviewMetadata)
    # Existing lesson replaced by an approve_update decision
    target_lesson_id: Optional[str] = None


class SubmissionReviewResult(BaseModel):
    submission_id: str
    decision: ReviewDecision
    status: SubmissionStatus
    lesson_id: Optional[str] = None
    archived_version: Optional[int] = None


class SubmissionSummary(BaseModel):
    id: str
    teacher_id: Optional[str] = None
    teacher_name: Optional[str] = None
    google_doc_url: Optional[str] = None
    extracted_title: Optional[str] = None
    submission_type: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None


class SubmissionListResponse(BaseModel):
    submissions: List[SubmissionSummary]
    total: int
