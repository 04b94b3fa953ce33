"""
API endpoints for reviewing teacher lesson submissions.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import require_roles
from config import DUPLICATE_REVIEW_ROLES, MAX_PAGE_SIZE
from models_submissions import (
    SubmissionListResponse,
    SubmissionReviewRequest,
    SubmissionReviewResult,
    SubmissionStatus,
)
from services_submission_review import (
    ReviewValidationError,
    SubmissionNotFoundError,
    get_submission,
    list_submissions,
    review_submission,
)

logger = logging.getLogger("lesson_admin")

router = APIRouter(prefix="/admin/submissions", tags=["submissions"])

require_reviewer = require_roles(*DUPLICATE_REVIEW_ROLES)


@router.get("", response_model=SubmissionListResponse)
def list_submissions_endpoint(
    status: Optional[SubmissionStatus] = Query("submitted", description="Filter by status"),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    auth: Dict[str, Any] = Depends(require_reviewer),
):
    """Review queue, oldest submission first."""
    submissions, total = list_submissions(status=status, limit=limit, offset=offset)
    return SubmissionListResponse(submissions=submissions, total=total)


@router.get("/{submission_id}")
def get_submission_endpoint(submission_id: str, auth: Dict[str, Any] = Depends(require_reviewer)):
    try:
        submission = get_submission(submission_id)
    except SubmissionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    # The raw embedding is large and useless to the review screen
    submission.pop("content_embedding", None)
    return submission


@router.post("/{submission_id}/review", response_model=SubmissionReviewResult)
def review_submission_endpoint(
    submission_id: str,
    payload: SubmissionReviewRequest,
    auth: Dict[str, Any] = Depends(require_reviewer),
):
    """
    Record a decision on a submission.

    approve_new publishes a new lesson; approve_update archives the target
    lesson's current version and overwrites it; reject and needs_revision
    only change the submission status.
    """
    try:
        return review_submission(auth["user_id"], submission_id, payload)
    except ReviewValidationError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "missing_fields": e.missing_fields})
    except SubmissionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
