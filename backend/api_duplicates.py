"""
API endpoints for the duplicate lesson review workflow.

The list endpoint reads straight from the resolver. Everything under
`/session` and `/{group_id}` runs against the reviewer's review session, which
holds the queue, the current group and the in-progress selections.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from auth import require_roles
from config import DUPLICATE_REPORT_PATH, DUPLICATE_REVIEW_ROLES
from models_duplicates import (
    DuplicateGroupListResponse,
    LeaveReviewResponse,
    QueueLoadResponse,
    ReviewActionResponse,
    ReviewStateResponse,
    Selection,
    SelectionRequest,
)
from request_context import get_session_id
from services_duplicate_groups import DuplicateResolver, PostgresDuplicateResolver
from services_duplicate_report import ReportFormatError, load_report
from services_duplicate_review import (
    LIST_PATH,
    DuplicateReviewController,
    GroupNotFoundError,
    InvalidSelectionError,
    QueueLoadError,
    ReviewOutcome,
    SubmissionInProgressError,
    UnknownLessonError,
    UnsavedChangesError,
    group_path,
    to_response,
)
from services_review_sessions import get_review_store

logger = logging.getLogger("lesson_admin")

router = APIRouter(prefix="/admin/duplicates", tags=["duplicates"])

require_reviewer = require_roles(*DUPLICATE_REVIEW_ROLES)


def get_duplicate_resolver(auth: Dict[str, Any] = Depends(require_reviewer)) -> DuplicateResolver:
    return PostgresDuplicateResolver(reviewer_id=auth["user_id"], report_path=DUPLICATE_REPORT_PATH)


def get_review_controller(
    request: Request,
    auth: Dict[str, Any] = Depends(require_reviewer),
    resolver: DuplicateResolver = Depends(get_duplicate_resolver),
) -> DuplicateReviewController:
    """The caller's review session, created on first use."""
    return get_review_store().get_or_create(
        auth["user_id"],
        get_session_id(request),
        lambda: DuplicateReviewController(resolver, reviewer_id=auth["user_id"]),
    )


def _not_found(group_id: Optional[str]) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"message": "Group not found or already resolved", "group_id": group_id, "back_to": LIST_PATH},
    )


def _focus(controller: DuplicateReviewController, group_id: str) -> None:
    """Make `group_id` the current group, loading the queue on first use."""
    try:
        if not controller.loaded:
            controller.load(current_id=group_id)
        if controller.state.current_id != group_id or controller.state.current_group is None:
            controller.select(group_id)
    except QueueLoadError as e:
        raise HTTPException(status_code=502, detail={"message": str(e), "retry": True})
    except GroupNotFoundError:
        raise _not_found(group_id)
    except UnsavedChangesError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "current_group_id": controller.state.current_id})


def _action_response(outcome: ReviewOutcome) -> ReviewActionResponse:
    return ReviewActionResponse(
        status=outcome.status,
        navigate_to=outcome.navigate_to,
        next_group_id=outcome.next_group_id,
        notice=outcome.notice,
        state=to_response(outcome.state),
    )


@router.get("", response_model=DuplicateGroupListResponse)
def list_duplicate_groups(
    resolved: Optional[List[str]] = Query(None, description="Group keys resolved since the last load"),
    include_resolved: bool = Query(False, description="Include groups that were dismissed earlier"),
    auth: Dict[str, Any] = Depends(require_reviewer),
    resolver: DuplicateResolver = Depends(get_duplicate_resolver),
):
    """
    List pending duplicate groups.

    `resolved` carries the keys (sorted lesson ids joined by ",") of groups the
    client just resolved, so they stay hidden even if the store lags.
    """
    try:
        groups = resolver.fetch_groups(include_resolved=include_resolved)
    except Exception as e:
        logger.error(f"Error fetching duplicate groups: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail={"message": "Failed to load duplicate groups", "retry": True})

    hidden = set(resolved or [])
    visible = [g for g in groups if g.key not in hidden]
    return DuplicateGroupListResponse(
        groups=visible,
        total=len(visible),
        hidden_resolved=len(groups) - len(visible),
    )


@router.get("/report")
def get_report_summary(auth: Dict[str, Any] = Depends(require_reviewer)):
    """Summary of the offline duplicate analysis, counted by recommended action."""
    try:
        report = load_report(DUPLICATE_REPORT_PATH)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="No duplicate analysis report available")
    except ReportFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return report.summary()


@router.post("/session", response_model=QueueLoadResponse)
def start_review_session(controller: DuplicateReviewController = Depends(get_review_controller)):
    """(Re)load the review queue for this session and point at the first group."""
    try:
        state = controller.load()
    except QueueLoadError as e:
        raise HTTPException(status_code=502, detail={"message": str(e), "retry": True})
    except SubmissionInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    first = state.queue[0].group_id if state.queue else None
    return QueueLoadResponse(
        status="ok",
        total_groups=len(state.queue),
        first_group_id=first,
        navigate_to=group_path(first) if first else LIST_PATH,
    )


@router.delete("/session", response_model=LeaveReviewResponse)
def leave_review_session(
    force: bool = Query(False, description="Discard unsaved selections"),
    controller: DuplicateReviewController = Depends(get_review_controller),
):
    if not controller.leave(force=force):
        return LeaveReviewResponse(
            status="warning",
            warning="You have unsaved selections. Leave anyway?",
        )
    return LeaveReviewResponse(status="ok", navigate_to=LIST_PATH)


@router.get("/{group_id}", response_model=ReviewStateResponse)
def select_duplicate_group(
    group_id: str,
    force: bool = Query(False, description="Discard unsaved selections on the current group"),
    controller: DuplicateReviewController = Depends(get_review_controller),
):
    if force and controller.loaded and controller.state.current_id != group_id:
        controller.leave(force=True)
    _focus(controller, group_id)
    return to_response(controller.state)


@router.put("/{group_id}/selections/{lesson_id}", response_model=ReviewStateResponse)
def set_lesson_selection(
    group_id: str,
    lesson_id: str,
    payload: SelectionRequest,
    controller: DuplicateReviewController = Depends(get_review_controller),
):
    _focus(controller, group_id)
    try:
        state = controller.set_selection(
            lesson_id,
            Selection(action=payload.action, archive_to=payload.archive_to if payload.action == "archive" else None),
        )
    except UnknownLessonError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return to_response(state)


@router.post("/{group_id}/quick-keep/{lesson_id}", response_model=ReviewStateResponse)
def quick_keep_lesson(
    group_id: str,
    lesson_id: str,
    controller: DuplicateReviewController = Depends(get_review_controller),
):
    """Keep one lesson and archive every other lesson of the group into it."""
    _focus(controller, group_id)
    try:
        state = controller.quick_keep(lesson_id)
    except UnknownLessonError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return to_response(state)


@router.post("/{group_id}/skip", response_model=ReviewActionResponse)
def skip_group(group_id: str, controller: DuplicateReviewController = Depends(get_review_controller)):
    _focus(controller, group_id)
    return _action_response(controller.skip())


@router.post("/{group_id}/keep-all", response_model=ReviewActionResponse)
def keep_all_lessons(group_id: str, controller: DuplicateReviewController = Depends(get_review_controller)):
    """Mark the group as not duplicates; every lesson stays published."""
    _focus(controller, group_id)
    try:
        return _action_response(controller.keep_all())
    except SubmissionInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{group_id}/save-and-next", response_model=ReviewActionResponse)
def save_and_next(group_id: str, controller: DuplicateReviewController = Depends(get_review_controller)):
    """Submit the current selections and move on to the next group."""
    _focus(controller, group_id)
    try:
        return _action_response(controller.save_and_next())
    except InvalidSelectionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SubmissionInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
