"""
Duplicate group review workflow.

The review queue is an explicit, immutable `ReviewState`; every reviewer action
is a pure function from one state to the next. `DuplicateReviewController`
wraps those transitions around the remote resolver calls, tracks which submit
is in flight, and keeps the two failure channels apart:

- semantic rejection (`success=False` from the resolver) -> `submit_error`
- raised exceptions (network, unexpected shape) -> logged, generic `submit_error`

Neither failure touches the queue or the selections, so a retry needs no
re-entry.
"""
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Tuple

from models_duplicates import (
    DismissMethod,
    DuplicateGroup,
    GroupResolution,
    LessonResolution,
    ResolutionNotice,
    ReviewStateResponse,
    Selection,
    SubmitAction,
)
from services_duplicate_groups import DuplicateResolver

logger = logging.getLogger("lesson_admin")

LIST_PATH = "/admin/duplicates"
KEEP_ALL_REASON = "Dismissed via Keep All action"
KEEP = Selection(action="keep")


def group_path(group_id: str) -> str:
    return f"{LIST_PATH}/{group_id}"


class ReviewError(Exception):
    """Base class for review workflow errors."""


class GroupNotFoundError(ReviewError, LookupError):
    """The requested group is not in the queue (already resolved, or a bad id)."""

    def __init__(self, group_id: Optional[str]):
        super().__init__(f"Group not found or already resolved: {group_id}")
        self.group_id = group_id


class UnknownLessonError(ReviewError, ValueError):
    """A selection names a lesson outside the current group."""


class InvalidSelectionError(ReviewError, ValueError):
    """Save was requested while the selection set is not submittable."""


class SubmissionInProgressError(ReviewError):
    """Another submit for this review session is still in flight."""


class UnsavedChangesError(ReviewError):
    """Leaving the current group would discard edited selections."""


class QueueLoadError(ReviewError):
    """The queue could not be loaded; nothing was replaced."""


# ---------------------------------------------------------------------------
# State and pure transitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReviewState:
    queue: Tuple[DuplicateGroup, ...] = ()
    current_id: Optional[str] = None
    selections: Mapping[str, Selection] = field(default_factory=dict)
    has_changes: bool = False
    is_submitting: bool = False
    submitting_action: Optional[SubmitAction] = None
    submit_error: Optional[str] = None

    @property
    def current_index(self) -> int:
        for index, group in enumerate(self.queue):
            if group.group_id == self.current_id:
                return index
        return -1

    @property
    def current_group(self) -> Optional[DuplicateGroup]:
        index = self.current_index
        return self.queue[index] if index >= 0 else None

    @property
    def kept_lesson_ids(self) -> List[str]:
        group = self.current_group
        if group is None:
            return []
        return [l.lesson_id for l in group.lessons if self.selections.get(l.lesson_id) == KEEP]

    @property
    def has_valid_selection(self) -> bool:
        group = self.current_group
        if group is None:
            return False
        return is_valid_selection(self.selections, [l.lesson_id for l in group.lessons])


@dataclass(frozen=True)
class Transition:
    state: ReviewState
    navigate_to: str
    next_group_id: Optional[str] = None


def is_valid_selection(selections: Mapping[str, Selection], lesson_ids: Optional[List[str]] = None) -> bool:
    """
    True iff at least one lesson is kept and every archived lesson names a target.

    When `lesson_ids` is given, each of those lessons must also have a selection.
    """
    if lesson_ids is not None and any(lesson_id not in selections for lesson_id in lesson_ids):
        return False
    values = list(selections.values())
    if not any(sel.action == "keep" for sel in values):
        return False
    return all(sel.archive_to for sel in values if sel.action == "archive")


def initial_selections(group: DuplicateGroup) -> Dict[str, Selection]:
    return {lesson.lesson_id: KEEP for lesson in group.lessons}


def select_group(state: ReviewState, group_id: Optional[str]) -> ReviewState:
    """Point the state at `group_id`; selections reset when the group identity changes."""
    if group_id == state.current_id and state.current_group is not None:
        return state
    target = next((g for g in state.queue if g.group_id == group_id), None)
    return replace(
        state,
        current_id=group_id,
        selections=initial_selections(target) if target else {},
        has_changes=False,
        submit_error=None,
    )


def load_queue(groups: List[DuplicateGroup], current_id: Optional[str] = None) -> ReviewState:
    state = ReviewState(queue=tuple(groups))
    return select_group(state, current_id if current_id is not None else (groups[0].group_id if groups else None))


def _require_group(state: ReviewState) -> DuplicateGroup:
    group = state.current_group
    if group is None:
        raise GroupNotFoundError(state.current_id)
    return group


def set_selection(state: ReviewState, lesson_id: str, selection: Selection) -> ReviewState:
    """Overwrite one lesson's selection. Archive without a target is allowed until submit."""
    group = _require_group(state)
    if lesson_id not in group.lesson_ids:
        raise UnknownLessonError(f"Lesson {lesson_id} is not part of group {group.group_id}")
    selections = dict(state.selections)
    selections[lesson_id] = selection
    return replace(state, selections=selections, has_changes=True)


def quick_keep(state: ReviewState, keep_lesson_id: str) -> ReviewState:
    """Keep one lesson and archive every other lesson of the group into it."""
    group = _require_group(state)
    if keep_lesson_id not in group.lesson_ids:
        raise UnknownLessonError(f"Lesson {keep_lesson_id} is not part of group {group.group_id}")
    selections = dict(state.selections)
    for lesson in group.lessons:
        if lesson.lesson_id == keep_lesson_id:
            selections[lesson.lesson_id] = KEEP
        else:
            selections[lesson.lesson_id] = Selection(action="archive", archive_to=keep_lesson_id)
    return replace(state, selections=selections, has_changes=True)


def next_group_id(state: ReviewState) -> Optional[str]:
    index = state.current_index
    if 0 <= index < len(state.queue) - 1:
        return state.queue[index + 1].group_id
    return None


def skip(state: ReviewState) -> Transition:
    """Move on without saving; the queue is untouched."""
    target = next_group_id(state)
    if target is None:
        return Transition(state=state, navigate_to=LIST_PATH)
    return Transition(state=select_group(state, target), navigate_to=group_path(target), next_group_id=target)


def complete_current(state: ReviewState) -> Transition:
    """
    Drop the current group from the queue and advance.

    The next id and the removal are taken from the same snapshot, so the
    target is right whichever order a caller applies them in.
    """
    group = _require_group(state)
    target = next_group_id(state)
    remaining = tuple(g for g in state.queue if g.group_id != group.group_id)
    cleared = replace(state, queue=remaining, current_id=None, selections={}, has_changes=False, submit_error=None)
    if target is None:
        return Transition(state=cleared, navigate_to=LIST_PATH)
    return Transition(state=select_group(cleared, target), navigate_to=group_path(target), next_group_id=target)


def _drop_group(state: ReviewState, group_id: str) -> Transition:
    """
    Remove a group the reviewer is no longer looking at.

    The current group (if any) stays current; a reload may already have
    dropped `group_id`, in which case only the navigation target is computed.
    """
    remaining = tuple(g for g in state.queue if g.group_id != group_id)
    moved = replace(state, queue=remaining)
    current = moved.current_group
    if current is None:
        return Transition(state=moved, navigate_to=LIST_PATH)
    return Transition(state=moved, navigate_to=group_path(current.group_id), next_group_id=current.group_id)


def build_resolutions(state: ReviewState) -> List[LessonResolution]:
    group = _require_group(state)
    resolutions = []
    for lesson in group.lessons:
        sel = state.selections.get(lesson.lesson_id, KEEP)
        if sel.action == "keep":
            resolutions.append(LessonResolution(lesson_id=lesson.lesson_id, action="keep"))
        else:
            resolutions.append(
                LessonResolution(lesson_id=lesson.lesson_id, action="archive", archive_to=sel.archive_to)
            )
    return resolutions


def dismiss_method_for(detection_method: str) -> DismissMethod:
    """The dismissals table has no 'mixed'; a mixed group is recorded as 'both'."""
    if detection_method == "mixed":
        return "both"
    return detection_method  # type: ignore[return-value]


def to_response(state: ReviewState) -> ReviewStateResponse:
    group = state.current_group
    return ReviewStateResponse(
        group=group,
        current_index=state.current_index,
        total_groups=len(state.queue),
        selections=dict(state.selections),
        kept_lesson_ids=state.kept_lesson_ids,
        has_changes=state.has_changes,
        has_valid_selection=state.has_valid_selection,
        is_submitting=state.is_submitting,
        submitting_action=state.submitting_action,
        submit_error=state.submit_error,
    )


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

@dataclass
class ReviewOutcome:
    status: str
    state: ReviewState
    navigate_to: Optional[str] = None
    next_group_id: Optional[str] = None
    notice: Optional[ResolutionNotice] = None


class DuplicateReviewController:
    """One reviewer's pass through the pending duplicate queue."""

    def __init__(self, resolver: DuplicateResolver, reviewer_id: Optional[str] = None):
        self.resolver = resolver
        self.reviewer_id = reviewer_id
        self.state = ReviewState()
        self.loaded = False
        self._lock = threading.RLock()

    # -- queue ---------------------------------------------------------------

    def _check_idle(self) -> None:
        if self.state.is_submitting:
            raise SubmissionInProgressError(
                f"A {self.state.submitting_action} submission is already in progress"
            )

    def load(self, current_id: Optional[str] = None) -> ReviewState:
        """
        Fetch unresolved groups. On failure the previous state stays in place.

        Refused while a submit is in flight; the reload would clear the busy flag.
        """
        with self._lock:
            self._check_idle()
        try:
            groups = self.resolver.fetch_groups(include_resolved=False)
        except Exception as e:
            logger.error(f"Error loading duplicate groups: {e}", exc_info=True)
            raise QueueLoadError(str(e) or "Failed to load duplicate groups") from e
        with self._lock:
            self._check_idle()
            self.state = load_queue(groups, current_id)
            self.loaded = True
            return self.state

    def select(self, group_id: str, force: bool = False) -> ReviewState:
        with self._lock:
            leaving = self.state.current_id != group_id
            if leaving and self.state.has_changes and not force:
                raise UnsavedChangesError("You have unsaved selections for the current group")
            self.state = select_group(self.state, group_id)
            if self.state.current_group is None:
                raise GroupNotFoundError(group_id)
            return self.state

    def leave(self, force: bool = False) -> bool:
        """Discard the current group's edits. Returns False if unsaved changes block it."""
        with self._lock:
            if self.state.has_changes and not force:
                return False
            self.state = replace(self.state, current_id=None, selections={}, has_changes=False, submit_error=None)
            return True

    # -- selections ----------------------------------------------------------

    def set_selection(self, lesson_id: str, selection: Selection) -> ReviewState:
        with self._lock:
            self.state = set_selection(self.state, lesson_id, selection)
            return self.state

    def quick_keep(self, lesson_id: str) -> ReviewState:
        with self._lock:
            self.state = quick_keep(self.state, lesson_id)
            return self.state

    # -- navigation / submits ------------------------------------------------

    def skip(self) -> ReviewOutcome:
        with self._lock:
            _require_group(self.state)
            transition = skip(self.state)
            self.state = transition.state
            return ReviewOutcome(
                status="ok",
                state=self.state,
                navigate_to=transition.navigate_to,
                next_group_id=transition.next_group_id,
            )

    def _begin_submit(self, action: SubmitAction) -> DuplicateGroup:
        with self._lock:
            group = _require_group(self.state)
            self._check_idle()
            self.state = replace(self.state, is_submitting=True, submitting_action=action, submit_error=None)
            return group

    def _end_submit(self) -> None:
        with self._lock:
            self.state = replace(self.state, is_submitting=False, submitting_action=None)

    def _fail(self, message: str) -> ReviewOutcome:
        with self._lock:
            self.state = replace(self.state, submit_error=message, is_submitting=False, submitting_action=None)
            return ReviewOutcome(status="error", state=self.state)

    def _advance(self, group: DuplicateGroup, message: str) -> ReviewOutcome:
        with self._lock:
            if self.state.current_id == group.group_id and self.state.current_group is not None:
                transition = complete_current(self.state)
            else:
                transition = _drop_group(self.state, group.group_id)
            self.state = replace(transition.state, is_submitting=False, submitting_action=None)
            return ReviewOutcome(
                status="ok",
                state=self.state,
                navigate_to=transition.navigate_to,
                next_group_id=transition.next_group_id,
                notice=ResolutionNotice(message=message, resolved_group=group),
            )

    def _dismiss(self, group: DuplicateGroup) -> ReviewOutcome:
        try:
            result = self.resolver.dismiss(
                list(group.lesson_ids),
                dismiss_method_for(group.detection_method),
                KEEP_ALL_REASON,
            )
        except Exception as e:
            logger.error(f"Error dismissing group {group.group_id}: {e}", exc_info=True)
            return self._fail(str(e) or "Failed to dismiss group")

        if not result.success:
            return self._fail(result.error or "Failed to dismiss group")

        logger.info(f"Kept all lessons of {group.group_id} (reviewer={self.reviewer_id})")
        return self._advance(group, f"Kept all {len(group.lessons)} lessons as non-duplicates")

    def keep_all(self) -> ReviewOutcome:
        """The reviewer decided the group is not a duplicate set."""
        group = self._begin_submit("keep_all")
        try:
            return self._dismiss(group)
        finally:
            self._end_submit()

    def save_and_next(self) -> ReviewOutcome:
        """Archive per the current selections; an all-keep selection becomes a dismissal."""
        with self._lock:
            if not self.state.has_valid_selection:
                _require_group(self.state)
                raise InvalidSelectionError(
                    "Keep at least one lesson and choose a target for every archived lesson"
                )
            group = self._begin_submit("save_and_next")
            resolutions = build_resolutions(self.state)
        try:
            if not any(r.action == "archive" for r in resolutions):
                return self._dismiss(group)

            try:
                result = self.resolver.resolve(GroupResolution(group_id=group.group_id, resolutions=resolutions))
            except Exception as e:
                logger.error(f"Error resolving group {group.group_id}: {e}", exc_info=True)
                return self._fail(str(e) or "Failed to resolve group")

            if not result.success:
                return self._fail(result.error or "Failed to resolve group")

            logger.info(
                f"Resolved {group.group_id}: kept={result.kept_count} archived={result.archived_count} "
                f"(reviewer={self.reviewer_id})"
            )
            return self._advance(
                group,
                f"Resolved group: kept {result.kept_count}, archived {result.archived_count}",
            )
        finally:
            self._end_submit()
