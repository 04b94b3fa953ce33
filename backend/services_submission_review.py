"""
Reviewer decisions on teacher lesson submissions.

A decision writes a review row and the submission's new status; approving
also publishes the lesson, either as a new lesson or as the next version of
an existing one. All writes for one decision share a transaction.
"""
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from db_postgres import execute_query, transaction
from models_submissions import (
    ReviewMetadata,
    SubmissionReviewRequest,
    SubmissionReviewResult,
    SubmissionSummary,
)

logger = logging.getLogger("lesson_admin")

UPDATE_ARCHIVE_REASON = "Content update from new submission"
UNTITLED = "Untitled Lesson"
SUMMARY_MAX_CHARS = 500

DECISION_STATUS = {
    "approve_new": "approved",
    "approve_update": "approved",
    "reject": "rejected",
    "needs_revision": "needs_revision",
}

_TITLE_RE = re.compile(r"^(Title:|Lesson Title:|#\s+)?(.+)$", re.IGNORECASE | re.MULTILINE)
_SUMMARY_RE = re.compile(r"(?:Summary:|Overview:|Description:)\s*(.+?)(?:\n\n|\n(?=[A-Z]))", re.IGNORECASE | re.DOTALL)


class SubmissionNotFoundError(LookupError):
    pass


class ReviewValidationError(ValueError):
    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_fields = missing_fields or []


def status_for_decision(decision: str) -> str:
    return DECISION_STATUS[decision]


def missing_required_fields(metadata: ReviewMetadata) -> List[str]:
    """Labels of the tags an approval still needs."""
    missing = []
    if not metadata.activity_type:
        missing.append("Activity Type")
    if not metadata.location:
        missing.append("Location")
    if not metadata.grade_levels:
        missing.append("Grade Levels")
    if not metadata.themes:
        missing.append("Thematic Categories")
    if not metadata.season:
        missing.append("Season & Timing")
    if not metadata.core_competencies:
        missing.append("Core Competencies")
    if not metadata.social_emotional_learning:
        missing.append("Social-Emotional Learning")

    if metadata.activity_type in ("cooking", "both"):
        if not metadata.cooking_methods:
            missing.append("Cooking Methods")
        if not metadata.main_ingredients:
            missing.append("Main Ingredients")
        if not metadata.cooking_skills:
            missing.append("Cooking Skills")
    if metadata.activity_type in ("garden", "both"):
        if not metadata.garden_skills:
            missing.append("Garden Skills")
    return missing


def validate_review(review: SubmissionReviewRequest) -> None:
    if review.decision in ("approve_new", "approve_update"):
        missing = missing_required_fields(review.metadata)
        if missing:
            raise ReviewValidationError(f"Missing required fields: {', '.join(missing)}", missing)
        if review.decision == "approve_update" and not review.target_lesson_id:
            raise ReviewValidationError("Choose the existing lesson this submission updates")
    elif not (review.notes or "").strip():
        raise ReviewValidationError("Notes are required when rejecting or requesting revisions")


def parse_extracted_content(content: Optional[str]) -> Tuple[str, str]:
    """Best-effort (title, summary) from a submission's extracted text."""
    if not content:
        return "", ""
    lines = [line for line in content.split("\n") if line.strip()]

    title = ""
    match = _TITLE_RE.search(content)
    if match and match.group(2).strip():
        title = match.group(2).strip()
    elif lines:
        title = lines[0].strip()

    summary_match = _SUMMARY_RE.search(content)
    if summary_match:
        summary = summary_match.group(1).strip()
    else:
        # First paragraph after the title line
        parts = content.strip().split("\n", 1)
        body = parts[1].strip() if len(parts) > 1 else ""
        summary = body.split("\n\n")[0].strip()[:SUMMARY_MAX_CHARS]
    return title, summary


def valid_embedding(value: Any) -> bool:
    """An embedding is copied only if it parses to a non-empty list."""
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = json.loads(value)
    except ValueError:
        return False
    return isinstance(parsed, list) and len(parsed) > 0


def metadata_json(metadata: ReviewMetadata) -> Dict[str, Any]:
    return {
        "thematicCategories": metadata.themes,
        "seasonTiming": metadata.season,
        "coreCompetencies": metadata.core_competencies,
        "culturalHeritage": metadata.cultural_heritage,
        "locationRequirements": [metadata.location] if metadata.location else [],
        "lessonFormat": [metadata.lesson_format] if metadata.lesson_format else [],
        "academicIntegration": metadata.academic_integration,
        "socialEmotionalLearning": metadata.social_emotional_learning,
        "cookingMethods": metadata.cooking_methods,
        "mainIngredients": metadata.main_ingredients,
        "gardenSkills": metadata.garden_skills,
        "cookingSkills": metadata.cooking_skills,
        "observancesHolidays": metadata.observances_holidays,
        "culturalResponsivenessFeatures": metadata.cultural_responsiveness_features,
    }


def lesson_columns(metadata: ReviewMetadata) -> Dict[str, Any]:
    """Lesson array columns from reviewer tags."""
    return {
        "grade_levels": metadata.grade_levels,
        "activity_type": [metadata.activity_type] if metadata.activity_type else [],
        "thematic_categories": metadata.themes,
        "season_timing": metadata.season,
        "core_competencies": metadata.core_competencies,
        "cultural_heritage": metadata.cultural_heritage,
        "location_requirements": [metadata.location] if metadata.location else [],
        "lesson_format": metadata.lesson_format,
        "academic_integration": metadata.academic_integration,
        "social_emotional_learning": metadata.social_emotional_learning,
        "cooking_methods": metadata.cooking_methods,
        "main_ingredients": metadata.main_ingredients,
        "garden_skills": metadata.garden_skills,
        "cooking_skills": metadata.cooking_skills,
        "observances_holidays": metadata.observances_holidays,
        "cultural_responsiveness_features": metadata.cultural_responsiveness_features,
    }


def merged_lesson_columns(metadata: ReviewMetadata, existing: Dict[str, Any]) -> Dict[str, Any]:
    """New tags win; empty tags keep what the lesson already has."""
    merged = {}
    for column, value in lesson_columns(metadata).items():
        merged[column] = value if value else (existing.get(column) or ([] if column != "lesson_format" else None))
    return merged


def build_new_lesson(submission: Dict[str, Any], metadata: ReviewMetadata) -> Dict[str, Any]:
    parsed_title, parsed_summary = parse_extracted_content(submission.get("extracted_content"))
    lesson = {
        "lesson_id": f"lesson_{uuid.uuid4()}",
        "title": submission.get("extracted_title") or parsed_title or UNTITLED,
        "summary": parsed_summary,
        "file_link": submission.get("google_doc_url"),
        **lesson_columns(metadata),
        "metadata": metadata_json(metadata),
        "content_text": submission.get("extracted_content"),
        "content_hash": submission.get("content_hash"),
        "original_submission_id": submission["id"],
        "processing_notes": metadata.processing_notes or "",
    }
    if valid_embedding(submission.get("content_embedding")):
        lesson["content_embedding"] = submission["content_embedding"]
    else:
        logger.debug(f"No usable embedding for submission {submission['id']}")
    return lesson


def _insert(cur, table: str, row: Dict[str, Any]) -> None:
    columns = ", ".join(row)
    placeholders = ", ".join(["%s"] * len(row))
    cur.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))


def _update(cur, table: str, values: Dict[str, Any], key_column: str, key: Any) -> None:
    assignments = ", ".join(f"{column} = %s" for column in values)
    cur.execute(
        f"UPDATE {table} SET {assignments}, updated_at = NOW() WHERE {key_column} = %s",
        tuple(values.values()) + (key,),
    )


def get_submission(submission_id: str) -> Dict[str, Any]:
    rows = execute_query("SELECT * FROM lesson_submissions WHERE id = %s", (submission_id,))
    if not rows:
        raise SubmissionNotFoundError(f"Submission not found: {submission_id}")
    return rows[0]


def list_submissions(status: Optional[str] = None, limit: int = 50, offset: int = 0) -> Tuple[List[SubmissionSummary], int]:
    where = "WHERE s.status = %s" if status else ""
    params: Tuple = (status,) if status else ()
    count_rows = execute_query(f"SELECT COUNT(*) AS total FROM lesson_submissions s {where}", params) or []
    rows = execute_query(
        f"""
        SELECT s.id, s.teacher_id, p.full_name AS teacher_name, s.google_doc_url, s.extracted_title,
               s.submission_type, s.status, s.created_at, s.reviewed_at
        FROM lesson_submissions s
        LEFT JOIN user_profiles p ON p.id = s.teacher_id
        {where}
        ORDER BY s.created_at ASC
        LIMIT %s OFFSET %s
        """,
        params + (limit, offset),
    ) or []
    submissions = [
        SubmissionSummary(**{**row, "id": str(row["id"]), "teacher_id": str(row["teacher_id"]) if row.get("teacher_id") else None})
        for row in rows
    ]
    return submissions, int(count_rows[0]["total"]) if count_rows else 0


def review_submission(reviewer_id: str, submission_id: str, review: SubmissionReviewRequest) -> SubmissionReviewResult:
    """Apply a reviewer decision. Raises ReviewValidationError before any write."""
    validate_review(review)
    submission = get_submission(submission_id)
    status = status_for_decision(review.decision)
    lesson_id: Optional[str] = None
    archived_version: Optional[int] = None

    with transaction() as cur:
        _insert(cur, "submission_reviews", {
            "submission_id": submission_id,
            "reviewer_id": reviewer_id,
            "decision": review.decision,
            "notes": review.notes,
            "tagged_metadata": review.metadata.model_dump(),
            "canonical_lesson_id": review.target_lesson_id,
        })
        _update(cur, "lesson_submissions", {
            "status": status,
            "reviewed_at": datetime.now(timezone.utc),
            "reviewed_by": reviewer_id,
        }, "id", submission_id)

        if review.decision == "approve_new":
            lesson = build_new_lesson(submission, review.metadata)
            _insert(cur, "lessons", lesson)
            lesson_id = lesson["lesson_id"]

        elif review.decision == "approve_update":
            lesson_id = review.target_lesson_id
            cur.execute("SELECT * FROM lessons WHERE lesson_id = %s", (lesson_id,))
            existing = cur.fetchone()
            if existing is None:
                raise SubmissionNotFoundError(f"Lesson not found: {lesson_id}")

            archived_version = existing.get("version_number") or 1
            _insert(cur, "lesson_versions", {
                "lesson_id": lesson_id,
                "version_number": archived_version,
                "title": existing.get("title") or "",
                "summary": existing.get("summary") or "",
                "file_link": existing.get("file_link") or "",
                "grade_levels": existing.get("grade_levels") or [],
                "metadata": existing.get("metadata"),
                "content_text": existing.get("content_text"),
                "archived_from_submission_id": submission_id,
                "archived_by": reviewer_id,
                "archive_reason": UPDATE_ARCHIVE_REASON,
            })

            parsed_title, parsed_summary = parse_extracted_content(submission.get("extracted_content"))
            _update(cur, "lessons", {
                "title": parsed_title or existing.get("title"),
                "summary": parsed_summary or existing.get("summary"),
                "file_link": submission.get("google_doc_url"),
                **merged_lesson_columns(review.metadata, existing),
                "metadata": metadata_json(review.metadata),
                "content_text": submission.get("extracted_content"),
                "content_hash": submission.get("content_hash"),
                "version_number": archived_version + 1,
                "has_versions": True,
                "processing_notes": review.metadata.processing_notes or "",
            }, "lesson_id", lesson_id)

    logger.info(f"Submission {submission_id} reviewed by {reviewer_id}: {review.decision} -> {status}")
    return SubmissionReviewResult(
        submission_id=submission_id,
        decision=review.decision,
        status=status,
        lesson_id=lesson_id,
        archived_version=archived_version,
    )
