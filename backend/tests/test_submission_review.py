"""
Tests for reviewing teacher lesson submissions.

Covers required-tag validation, content parsing, and the writes each
decision makes inside its transaction.
"""
import json
from datetime import datetime, timezone

import pytest  # type: ignore[reportMissingImports]
from unittest.mock import patch

from models_submissions import ReviewMetadata, SubmissionReviewRequest
from services_submission_review import (
    ReviewValidationError,
    SubmissionNotFoundError,
    UPDATE_ARCHIVE_REASON,
    merged_lesson_columns,
    missing_required_fields,
    parse_extracted_content,
    review_submission,
    valid_embedding,
    validate_review,
)
from tests.mock_helpers import REVIEWER_ID, MockCursor, mock_transaction

SUBMISSION_ID = "55555555-5555-5555-5555-555555555555"


def complete_metadata(**overrides):
    data = {
        "activityType": "garden",
        "location": "Outdoor",
        "gradeLevels": ["3", "4"],
        "themes": ["Plant Growth"],
        "season": ["Spring"],
        "coreCompetencies": ["Environmental and Community Stewardship"],
        "socialEmotionalLearning": ["Self-awareness"],
        "gardenSkills": ["Planting"],
    }
    data.update(overrides)
    return ReviewMetadata(**data)


def submission_row(**overrides):
    row = {
        "id": SUBMISSION_ID,
        "teacher_id": "66666666-6666-6666-6666-666666666666",
        "google_doc_url": "https://docs.google.com/document/d/abc",
        "extracted_title": None,
        "extracted_content": "Title: Seed Starting\n\nSummary: Students start seeds indoors.\n\nMaterials\n- soil",
        "content_hash": "hash-1",
        "content_embedding": json.dumps([0.1, 0.2]),
        "status": "submitted",
    }
    row.update(overrides)
    return row


class TestRequiredFields:
    """Tests for missing_required_fields / validate_review"""

    def test_complete_garden_metadata(self):
        assert missing_required_fields(complete_metadata()) == []

    def test_empty_metadata_lists_core_fields(self):
        assert missing_required_fields(ReviewMetadata()) == [
            "Activity Type",
            "Location",
            "Grade Levels",
            "Thematic Categories",
            "Season & Timing",
            "Core Competencies",
            "Social-Emotional Learning",
        ]

    def test_cooking_requires_cooking_tags(self):
        missing = missing_required_fields(complete_metadata(activityType="cooking"))
        assert missing == ["Cooking Methods", "Main Ingredients", "Cooking Skills"]

    def test_both_requires_cooking_and_garden_tags(self):
        missing = missing_required_fields(complete_metadata(activityType="both", gardenSkills=[]))
        assert "Garden Skills" in missing
        assert "Cooking Methods" in missing

    def test_snake_case_is_accepted(self):
        metadata = ReviewMetadata(activity_type="academic", grade_levels=["5"])
        assert metadata.activity_type == "academic"
        assert metadata.grade_levels == ["5"]

    def test_reject_requires_notes(self):
        with pytest.raises(ReviewValidationError):
            validate_review(SubmissionReviewRequest(decision="reject", notes="  "))

    def test_update_requires_target(self):
        review = SubmissionReviewRequest(decision="approve_update", metadata=complete_metadata())
        with pytest.raises(ReviewValidationError):
            validate_review(review)

    def test_missing_fields_are_reported(self):
        review = SubmissionReviewRequest(decision="approve_new", metadata=ReviewMetadata(location="Indoor"))
        with pytest.raises(ReviewValidationError) as exc_info:
            validate_review(review)
        assert "Location" not in exc_info.value.missing_fields
        assert "Activity Type" in exc_info.value.missing_fields


class TestContentParsing:
    """Tests for parse_extracted_content and valid_embedding"""

    def test_title_and_summary(self):
        title, summary = parse_extracted_content(submission_row()["extracted_content"])
        assert title == "Seed Starting"
        assert summary == "Students start seeds indoors."

    def test_empty_content(self):
        assert parse_extracted_content(None) == ("", "")

    def test_summary_falls_back_to_first_paragraph(self):
        title, summary = parse_extracted_content("Compost Lab\nstudents build a bin\n\nstep one")
        assert title == "Compost Lab"
        assert summary == "students build a bin"

    def test_valid_embedding(self):
        assert valid_embedding("[0.5, 0.25]") is True
        assert valid_embedding("[]") is False
        assert valid_embedding("not json") is False
        assert valid_embedding(None) is False

    def test_merged_columns_keep_existing_when_empty(self):
        merged = merged_lesson_columns(
            complete_metadata(culturalHeritage=[]),
            {"cultural_heritage": ["Caribbean"], "lesson_format": "Single period"},
        )
        assert merged["cultural_heritage"] == ["Caribbean"]
        assert merged["lesson_format"] == "Single period"
        assert merged["grade_levels"] == ["3", "4"]


class TestReviewSubmission:
    """Tests for review_submission"""

    def test_approve_new_publishes_lesson(self):
        cursor = MockCursor()
        review = SubmissionReviewRequest(decision="approve_new", metadata=complete_metadata())
        with patch("services_submission_review.execute_query", return_value=[submission_row()]), \
                patch("services_submission_review.transaction", mock_transaction(cursor)):
            result = review_submission(REVIEWER_ID, SUBMISSION_ID, review)

        assert result.status == "approved"
        assert result.lesson_id.startswith("lesson_")
        statements = [q for q, _ in cursor.executed]
        assert statements[0].startswith("INSERT INTO submission_reviews")
        assert statements[1].startswith("UPDATE lesson_submissions")
        assert statements[2].startswith("INSERT INTO lessons")
        assert "content_embedding" in statements[2]
        lesson_params = cursor.executed[2][1]
        assert "Seed Starting" in lesson_params

    def test_approve_update_archives_previous_version(self):
        existing = {
            "lesson_id": "lesson_old",
            "title": "Seeds",
            "summary": "Old summary",
            "version_number": 2,
            "cultural_heritage": ["Caribbean"],
        }
        cursor = MockCursor(fetchone_results=[existing])
        review = SubmissionReviewRequest(
            decision="approve_update",
            metadata=complete_metadata(),
            target_lesson_id="lesson_old",
        )
        with patch("services_submission_review.execute_query", return_value=[submission_row()]), \
                patch("services_submission_review.transaction", mock_transaction(cursor)):
            result = review_submission(REVIEWER_ID, SUBMISSION_ID, review)

        assert result.lesson_id == "lesson_old"
        assert result.archived_version == 2
        version_insert = next(p for q, p in cursor.executed if q.startswith("INSERT INTO lesson_versions"))
        assert 2 in version_insert
        assert UPDATE_ARCHIVE_REASON in version_insert
        lesson_update = next(p for q, p in cursor.executed if q.startswith("UPDATE lessons"))
        assert 3 in lesson_update
        assert lesson_update[-1] == "lesson_old"

    def test_reject_only_updates_status(self):
        cursor = MockCursor()
        review = SubmissionReviewRequest(decision="reject", notes="Duplicate of an existing lesson")
        with patch("services_submission_review.execute_query", return_value=[submission_row()]), \
                patch("services_submission_review.transaction", mock_transaction(cursor)):
            result = review_submission(REVIEWER_ID, SUBMISSION_ID, review)

        assert result.status == "rejected"
        assert result.lesson_id is None
        assert len(cursor.executed) == 2

    def test_unknown_submission(self):
        review = SubmissionReviewRequest(decision="needs_revision", notes="Add a materials list")
        with patch("services_submission_review.execute_query", return_value=[]):
            with pytest.raises(SubmissionNotFoundError):
                review_submission(REVIEWER_ID, SUBMISSION_ID, review)


class TestSubmissionApi:
    """Tests for /admin/submissions"""

    def test_review_endpoint_reports_missing_fields(self, client, reviewer_headers):
        response = client.post(
            f"/admin/submissions/{SUBMISSION_ID}/review",
            json={"decision": "approve_new", "metadata": {"activityType": "cooking"}},
            headers=reviewer_headers,
        )
        assert response.status_code == 400
        assert "Cooking Methods" in response.json()["detail"]["missing_fields"]

    def test_detail_hides_embedding(self, client, reviewer_headers):
        with patch("services_submission_review.execute_query", return_value=[submission_row()]):
            response = client.get(f"/admin/submissions/{SUBMISSION_ID}", headers=reviewer_headers)
        assert response.status_code == 200
        assert "content_embedding" not in response.json()

    def test_list_submissions(self, client, reviewer_headers):
        rows = [{
            "id": SUBMISSION_ID,
            "teacher_id": None,
            "teacher_name": None,
            "google_doc_url": "https://docs.google.com/document/d/abc",
            "extracted_title": "Seed Starting",
            "submission_type": "new",
            "status": "submitted",
            "created_at": datetime(2025, 3, 1, tzinfo=timezone.utc),
            "reviewed_at": None,
        }]
        with patch("services_submission_review.execute_query", side_effect=[[{"total": 1}], rows]):
            response = client.get("/admin/submissions", headers=reviewer_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["submissions"][0]["extracted_title"] == "Seed Starting"

    def test_teacher_cannot_review(self, client, teacher_headers):
        response = client.get("/admin/submissions", headers=teacher_headers)
        assert response.status_code == 403
