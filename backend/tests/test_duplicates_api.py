"""
Tests for the duplicate review API endpoints.

Tests cover:
- Group list (auth, resolved hiding, load failure)
- Review sessions (start, leave with unsaved changes, isolation)
- Per-group actions (selections, quick keep, skip, keep all, save and next)
- Report summary

All tests use the in-memory resolver from the fake_resolver fixture.
"""
import json

import pytest  # type: ignore[reportMissingImports]
from unittest.mock import patch

from services_duplicate_review import KEEP_ALL_REASON, LIST_PATH, group_path
from services_review_sessions import get_review_store
from tests.mock_helpers import REVIEWER_ID


class TestDuplicateListAccess:
    """Tests for authentication and role checks"""

    def test_requires_auth(self, client, fake_resolver):
        response = client.get("/admin/duplicates")
        assert response.status_code == 401

    def test_teacher_is_forbidden(self, client, fake_resolver, teacher_headers):
        response = client.get("/admin/duplicates", headers=teacher_headers)
        assert response.status_code == 403

    def test_invalid_token(self, client, fake_resolver):
        response = client.get("/admin/duplicates", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401


class TestDuplicateList:
    """Tests for GET /admin/duplicates"""

    def test_list_groups(self, client, fake_resolver, reviewer_headers, sample_groups):
        response = client.get("/admin/duplicates", headers=reviewer_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [g["group_id"] for g in data["groups"]] == [g.group_id for g in sample_groups]
        assert data["hidden_resolved"] == 0

    def test_recently_resolved_groups_are_hidden(self, client, fake_resolver, reviewer_headers, sample_groups):
        response = client.get(
            "/admin/duplicates",
            params={"resolved": [sample_groups[0].key]},
            headers=reviewer_headers,
        )
        data = response.json()
        assert data["total"] == 2
        assert data["hidden_resolved"] == 1
        assert sample_groups[0].group_id not in [g["group_id"] for g in data["groups"]]

    def test_load_failure_offers_retry(self, client, fake_resolver, reviewer_headers):
        fake_resolver.fetch_error = RuntimeError("timeout")
        response = client.get("/admin/duplicates", headers=reviewer_headers)
        assert response.status_code == 502
        assert response.json()["detail"]["retry"] is True


class TestReviewSession:
    """Tests for /admin/duplicates/session"""

    def test_start_session(self, client, fake_resolver, reviewer_headers, sample_groups):
        response = client.post("/admin/duplicates/session", headers=reviewer_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total_groups"] == 3
        assert data["first_group_id"] == sample_groups[0].group_id
        assert data["navigate_to"] == group_path(sample_groups[0].group_id)

    def test_start_session_with_empty_queue(self, client, fake_resolver, reviewer_headers):
        fake_resolver.groups = []
        response = client.post("/admin/duplicates/session", headers=reviewer_headers)
        data = response.json()
        assert data["first_group_id"] is None
        assert data["navigate_to"] == LIST_PATH

    def test_start_session_load_failure(self, client, fake_resolver, reviewer_headers):
        fake_resolver.fetch_error = RuntimeError("connection refused")
        response = client.post("/admin/duplicates/session", headers=reviewer_headers)
        assert response.status_code == 502

    def test_reload_while_submitting_is_refused(self, client, fake_resolver, reviewer_headers, sample_groups):
        client.post("/admin/duplicates/session", headers=reviewer_headers)
        controller = get_review_store().get(REVIEWER_ID, "test-session")
        controller._begin_submit("keep_all")

        response = client.post("/admin/duplicates/session", headers=reviewer_headers)
        assert response.status_code == 409
        assert controller.state.is_submitting is True
        assert len(controller.state.queue) == 3

    def test_leave_with_unsaved_changes_warns(self, client, fake_resolver, reviewer_headers, sample_groups):
        group_id = sample_groups[0].group_id
        client.post(f"/admin/duplicates/{group_id}/quick-keep/lesson_a1", headers=reviewer_headers)

        response = client.delete("/admin/duplicates/session", headers=reviewer_headers)
        assert response.json()["status"] == "warning"

        response = client.delete("/admin/duplicates/session", params={"force": True}, headers=reviewer_headers)
        assert response.json() == {"status": "ok", "warning": None, "navigate_to": LIST_PATH}

    def test_sessions_are_isolated(self, client, fake_resolver, reviewer_headers, sample_groups):
        group_id = sample_groups[0].group_id
        client.post(f"/admin/duplicates/{group_id}/quick-keep/lesson_a1", headers=reviewer_headers)

        other_tab = {**reviewer_headers, "X-Session-Id": "other-tab"}
        response = client.get(f"/admin/duplicates/{group_id}", headers=other_tab)
        assert response.json()["has_changes"] is False


class TestGroupReview:
    """Tests for per-group review actions"""

    def test_open_group(self, client, fake_resolver, reviewer_headers, sample_groups):
        group = sample_groups[1]
        response = client.get(f"/admin/duplicates/{group.group_id}", headers=reviewer_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["group"]["group_id"] == group.group_id
        assert data["current_index"] == 1
        assert data["kept_lesson_ids"] == ["lesson_b1", "lesson_b2", "lesson_b3"]
        assert data["has_valid_selection"] is True

    def test_unknown_group_is_404_with_way_back(self, client, fake_resolver, reviewer_headers):
        response = client.get("/admin/duplicates/group_000000000000", headers=reviewer_headers)
        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["back_to"] == LIST_PATH
        assert detail["group_id"] == "group_000000000000"

    def test_set_selection(self, client, fake_resolver, reviewer_headers, sample_groups):
        group_id = sample_groups[0].group_id
        response = client.put(
            f"/admin/duplicates/{group_id}/selections/lesson_a2",
            json={"action": "archive", "archive_to": "lesson_a1"},
            headers=reviewer_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["selections"]["lesson_a2"] == {"action": "archive", "archive_to": "lesson_a1"}
        assert data["has_changes"] is True
        assert data["kept_lesson_ids"] == ["lesson_a1"]

    def test_keep_selection_drops_archive_target(self, client, fake_resolver, reviewer_headers, sample_groups):
        group_id = sample_groups[0].group_id
        response = client.put(
            f"/admin/duplicates/{group_id}/selections/lesson_a2",
            json={"action": "keep", "archive_to": "lesson_a1"},
            headers=reviewer_headers,
        )
        assert response.json()["selections"]["lesson_a2"] == {"action": "keep", "archive_to": None}

    def test_set_selection_for_unknown_lesson(self, client, fake_resolver, reviewer_headers, sample_groups):
        response = client.put(
            f"/admin/duplicates/{sample_groups[0].group_id}/selections/lesson_zz",
            json={"action": "keep"},
            headers=reviewer_headers,
        )
        assert response.status_code == 400

    def test_switching_groups_with_unsaved_changes(self, client, fake_resolver, reviewer_headers, sample_groups):
        first, second = sample_groups[0].group_id, sample_groups[1].group_id
        client.post(f"/admin/duplicates/{first}/quick-keep/lesson_a1", headers=reviewer_headers)

        response = client.get(f"/admin/duplicates/{second}", headers=reviewer_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["current_group_id"] == first

        response = client.get(f"/admin/duplicates/{second}", params={"force": True}, headers=reviewer_headers)
        assert response.status_code == 200
        assert response.json()["has_changes"] is False

    def test_skip(self, client, fake_resolver, reviewer_headers, sample_groups):
        response = client.post(f"/admin/duplicates/{sample_groups[0].group_id}/skip", headers=reviewer_headers)
        data = response.json()
        assert data["status"] == "ok"
        assert data["next_group_id"] == sample_groups[1].group_id
        assert data["state"]["total_groups"] == 3
        assert fake_resolver.resolve_calls == []

    def test_save_and_next(self, client, fake_resolver, reviewer_headers, sample_groups):
        group_id = sample_groups[1].group_id
        client.post(f"/admin/duplicates/{group_id}/quick-keep/lesson_b2", headers=reviewer_headers)

        response = client.post(f"/admin/duplicates/{group_id}/save-and-next", headers=reviewer_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["next_group_id"] == sample_groups[2].group_id
        assert data["navigate_to"] == group_path(sample_groups[2].group_id)
        assert data["notice"]["message"] == "Resolved group: kept 1, archived 2"
        assert data["state"]["total_groups"] == 2
        resolution = fake_resolver.resolve_calls[0]
        assert {(r.lesson_id, r.action, r.archive_to) for r in resolution.resolutions} == {
            ("lesson_b1", "archive", "lesson_b2"),
            ("lesson_b2", "keep", None),
            ("lesson_b3", "archive", "lesson_b2"),
        }

    def test_save_and_next_invalid_selection(self, client, fake_resolver, reviewer_headers, sample_groups):
        group_id = sample_groups[0].group_id
        client.put(
            f"/admin/duplicates/{group_id}/selections/lesson_a2",
            json={"action": "archive"},
            headers=reviewer_headers,
        )
        response = client.post(f"/admin/duplicates/{group_id}/save-and-next", headers=reviewer_headers)
        assert response.status_code == 400
        assert fake_resolver.resolve_calls == []

    def test_save_and_next_rejected_keeps_selections(self, client, fake_resolver, reviewer_headers, sample_groups):
        fake_resolver.resolve_rejection = "Archive function failed"
        group_id = sample_groups[0].group_id
        client.post(f"/admin/duplicates/{group_id}/quick-keep/lesson_a2", headers=reviewer_headers)

        response = client.post(f"/admin/duplicates/{group_id}/save-and-next", headers=reviewer_headers)

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "error"
        assert data["state"]["submit_error"] == "Archive function failed"
        assert data["state"]["is_submitting"] is False
        assert data["state"]["selections"]["lesson_a1"]["archive_to"] == "lesson_a2"

    def test_keep_all(self, client, fake_resolver, reviewer_headers, sample_groups):
        group = sample_groups[1]
        response = client.post(f"/admin/duplicates/{group.group_id}/keep-all", headers=reviewer_headers)
        data = response.json()
        assert data["status"] == "ok"
        assert data["notice"]["message"] == "Kept all 3 lessons as non-duplicates"
        assert fake_resolver.dismiss_calls == [
            {"lesson_ids": group.lesson_ids, "detection_method": "both", "reason": KEEP_ALL_REASON}
        ]

    def test_keep_all_last_group_returns_to_list(self, client, fake_resolver, reviewer_headers, sample_groups):
        response = client.post(f"/admin/duplicates/{sample_groups[2].group_id}/keep-all", headers=reviewer_headers)
        data = response.json()
        assert data["navigate_to"] == LIST_PATH
        assert data["next_group_id"] is None

    def test_resolved_group_is_gone(self, client, fake_resolver, reviewer_headers, sample_groups):
        group_id = sample_groups[0].group_id
        client.post(f"/admin/duplicates/{group_id}/keep-all", headers=reviewer_headers)
        response = client.get(f"/admin/duplicates/{group_id}", headers=reviewer_headers)
        assert response.status_code == 404


class TestReportSummary:
    """Tests for GET /admin/duplicates/report"""

    def test_report_summary(self, client, reviewer_headers, tmp_path):
        path = tmp_path / "report.json"
        path.write_text(json.dumps({
            "version": "3.0",
            "analysisDate": "2025-06-01",
            "groups": [
                {"groupId": "g1", "recommendedAction": "keep_all", "lessons": [{"lessonId": "a"}, {"lessonId": "b"}]},
            ],
        }), encoding="utf-8")
        with patch("api_duplicates.DUPLICATE_REPORT_PATH", str(path)):
            response = client.get("/admin/duplicates/report", headers=reviewer_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total_groups"] == 1
        assert data["by_action"]["keep_all"] == 1

    def test_missing_report(self, client, reviewer_headers, tmp_path):
        with patch("api_duplicates.DUPLICATE_REPORT_PATH", str(tmp_path / "none.json")):
            response = client.get("/admin/duplicates/report", headers=reviewer_headers)
        assert response.status_code == 404

    def test_unreadable_report(self, client, reviewer_headers, tmp_path):
        path = tmp_path / "report.json"
        path.write_text(json.dumps({"version": "9.9"}), encoding="utf-8")
        with patch("api_duplicates.DUPLICATE_REPORT_PATH", str(path)):
            response = client.get("/admin/duplicates/report", headers=reviewer_headers)
        assert response.status_code == 422

    def test_report_with_invalid_encoding(self, client, reviewer_headers, tmp_path):
        path = tmp_path / "report.json"
        path.write_bytes(b'{"version": "3.0", "groups": [], "x": "\xff\xfe"}')
        with patch("api_duplicates.DUPLICATE_REPORT_PATH", str(path)):
            response = client.get("/admin/duplicates/report", headers=reviewer_headers)
        assert response.status_code == 422
