"""
Tests for user invitations: the admin endpoints and the public accept flow.

Database helpers, the audit writer and outgoing email are patched where the
modules under test import them.
"""
from datetime import datetime, timedelta, timezone

import pytest  # type: ignore[reportMissingImports]
from unittest.mock import MagicMock, patch

from services_invitations import invitation_status
from tests.mock_helpers import ADMIN_ID, MockCursor, mock_transaction

INVITATION_ID = "44444444-4444-4444-4444-444444444444"


def invitation_row(**overrides):
    now = datetime.now(timezone.utc)
    row = {
        "id": INVITATION_ID,
        "email": "new.teacher@schools.nyc.gov",
        "role": "teacher",
        "invited_by": ADMIN_ID,
        "invited_at": now - timedelta(days=1),
        "expires_at": now + timedelta(days=6),
        "accepted_at": None,
        "token": "invite-token",
        "school_name": "PS 123",
        "school_borough": "Bronx",
        "message": "Welcome aboard",
        "created_at": now - timedelta(days=1),
    }
    row.update(overrides)
    return row


@pytest.fixture
def audit():
    with patch("services_invitations.log_user_management_action") as mock_audit:
        yield mock_audit


@pytest.fixture
def invitation_email():
    with patch("api_invitations.send_invitation_email") as mock_send:
        yield mock_send


@pytest.fixture
def welcome_email():
    with patch("api_invitations.send_welcome_email") as mock_send:
        yield mock_send


class TestInvitationStatus:
    """Tests for invitation_status"""

    def test_pending(self):
        assert invitation_status(invitation_row()) == "pending"

    def test_expired(self):
        row = invitation_row(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        assert invitation_status(row) == "expired"

    def test_accepted_wins_over_expiry(self):
        now = datetime.now(timezone.utc)
        row = invitation_row(accepted_at=now - timedelta(days=3), expires_at=now - timedelta(days=1))
        assert invitation_status(row) == "accepted"


class TestCreateInvitation:
    """Tests for POST /admin/invitations"""

    def test_create_invitation(self, client, admin_headers, audit, invitation_email):
        row = invitation_row()
        with patch("services_invitations.execute_query", side_effect=[[], [], [row]]) as query:
            response = client.post(
                "/admin/invitations",
                json={"email": "New.Teacher@schools.nyc.gov", "role": "teacher", "school_borough": "Bronx"},
                headers=admin_headers,
            )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"
        assert data["email"] == "new.teacher@schools.nyc.gov"

        insert_params = query.call_args_list[2].args[1]
        assert insert_params[0] == "new.teacher@schools.nyc.gov"
        assert insert_params[2] == ADMIN_ID
        assert audit.call_args.args == (ADMIN_ID, "invite_sent")

        invitation_email.assert_called_once()
        sent_row, inviter, permissions = invitation_email.call_args.args
        assert sent_row["token"] == "invite-token"
        assert "submit_lessons" in permissions

    def test_existing_user(self, client, admin_headers, audit, invitation_email):
        with patch("services_invitations.execute_query", side_effect=[[{"id": "u1"}]]):
            response = client.post("/admin/invitations", json={"email": "taken@example.org"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "User already exists"
        invitation_email.assert_not_called()

    def test_pending_invitation_exists(self, client, admin_headers, audit, invitation_email):
        with patch("services_invitations.execute_query", side_effect=[[], [{"id": INVITATION_ID}]]):
            response = client.post("/admin/invitations", json={"email": "again@example.org"}, headers=admin_headers)
        assert response.status_code == 400
        assert "already been sent" in response.json()["detail"]

    def test_invalid_email(self, client, admin_headers):
        response = client.post("/admin/invitations", json={"email": "not-an-email"}, headers=admin_headers)
        assert response.status_code == 422

    def test_super_admin_cannot_be_invited(self, client, admin_headers):
        response = client.post(
            "/admin/invitations",
            json={"email": "boss@example.org", "role": "super_admin"},
            headers=admin_headers,
        )
        assert response.status_code == 422

    def test_reviewer_cannot_invite(self, client, reviewer_headers):
        response = client.post("/admin/invitations", json={"email": "x@example.org"}, headers=reviewer_headers)
        assert response.status_code == 403


class TestListInvitations:
    """Tests for GET /admin/invitations"""

    def test_list_with_status(self, client, admin_headers):
        expired = invitation_row(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        with patch("services_invitations.execute_query", side_effect=[[{"total": 1}], [expired]]) as query:
            response = client.get(
                "/admin/invitations",
                params={"status": "expired", "page": 2, "page_size": 10},
                headers=admin_headers,
            )
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["invitations"][0]["status"] == "expired"

        page_query, page_params = query.call_args_list[1].args
        assert "expires_at <= NOW()" in page_query
        assert page_params == (10, 10)

    def test_search_escapes_wildcards(self, client, admin_headers):
        with patch("services_invitations.execute_query", side_effect=[[{"total": 0}], []]) as query:
            client.get("/admin/invitations", params={"search": "50%_off"}, headers=admin_headers)
        count_params = query.call_args_list[0].args[1]
        assert count_params == ("%50\\%\\_off%", "%50\\%\\_off%")


class TestResendAndCancel:
    """Tests for resend and cancel"""

    def test_resend(self, client, admin_headers, audit, invitation_email):
        row = invitation_row()
        with patch("services_invitations.execute_query", side_effect=[[row], [row]]):
            response = client.post(f"/admin/invitations/{INVITATION_ID}/resend", headers=admin_headers)
        assert response.status_code == 200
        assert audit.call_args.args == (ADMIN_ID, "invite_resent")
        invitation_email.assert_called_once()

    def test_resend_accepted(self, client, admin_headers, audit, invitation_email):
        row = invitation_row(accepted_at=datetime.now(timezone.utc))
        with patch("services_invitations.execute_query", side_effect=[[row]]):
            response = client.post(f"/admin/invitations/{INVITATION_ID}/resend", headers=admin_headers)
        assert response.status_code == 400
        invitation_email.assert_not_called()

    def test_resend_unknown(self, client, admin_headers, audit, invitation_email):
        with patch("services_invitations.execute_query", side_effect=[[]]):
            response = client.post(f"/admin/invitations/{INVITATION_ID}/resend", headers=admin_headers)
        assert response.status_code == 404

    def test_cancel(self, client, admin_headers, audit):
        with patch("services_invitations.execute_query", side_effect=[[invitation_row()]]), \
                patch("services_invitations.execute_update") as update:
            response = client.delete(f"/admin/invitations/{INVITATION_ID}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert update.call_args.args[0].startswith("DELETE FROM user_invitations")
        assert audit.call_args.args == (ADMIN_ID, "invite_cancelled")


class TestAcceptInvitation:
    """Tests for the public /invitations routes"""

    def test_validate_token(self, client):
        with patch("services_invitations.execute_query", return_value=[invitation_row()]):
            response = client.get("/invitations/validate", params={"token": "invite-token"})
        assert response.status_code == 200
        assert response.json()["role"] == "teacher"

    def test_validate_unknown_token(self, client):
        with patch("services_invitations.execute_query", return_value=[]):
            response = client.get("/invitations/validate", params={"token": "nope"})
        assert response.status_code == 404

    def test_validate_expired_token(self, client):
        row = invitation_row(expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
        with patch("services_invitations.execute_query", return_value=[row]):
            response = client.get("/invitations/validate", params={"token": "invite-token"})
        assert response.status_code == 410
        assert response.json()["detail"] == "This invitation has expired"

    def test_accept(self, client, audit, welcome_email):
        cursor = MockCursor()
        hasher = MagicMock()
        hasher.hash.return_value = "hashed"
        with patch("services_invitations.execute_query", side_effect=[[invitation_row()], []]), \
                patch("services_invitations.transaction", mock_transaction(cursor)), \
                patch("services_invitations.pwd_context", hasher):
            response = client.post(
                "/invitations/accept",
                json={"token": "invite-token", "full_name": " Dana Park ", "password": "garden-beds-2025"},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["role"] == "teacher"

        insert_params = cursor.executed[0][1]
        assert insert_params[2] == "new.teacher@schools.nyc.gov"
        assert insert_params[3] == "Dana Park"
        assert insert_params[9] == "hashed"
        assert cursor.executed[1][0].strip().startswith("UPDATE user_invitations SET accepted_at")
        assert audit.call_args.args[1] == "invite_accepted"
        welcome_email.assert_called_once_with("new.teacher@schools.nyc.gov", "Dana Park", "teacher")

    def test_short_password(self, client, welcome_email):
        response = client.post(
            "/invitations/accept",
            json={"token": "invite-token", "full_name": "Dana Park", "password": "short"},
        )
        assert response.status_code == 400
        welcome_email.assert_not_called()

    def test_already_accepted(self, client, welcome_email):
        row = invitation_row(accepted_at=datetime.now(timezone.utc))
        with patch("services_invitations.execute_query", return_value=[row]):
            response = client.post(
                "/invitations/accept",
                json={"token": "invite-token", "full_name": "Dana Park", "password": "garden-beds-2025"},
            )
        assert response.status_code == 410

    def test_email_already_registered(self, client, welcome_email):
        with patch("services_invitations.execute_query", side_effect=[[invitation_row()], [{"id": "u1"}]]):
            response = client.post(
                "/invitations/accept",
                json={"token": "invite-token", "full_name": "Dana Park", "password": "garden-beds-2025"},
            )
        assert response.status_code == 400
        assert response.json()["detail"] == "Email already registered"
