"""
Tests for transactional email sends.
"""
import json

import httpx
from unittest.mock import patch

import services_email
from services_email import invitation_link, send_email, send_invitation_email

_RealClient = httpx.Client


def client_factory(handler):
    def factory(**kwargs):
        return _RealClient(transport=httpx.MockTransport(handler), **kwargs)
    return factory


class TestSendEmail:
    """Tests for send_email"""

    def test_skipped_without_function_url(self):
        with patch("services_email.EMAIL_FUNCTION_URL", None):
            assert send_email("welcome", "a@example.org", {}) is False

    def test_posts_payload(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"ok": True})

        with patch("services_email.EMAIL_FUNCTION_URL", "https://functions.example.org/send-email"), \
                patch("services_email.EMAIL_FUNCTION_TOKEN", "fn-token"), \
                patch.object(services_email.httpx, "Client", side_effect=client_factory(handler)):
            assert send_email("welcome", "a@example.org", {"role": "teacher"}) is True

        assert seen["body"] == {"type": "welcome", "to": "a@example.org", "data": {"role": "teacher"}}
        assert seen["auth"] == "Bearer fn-token"

    def test_server_error_returns_false(self):
        with patch("services_email.EMAIL_FUNCTION_URL", "https://functions.example.org/send-email"), \
                patch.object(services_email.httpx, "Client", side_effect=client_factory(lambda r: httpx.Response(502))):
            assert send_email("welcome", "a@example.org", {}) is False

    def test_invitation_email_payload(self):
        invitation = {
            "id": "inv-1",
            "email": "t@example.org",
            "token": "tok",
            "role": "teacher",
            "message": None,
            "expires_at": "2025-03-22 12:00:00+00:00",
        }
        with patch("services_email.send_email", return_value=True) as send:
            assert send_invitation_email(invitation, "Admin", ["view_lessons"]) is True
        email_type, to, data = send.call_args.args
        assert email_type == "invitation"
        assert data["acceptUrl"] == invitation_link("tok")
        assert data["acceptUrl"].endswith("/accept-invitation?token=tok")
