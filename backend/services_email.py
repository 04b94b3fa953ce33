"""
Transactional email via the hosted `send-email` function.

Sends are fire-and-forget: routers schedule them with FastAPI's
BackgroundTasks and a failed send is logged, never raised.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from config import APP_BASE_URL, EMAIL_FUNCTION_TOKEN, EMAIL_FUNCTION_URL, EMAIL_TIMEOUT_SECONDS, ENVIRONMENT

logger = logging.getLogger("lesson_admin")


def invitation_link(token: str) -> str:
    return f"{APP_BASE_URL.rstrip('/')}/accept-invitation?token={token}"


def send_email(email_type: str, to: str, data: Dict[str, Any]) -> bool:
    """POST one email to the email function. Returns True if it was accepted."""
    if not EMAIL_FUNCTION_URL:
        logger.warning(f"EMAIL_FUNCTION_URL not set; skipping {email_type} email to {to}")
        return False

    headers = {"Content-Type": "application/json"}
    if EMAIL_FUNCTION_TOKEN:
        headers["Authorization"] = f"Bearer {EMAIL_FUNCTION_TOKEN}"

    try:
        with httpx.Client(timeout=EMAIL_TIMEOUT_SECONDS) as client:
            response = client.post(
                EMAIL_FUNCTION_URL,
                json={"type": email_type, "to": to, "data": data},
                headers=headers,
            )
            response.raise_for_status()
        logger.info(f"Sent {email_type} email to {to}")
        return True
    except httpx.HTTPError as e:
        logger.warning(f"Failed to send {email_type} email to {to}: {e}")
        return False


def send_invitation_email(
    invitation: Dict[str, Any],
    inviter_name: Optional[str],
    permissions: List[str],
) -> bool:
    sent = send_email(
        "invitation",
        invitation["email"],
        {
            "invitationId": str(invitation["id"]),
            "token": invitation["token"],
            "inviterName": inviter_name,
            "role": invitation["role"],
            "customMessage": invitation.get("message"),
            "permissions": permissions,
            "expiresAt": str(invitation["expires_at"]),
            "acceptUrl": invitation_link(invitation["token"]),
        },
    )
    if not sent and ENVIRONMENT != "production":
        # Admin can still copy the link from the logs in development
        logger.info(f"Invitation link for {invitation['email']}: {invitation_link(invitation['token'])}")
    return sent


def send_welcome_email(email: str, full_name: str, role: str) -> bool:
    return send_email("welcome", email, {"recipientName": full_name, "role": role})
