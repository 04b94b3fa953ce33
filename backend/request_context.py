import json
import os
import uuid

from fastapi import Request, Response

SESSION_COOKIE = "la_session_id"


def get_or_create_session_id(request: Request) -> str:
    # Explicit header wins so API clients without cookies can keep a review session
    sid = request.headers.get("x-session-id") or request.cookies.get(SESSION_COOKIE)
    if sid and len(sid) <= 128:
        return sid
    return uuid.uuid4().hex


def set_session_cookie(response: Response, session_id: str) -> None:
    secure_cookie = os.getenv("ENVIRONMENT", "development") == "production"
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_id,
        httponly=True,
        secure=secure_cookie,
        samesite="lax",
        max_age=60 * 60 * 24,
    )


def get_client_ip(request: Request) -> str:
    # Load balancer adds X-Forwarded-For; take the first hop
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_session_id(request: Request) -> str:
    """Session id attached by the request middleware (falls back to headers/cookies)."""
    sid = getattr(request.state, "session_id", None)
    return sid or get_or_create_session_id(request)


def structured_log_line(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
