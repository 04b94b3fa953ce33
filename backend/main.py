from fastapi import FastAPI, Request, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import asyncio
import logging
import time
import uuid

from api_duplicates import router as duplicates_router
from api_users import router as users_router
from api_invitations import router as invitations_router, public_router as public_invitations_router
from api_analytics import router as analytics_router
from api_submissions import router as submissions_router
from api_health import router as health_router
from config import (
    CORS_ORIGINS,
    ENABLE_REQUEST_TIMEOUT,
    ENVIRONMENT,
    INIT_DB_ON_STARTUP,
    REQUEST_TIMEOUT_SECONDS,
    SESSION_SWEEP_SECONDS,
)
from middleware_timeout import TimeoutMiddleware
from request_context import (
    SESSION_COOKIE,
    get_client_ip,
    get_or_create_session_id,
    set_session_cookie,
    structured_log_line,
)
from services_review_sessions import get_review_store

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("lesson_admin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    if INIT_DB_ON_STARTUP:
        try:
            from db_postgres import init_postgres_db
            init_postgres_db()
        except Exception as e:
            # Don't crash the app; every request will surface the db error anyway
            logger.error(f"Error initializing admin tables: {e}", exc_info=True)

    async def session_sweep_loop():
        while True:
            await asyncio.sleep(SESSION_SWEEP_SECONDS)
            removed = get_review_store().cleanup_expired()
            if removed:
                logger.info(structured_log_line({"event": "review_sessions_swept", "removed": removed}))

    sweep_task = asyncio.create_task(session_sweep_loop())

    yield  # App runs here

    sweep_task.cancel()


app = FastAPI(
    title="Lesson Library Admin",
    description="Admin API for the lesson library: duplicate review, users, invitations, analytics and submissions.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if ENABLE_REQUEST_TIMEOUT:
    app.add_middleware(TimeoutMiddleware, timeout_seconds=REQUEST_TIMEOUT_SECONDS)

app.include_router(health_router)
app.include_router(duplicates_router)
app.include_router(users_router)
app.include_router(invitations_router)
app.include_router(public_invitations_router)
app.include_router(analytics_router)
app.include_router(submissions_router)


@app.middleware("http")
async def request_observability(request: Request, call_next):
    start = time.perf_counter()
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    session_id = get_or_create_session_id(request)

    # Attach context for downstream usage
    request.state.request_id = request_id
    request.state.session_id = session_id
    request.state.client_ip = get_client_ip(request)

    response = None
    try:
        response = await call_next(request)
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            structured_log_line(
                {
                    "event": "request",
                    "request_id": request_id,
                    "session_id": session_id,
                    "user_id": getattr(request.state, "user_id", None),
                    "route": request.url.path,
                    "method": request.method,
                    "status": response.status_code if response is not None else 500,
                    "latency_ms": latency_ms,
                }
            )
        )

    # Ensure session cookie exists
    if isinstance(response, Response):
        if request.cookies.get(SESSION_COOKIE) != session_id:
            set_session_cookie(response, session_id)
        response.headers["x-request-id"] = request_id
    return response


# Centralized error handling
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTP exceptions (4xx, 5xx).
    Logs the error with appropriate level and returns JSON response.
    """
    # Log 4xx errors at WARNING level, 5xx at ERROR level
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code} error on {request.method} {request.url.path}: {exc.detail}",
            extra={"status_code": exc.status_code, "method": request.method, "path": request.url.path},
        )
    else:
        logger.warning(
            f"HTTP {exc.status_code} error on {request.method} {request.url.path}: {exc.detail}",
            extra={"status_code": exc.status_code, "method": request.method, "path": request.url.path},
        )

    if ENVIRONMENT == "production" and exc.status_code == 500:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle request validation errors (422).
    These are client errors, so log at WARNING level.
    """
    logger.warning(
        f"Validation error on {request.method} {request.url.path}",
        extra={"method": request.method, "path": request.url.path, "errors": exc.errors()},
    )
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError):
    # pydantic v2 puts the raw exception object in ctx for some validators
    from fastapi.encoders import jsonable_encoder
    return jsonable_encoder(exc.errors(), custom_encoder={Exception: str})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unhandled exceptions.
    Logs full stack trace but returns sanitized error message to client.
    """
    logger.exception(
        f"Unhandled exception on {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "exception_type": type(exc).__name__,
        },
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def read_root():
    return {"status": "ok", "message": "Lesson Library Admin backend is running"}
