"""
Health check endpoints for monitoring system status.
"""
import logging

from fastapi import APIRouter

from services_review_sessions import get_review_store

logger = logging.getLogger("lesson_admin")

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_check():
    """Basic health check endpoint."""
    return {"status": "ok", "service": "lesson-admin-backend"}


@router.get("/postgres")
def postgres_health_check():
    """Check row-store connectivity."""
    from db_postgres import execute_query

    try:
        execute_query("SELECT 1 AS ok")
        return {"status": "healthy", "database": "postgres", "query_test": "passed"}
    except Exception as e:
        logger.error(f"Postgres health check failed: {e}")
        return {"status": "unhealthy", "database": "postgres", "error": str(e), "query_test": "failed"}


@router.get("/sessions")
def review_session_stats():
    """Review session store size and hit rate."""
    return get_review_store().get_stats()
