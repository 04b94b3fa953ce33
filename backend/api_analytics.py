"""
API endpoints for admin analytics.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import require_permission
from models_analytics import AnalyticsOverview, InvitationStats, UserStats
from services_admin_analytics import load_overview

logger = logging.getLogger("lesson_admin")

router = APIRouter(prefix="/admin/analytics", tags=["analytics"])

require_analytics = require_permission("view_analytics")


def _overview(**kwargs) -> AnalyticsOverview:
    try:
        return load_overview(**kwargs)
    except Exception as e:
        logger.error(f"Error loading analytics: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to load analytics: {str(e)}")


@router.get("", response_model=AnalyticsOverview)
def get_analytics_overview(
    login_days: int = Query(7, ge=1, le=90),
    growth_months: int = Query(6, ge=1, le=24),
    leaderboard_days: int = Query(30, ge=1, le=365),
    auth: Dict[str, Any] = Depends(require_analytics),
):
    """Everything the analytics dashboard shows, in one call."""
    return _overview(login_days=login_days, growth_months=growth_months, leaderboard_days=leaderboard_days)


@router.get("/users", response_model=UserStats)
def get_user_stats(auth: Dict[str, Any] = Depends(require_analytics)):
    return _overview().users


@router.get("/invitations", response_model=InvitationStats)
def get_invitation_stats(auth: Dict[str, Any] = Depends(require_analytics)):
    return _overview().invitations
