# Admin analytics response models.
from datetime import datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, Field


class UserStats(BaseModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    new_this_week: int = 0
    new_this_month: int = 0
    by_role: Dict[str, int] = Field(default_factory=dict)


class InvitationStats(BaseModel):
    total: int = 0
    pending: int = 0
    accepted: int = 0
    expired: int = 0
    acceptance_rate: float = 0.0


class DailyCount(BaseModel):
    date: str
    count: int


class LeaderboardEntry(BaseModel):
    user_id: str
    name: str
    email: str = ""
    count: int


class ActivityItem(BaseModel):
    id: str
    actor_name: str
    action: str
    target_email: Optional[str] = None
    created_at: datetime


class GrowthPoint(BaseModel):
    date: str
    users: int
    invitations: int


class AnalyticsOverview(BaseModel):
    users: UserStats
    invitations: InvitationStats
    logins_by_day: List[DailyCount]
    top_submitters: List[LeaderboardEntry]
    top_reviewers: List[LeaderboardEntry]
    recent_activity: List[ActivityItem]
    growth: List[GrowthPoint]
