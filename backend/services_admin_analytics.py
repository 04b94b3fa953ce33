"""
Admin analytics.

Each statistic is a pure function over rows already fetched from the row
store, so the numbers can be tested without a database. `load_overview` does
the fetching and hands the rows to them.
"""
import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from models_analytics import (
    ActivityItem,
    AnalyticsOverview,
    DailyCount,
    GrowthPoint,
    InvitationStats,
    LeaderboardEntry,
    UserStats,
)

logger = logging.getLogger("lesson_admin")

TOP_N = 5
RECENT_ACTIVITY_LIMIT = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


def user_stats(users: List[Dict[str, Any]], now: Optional[datetime] = None) -> UserStats:
    now = now or _now()
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)
    return UserStats(
        total=len(users),
        active=sum(1 for u in users if u.get("is_active")),
        inactive=sum(1 for u in users if not u.get("is_active")),
        new_this_week=sum(1 for u in users if u.get("created_at") and u["created_at"] >= week_ago),
        new_this_month=sum(1 for u in users if u.get("created_at") and u["created_at"] >= month_ago),
        by_role=dict(Counter(u.get("role") or "unknown" for u in users)),
    )


def invitation_stats(invitations: List[Dict[str, Any]], now: Optional[datetime] = None) -> InvitationStats:
    now = now or _now()
    accepted = sum(1 for inv in invitations if inv.get("accepted_at"))
    pending = sum(1 for inv in invitations if not inv.get("accepted_at") and inv["expires_at"] > now)
    expired = sum(1 for inv in invitations if not inv.get("accepted_at") and inv["expires_at"] <= now)
    total = len(invitations)
    return InvitationStats(
        total=total,
        pending=pending,
        accepted=accepted,
        expired=expired,
        acceptance_rate=round(accepted / total * 100, 1) if total else 0.0,
    )


def logins_by_day(logins: Iterable[Dict[str, Any]], days: int = 7, now: Optional[datetime] = None) -> List[DailyCount]:
    """Login counts per calendar day for the last `days` days, oldest first, zero-filled."""
    now = now or _now()
    today = now.date()
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    counts = Counter(row["created_at"].date() for row in logins if row.get("created_at"))
    return [DailyCount(date=day.isoformat(), count=counts.get(day, 0)) for day in window]


def top_by_count(
    user_ids: Iterable[str],
    profiles: Dict[str, Dict[str, Any]],
    limit: int = TOP_N,
) -> List[LeaderboardEntry]:
    counts = Counter(str(uid) for uid in user_ids if uid)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
    entries = []
    for user_id, count in ranked:
        profile = profiles.get(user_id, {})
        entries.append(
            LeaderboardEntry(
                user_id=user_id,
                name=profile.get("full_name") or "Unknown",
                email=profile.get("email") or "",
                count=count,
            )
        )
    return entries


def recent_activity(
    audit_rows: List[Dict[str, Any]],
    profiles: Dict[str, Dict[str, Any]],
    limit: int = RECENT_ACTIVITY_LIMIT,
) -> List[ActivityItem]:
    rows = sorted(audit_rows, key=lambda r: r["created_at"], reverse=True)[:limit]
    return [
        ActivityItem(
            id=str(row["id"]),
            actor_name=profiles.get(str(row.get("actor_id")), {}).get("full_name") or "Unknown",
            action=row["action"],
            target_email=row.get("target_email"),
            created_at=row["created_at"],
        )
        for row in rows
    ]


def _month_end(year: int, month: int, tz) -> datetime:
    if month == 12:
        first_of_next = datetime(year + 1, 1, 1, tzinfo=tz)
    else:
        first_of_next = datetime(year, month + 1, 1, tzinfo=tz)
    return first_of_next - timedelta(microseconds=1)


def growth_series(
    user_created: List[datetime],
    invitation_created: List[datetime],
    months: int = 6,
    now: Optional[datetime] = None,
) -> List[GrowthPoint]:
    """
    Cumulative users and invitations at each month end, oldest first.

    The current month is measured at `now` rather than its (future) end.
    """
    now = now or _now()
    points = []
    for back in range(months - 1, -1, -1):
        index = now.year * 12 + (now.month - 1) - back
        year, month = divmod(index, 12)
        month += 1
        cutoff = min(_month_end(year, month, now.tzinfo), now)
        points.append(
            GrowthPoint(
                date=date(year, month, 1).strftime("%Y-%m"),
                users=sum(1 for created in user_created if created and created <= cutoff),
                invitations=sum(1 for created in invitation_created if created and created <= cutoff),
            )
        )
    return points


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _profiles_by_id(user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    from db_postgres import execute_query

    ids = sorted({str(uid) for uid in user_ids if uid})
    if not ids:
        return {}
    rows = execute_query(
        "SELECT id, full_name, email FROM user_profiles WHERE id = ANY(%s::uuid[])",
        (ids,),
    ) or []
    return {str(row["id"]): row for row in rows}


def _optional_rows(query: str, params: tuple) -> List[Dict[str, Any]]:
    """Submission tables may not exist in every environment."""
    from db_postgres import execute_query

    try:
        return execute_query(query, params) or []
    except Exception as e:
        logger.warning(f"Analytics query skipped: {e}")
        return []


def load_overview(login_days: int = 7, growth_months: int = 6, leaderboard_days: int = 30) -> AnalyticsOverview:
    from db_postgres import execute_query

    now = _now()
    users = execute_query("SELECT role, is_active, created_at FROM user_profiles") or []
    invitations = execute_query("SELECT accepted_at, expires_at, created_at FROM user_invitations") or []
    logins = execute_query(
        "SELECT created_at FROM user_management_audit WHERE action = 'login' AND created_at >= %s",
        (now - timedelta(days=login_days),),
    ) or []

    since = now - timedelta(days=leaderboard_days)
    submissions = _optional_rows("SELECT teacher_id FROM lesson_submissions WHERE created_at >= %s", (since,))
    reviews = _optional_rows("SELECT reviewer_id FROM submission_reviews WHERE created_at >= %s", (since,))
    audit_rows = execute_query(
        """
        SELECT id, action, target_email, created_at, actor_id
        FROM user_management_audit
        ORDER BY created_at DESC
        LIMIT %s
        """,
        (RECENT_ACTIVITY_LIMIT,),
    ) or []

    profiles = _profiles_by_id(
        [s["teacher_id"] for s in submissions]
        + [r["reviewer_id"] for r in reviews]
        + [a["actor_id"] for a in audit_rows]
    )

    return AnalyticsOverview(
        users=user_stats(users, now),
        invitations=invitation_stats(invitations, now),
        logins_by_day=logins_by_day(logins, login_days, now),
        top_submitters=top_by_count([s["teacher_id"] for s in submissions], profiles),
        top_reviewers=top_by_count([r["reviewer_id"] for r in reviews], profiles),
        recent_activity=recent_activity(audit_rows, profiles),
        growth=growth_series(
            [u["created_at"] for u in users if u.get("created_at")],
            [i["created_at"] for i in invitations if i.get("created_at")],
            growth_months,
            now,
        ),
    )
