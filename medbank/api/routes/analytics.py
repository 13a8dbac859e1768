"""Analytics routes — signup/activity aggregations for the admin dashboard."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac import PERM_VIEW_ANALYTICS, require_permission
from ...config import MedbankConfig
from ...dependencies import get_app_config, get_db
from ...engine.bucketizer import (
    Interval,
    TimedRecord,
    bucketize,
    cohort_lookback_start,
    range_bounds,
)
from ...models.user import User
from ...models.user_activity import UserActivity
from ...utils.logging import get_logger

logger = get_logger("api.analytics")

router = APIRouter(prefix="/admin", tags=["admin-analytics"])

DEFAULT_RANGE_DAYS = 30


def _recent_user(u: User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "created_at": u.created_at.isoformat(),
        "has_active_subscription": u.has_active_subscription,
    }


@router.get("/analytics")
async def get_admin_analytics(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    interval: Interval = Query(Interval.WEEKLY),
    db: AsyncSession = Depends(get_db),
    config: MedbankConfig = Depends(get_app_config),
    current_user: dict = Depends(require_permission(PERM_VIEW_ANALYTICS)),
):
    """Bucketed signups/activity, range overview, weekly rates and latest signups.

    An end date before the start date is not rejected; it yields an empty
    bucket list and zero totals.
    """
    if end_date is None:
        end_date = datetime.now(timezone.utc).date()
    if start_date is None:
        start_date = end_date - timedelta(days=DEFAULT_RANGE_DAYS - 1)

    window_start, window_end = range_bounds(start_date, end_date)

    users_in_range = (await db.execute(
        select(User)
        .where(User.created_at >= window_start, User.created_at <= window_end)
        .order_by(User.created_at.desc(), User.id.desc())
    )).scalars().all()

    activity_rows = (await db.execute(
        select(UserActivity.user_id, UserActivity.created_at)
        .where(UserActivity.created_at >= window_start, UserActivity.created_at <= window_end)
        .order_by(UserActivity.created_at.asc())
    )).all()

    total_users = (await db.execute(select(func.count(User.id)))).scalar() or 0

    prior_last_seen: dict = {}
    prior_activity: list = []
    if config.analytics_cohort_metrics:
        # the bucket before the first one plus the first bucket's days before start_date
        lookback_start = cohort_lookback_start(start_date, interval)
        prior_rows = (await db.execute(
            select(UserActivity.user_id, func.max(UserActivity.created_at))
            .where(UserActivity.created_at < lookback_start)
            .group_by(UserActivity.user_id)
        )).all()
        prior_last_seen = {row[0]: row[1] for row in prior_rows}
        lookback_rows = (await db.execute(
            select(UserActivity.user_id, UserActivity.created_at)
            .where(UserActivity.created_at >= lookback_start, UserActivity.created_at < window_start)
        )).all()
        prior_activity = [TimedRecord(row.user_id, row.created_at) for row in lookback_rows]

    report = bucketize(
        start_date,
        end_date,
        interval,
        signups=[TimedRecord(u.id, u.created_at) for u in users_in_range],
        activity=[TimedRecord(row.user_id, row.created_at) for row in activity_rows],
        prior_last_seen=prior_last_seen,
        prior_activity=prior_activity,
        total_sign_ups=total_users,
        cohort_metrics=config.analytics_cohort_metrics,
    )

    limit = config.analytics_recent_users_limit
    recent_users = list(users_in_range[:limit])
    if not recent_users:
        recent_users = (await db.execute(
            select(User).order_by(User.created_at.desc(), User.id.desc()).limit(limit)
        )).scalars().all()

    logger.info(
        "admin_analytics_served",
        admin_id=current_user["id"],
        interval=interval.value,
        start=start_date.isoformat(),
        end=end_date.isoformat(),
        buckets=len(report.buckets),
    )
    return {
        **report.to_dict(),
        "interval": interval.value,
        "recent_users": [_recent_user(u) for u in recent_users],
    }


@router.get("/stats")
async def get_admin_stats(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_permission(PERM_VIEW_ANALYTICS)),
):
    """Total users and the latest signups of the past week."""
    since = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=7)

    total = (await db.execute(select(func.count(User.id)))).scalar() or 0
    recent = (await db.execute(
        select(User)
        .where(User.created_at >= since)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(10)
    )).scalars().all()

    return {
        "users": total,
        "recent_users": [_recent_user(u) for u in recent],
    }
