"""Analytics bucketizer: time-slices signups and activity for the admin dashboard.

A date range is cut into contiguous day / ISO-week / month buckets (every
bucket is materialized, empty or not). Signups and activity events are
dropped into the bucket of their UTC timestamp; per-bucket and whole-range
counts are derived from there.

Cohort transitions are tracked per user while walking the buckets in order:
a user active in the previous bucket but not in the current one has churned;
a user coming back after at least one silent bucket is reactivated.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Iterable, Iterator, Mapping, NamedTuple, Optional, Union

from ..utils.logging import get_logger

logger = get_logger("engine.bucketizer")

DateLike = Union[date, datetime]


class Interval(str, Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class TimedRecord(NamedTuple):
    """A user id stamped with the moment something happened (signup, activity)."""
    user_id: object
    timestamp: datetime


@dataclass
class AnalyticsBucket:
    key: date
    label: str
    new_users: int = 0
    retained: int = 0
    reactivated: int = 0
    churned: int = 0
    active_user_ids: set = field(default_factory=set, repr=False)
    signup_user_ids: set = field(default_factory=set, repr=False)

    def to_dict(self) -> dict:
        return {
            "date": self.label,
            "key": self.key.isoformat(),
            "new_users": self.new_users,
            "retained": self.retained,
            "reactivated": self.reactivated,
            "churned": self.churned,
        }


@dataclass
class AnalyticsOverview:
    active: int
    new_users: int
    retained: int
    reactivated: int
    period: str


@dataclass
class WeeklyReport:
    sign_ups_per_week: int
    sign_ins_per_week: int
    total_sign_ups: int


@dataclass
class AnalyticsReport:
    buckets: list[AnalyticsBucket]
    overview: AnalyticsOverview
    reports: WeeklyReport

    def to_dict(self) -> dict:
        return {
            "chart_data": [b.to_dict() for b in self.buckets],
            "overview": asdict(self.overview),
            "reports": asdict(self.reports),
        }


# --- Calendar helpers ---

def _to_utc(ts: DateLike) -> datetime:
    """Naive UTC datetime; naive input is taken as UTC already."""
    if not isinstance(ts, datetime):
        return datetime.combine(ts, time.min)
    if ts.tzinfo is not None:
        return ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _to_day(value: DateLike) -> date:
    return _to_utc(value).date()


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def bucket_key(ts: DateLike, interval: Interval) -> date:
    """Start of the bucket holding ``ts``: the day, the Monday of its ISO week, or the 1st of its month."""
    day = _to_day(ts)
    if interval == Interval.DAILY:
        return day
    if interval == Interval.WEEKLY:
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def advance(key: date, interval: Interval) -> date:
    """Next bucket start: +1 day, +7 days, or +1 calendar month."""
    if interval == Interval.DAILY:
        return key + timedelta(days=1)
    if interval == Interval.WEEKLY:
        return key + timedelta(days=7)
    if key.month == 12:
        return date(key.year + 1, 1, 1)
    return date(key.year, key.month + 1, 1)


def retreat(key: date, interval: Interval) -> date:
    """Previous bucket start."""
    if interval == Interval.DAILY:
        return key - timedelta(days=1)
    if interval == Interval.WEEKLY:
        return key - timedelta(days=7)
    if key.month == 1:
        return date(key.year - 1, 12, 1)
    return date(key.year, key.month - 1, 1)


def bucket_label(key: date, interval: Interval) -> str:
    if interval == Interval.MONTHLY:
        return key.strftime("%b %Y")
    return key.strftime("%b %d")


def iter_bucket_keys(start: DateLike, end: DateLike, interval: Interval) -> Iterator[date]:
    """Bucket starts from the aligned floor of ``start`` until past ``end``.

    Nothing is yielded when ``end`` is before ``start``.
    """
    end_day = _to_day(end)
    if end_day < _to_day(start):
        return
    cursor = bucket_key(start, interval)
    while cursor <= end_day:
        yield cursor
        cursor = advance(cursor, interval)


def range_bounds(start: DateLike, end: DateLike) -> tuple[datetime, datetime]:
    """Inclusive UTC window: start of the first day to the last instant of the last day."""
    return (
        datetime.combine(_to_day(start), time.min),
        datetime.combine(_to_day(end), time.max),
    )


def _as_record(item) -> TimedRecord:
    if isinstance(item, TimedRecord):
        return item
    if isinstance(item, tuple):
        return TimedRecord(*item)
    user_id = getattr(item, "user_id", None)
    if user_id is None:
        user_id = getattr(item, "id", None)
    return TimedRecord(user_id, item.created_at)


# --- Aggregation ---

def cohort_lookback_start(start: DateLike, interval: Interval) -> datetime:
    """First instant of the bucket before the one holding ``start``.

    Activity between this instant and the range start decides who was active
    in the previous bucket and who was already active earlier in the first
    bucket.
    """
    return datetime.combine(retreat(bucket_key(start, interval), interval), time.min)


def bucketize(
    start: DateLike,
    end: DateLike,
    interval: Interval,
    signups: Iterable = (),
    activity: Iterable = (),
    prior_last_seen: Optional[Mapping[object, datetime]] = None,
    prior_activity: Iterable = (),
    total_sign_ups: Optional[int] = None,
    cohort_metrics: bool = True,
) -> AnalyticsReport:
    """Aggregate signups and activity events over ``[start, end]``.

    ``signups`` and ``activity`` hold ``(user_id, timestamp)`` pairs or rows
    with ``user_id``/``id`` and ``created_at``. Records outside the range are
    ignored.

    Cohort tracking is seeded from two sources: ``prior_activity``, the
    events from ``cohort_lookback_start(start)`` up to the range start, and
    ``prior_last_seen``, each user's last activity before that. Either may
    be omitted.
    """
    interval = Interval(interval)
    window_start, window_end = range_bounds(start, end)

    buckets = [
        AnalyticsBucket(key=k, label=bucket_label(k, interval))
        for k in iter_bucket_keys(start, end, interval)
    ]
    by_key = {b.key: b for b in buckets}

    in_range_signups = [
        r for r in map(_as_record, signups)
        if window_start <= _to_utc(r.timestamp) <= window_end
    ]
    in_range_activity = [
        r for r in map(_as_record, activity)
        if window_start <= _to_utc(r.timestamp) <= window_end
    ]

    for rec in in_range_signups:
        bucket = by_key.get(bucket_key(rec.timestamp, interval))
        if bucket is not None:
            bucket.new_users += 1
            bucket.signup_user_ids.add(rec.user_id)

    for rec in in_range_activity:
        bucket = by_key.get(bucket_key(rec.timestamp, interval))
        if bucket is not None:
            bucket.active_user_ids.add(rec.user_id)

    for bucket in buckets:
        bucket.retained = len(bucket.active_user_ids)

    reactivated_users: set = set()
    if cohort_metrics and buckets:
        seeds = [
            r for r in map(_as_record, prior_activity)
            if _to_utc(r.timestamp) < window_start
        ]
        seeds.extend(
            TimedRecord(user_id, last_seen)
            for user_id, last_seen in (prior_last_seen or {}).items()
            if last_seen is not None and _to_utc(last_seen) < window_start
        )
        reactivated_users = _apply_cohorts(buckets, interval, seeds)

    active = len({r.user_id for r in in_range_activity})
    new_users = len(in_range_signups)
    overview = AnalyticsOverview(
        active=active,
        new_users=new_users,
        retained=max(0, active - new_users),
        reactivated=len(reactivated_users),
        period=f"{_to_day(start):%d/%m/%Y} - {_to_day(end):%d/%m/%Y}",
    )

    # Elapsed days from the start to the last instant of the end day, rounded,
    # plus one: a 7-day range counts 8 days.
    range_days = max(1, (_to_day(end) - _to_day(start)).days + 2)
    weeks = max(1, round_half_up(range_days / 7))
    reports = WeeklyReport(
        sign_ups_per_week=round_half_up(new_users / weeks),
        sign_ins_per_week=round_half_up(len(in_range_activity) / weeks),
        total_sign_ups=total_sign_ups if total_sign_ups is not None else new_users,
    )

    logger.debug(
        "analytics_bucketized",
        interval=interval.value,
        buckets=len(buckets),
        signups=new_users,
        activity=len(in_range_activity),
    )
    return AnalyticsReport(buckets=buckets, overview=overview, reports=reports)


def _apply_cohorts(
    buckets: list[AnalyticsBucket],
    interval: Interval,
    seeds: list[TimedRecord],
) -> set:
    """Fill ``reactivated``/``churned`` per bucket; returns every reactivated user.

    Seed events are sorted by bucket: the bucket before the first one fills
    the "previous" set, the first bucket's own days before the range start
    count as activity in that bucket, anything older only marks the user as
    seen.
    """
    first_key = buckets[0].key
    before_first = retreat(first_key, interval)

    seen: set = set()
    previous: set = set()
    lead_in: set = set()
    for rec in seeds:
        key = bucket_key(rec.timestamp, interval)
        if key == first_key:
            lead_in.add(rec.user_id)
        elif key == before_first:
            previous.add(rec.user_id)
        else:
            seen.add(rec.user_id)
    seen |= previous

    reactivated_users: set = set()
    for index, bucket in enumerate(buckets):
        current = bucket.active_user_ids
        returning = {
            u for u in current
            if u not in previous and u in seen and u not in bucket.signup_user_ids
        }
        if index == 0:
            # days of the first bucket before the range start
            current = current | lead_in
        bucket.reactivated = len(returning)
        bucket.churned = len(previous - current)
        reactivated_users |= returning
        seen |= current
        previous = current
    return reactivated_users
