"""Tests for the analytics bucketizer."""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from medbank.engine.bucketizer import (
    Interval,
    TimedRecord,
    advance,
    bucket_key,
    bucket_label,
    bucketize,
    iter_bucket_keys,
    range_bounds,
    cohort_lookback_start,
    retreat,
    round_half_up,
)


def _at(day: int, hour: int = 12, month: int = 1, year: int = 2024) -> datetime:
    return datetime(year, month, day, hour, 0)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

class TestBucketKey:
    def test_daily_is_the_day(self):
        assert bucket_key(datetime(2024, 1, 3, 23, 59), Interval.DAILY) == date(2024, 1, 3)

    @pytest.mark.parametrize("day", [1, 3, 7])
    def test_weekly_floors_to_monday(self, day):
        # 2024-01-01 is a Monday
        assert bucket_key(datetime(2024, 1, day), Interval.WEEKLY) == date(2024, 1, 1)

    def test_weekly_next_monday_starts_new_bucket(self):
        assert bucket_key(datetime(2024, 1, 8), Interval.WEEKLY) == date(2024, 1, 8)

    def test_monthly_floors_to_first(self):
        assert bucket_key(datetime(2024, 2, 29, 8), Interval.MONTHLY) == date(2024, 2, 1)

    def test_aware_timestamps_converted_to_utc(self):
        evening_ny = datetime(2024, 1, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert bucket_key(evening_ny, Interval.DAILY) == date(2024, 1, 2)


class TestAdvance:
    def test_monthly_crosses_year(self):
        assert advance(date(2023, 12, 1), Interval.MONTHLY) == date(2024, 1, 1)
        assert retreat(date(2024, 1, 1), Interval.MONTHLY) == date(2023, 12, 1)

    def test_weekly_and_daily(self):
        assert advance(date(2024, 1, 1), Interval.WEEKLY) == date(2024, 1, 8)
        assert retreat(date(2024, 1, 1), Interval.DAILY) == date(2023, 12, 31)

    def test_labels(self):
        assert bucket_label(date(2024, 1, 8), Interval.WEEKLY) == "Jan 08"
        assert bucket_label(date(2024, 3, 1), Interval.MONTHLY) == "Mar 2024"


class TestIterKeys:
    @pytest.mark.parametrize("interval", list(Interval))
    def test_keys_are_contiguous(self, interval):
        keys = list(iter_bucket_keys(date(2023, 11, 15), date(2024, 2, 10), interval))
        assert keys[0] <= date(2023, 11, 15)
        assert keys[-1] <= date(2024, 2, 10)
        for a, b in zip(keys, keys[1:]):
            assert advance(a, interval) == b

    def test_monthly_count(self):
        keys = list(iter_bucket_keys(date(2024, 1, 31), date(2024, 3, 1), Interval.MONTHLY))
        assert keys == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]

    def test_reversed_range_yields_nothing(self):
        assert list(iter_bucket_keys(date(2024, 1, 10), date(2024, 1, 1), Interval.DAILY)) == []

    def test_range_bounds_inclusive(self):
        lo, hi = range_bounds(date(2024, 1, 1), date(2024, 1, 2))
        assert lo == datetime(2024, 1, 1)
        assert hi.date() == date(2024, 1, 2)
        assert hi > datetime(2024, 1, 2, 23, 59, 59)


def test_round_half_up():
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert round_half_up(3 / 7) == 0


# ---------------------------------------------------------------------------
# bucketize
# ---------------------------------------------------------------------------

class TestBucketize:
    def test_eight_day_weekly_range_has_two_buckets(self):
        report = bucketize(date(2024, 1, 1), date(2024, 1, 8), Interval.WEEKLY)
        assert [b.key for b in report.buckets] == [date(2024, 1, 1), date(2024, 1, 8)]

    def test_reversed_range_is_empty(self):
        report = bucketize(
            date(2024, 1, 10), date(2024, 1, 1), Interval.DAILY,
            signups=[(1, _at(5))], activity=[(1, _at(5))],
        )
        assert report.buckets == []
        assert report.overview.new_users == 0
        assert report.overview.active == 0

    def test_signups_counted_per_bucket(self):
        signups = [(1, _at(1)), (2, _at(2)), (3, _at(9)), (4, _at(14, hour=23))]
        report = bucketize(date(2024, 1, 1), date(2024, 1, 14), Interval.WEEKLY, signups=signups)

        assert [b.new_users for b in report.buckets] == [2, 2]
        assert sum(b.new_users for b in report.buckets) == report.overview.new_users == 4

    def test_out_of_range_records_ignored(self):
        signups = [(1, _at(31, month=12, year=2023)), (2, _at(3)), (3, _at(20))]
        activity = [(1, _at(31, month=12, year=2023)), (2, _at(3))]
        report = bucketize(date(2024, 1, 1), date(2024, 1, 7), Interval.DAILY, signups=signups, activity=activity)

        assert sum(b.new_users for b in report.buckets) == 1
        assert report.overview.active == 1

    def test_retained_is_distinct_active_users(self):
        activity = [(1, _at(2, hour=8)), (1, _at(2, hour=9)), (2, _at(2)), (1, _at(3))]
        report = bucketize(date(2024, 1, 1), date(2024, 1, 3), Interval.DAILY, activity=activity)

        assert [b.retained for b in report.buckets] == [0, 2, 1]
        assert report.overview.active == 2

    def test_buckets_have_no_gaps(self):
        report = bucketize(date(2024, 1, 1), date(2024, 1, 10), Interval.DAILY, signups=[(1, _at(5))])
        assert len(report.buckets) == 10
        assert [b.new_users for b in report.buckets].count(0) == 9

    def test_overview_and_reports(self):
        signups = [(i, _at(1 + i)) for i in range(6)]
        activity = [(i, _at(1 + i)) for i in range(6)] + [(0, _at(10)), (1, _at(11))]
        report = bucketize(
            date(2024, 1, 1), date(2024, 1, 14), Interval.WEEKLY,
            signups=signups, activity=activity, total_sign_ups=42,
        )

        assert report.overview.new_users == 6
        assert report.overview.active == 6
        assert report.overview.retained == 0
        assert report.overview.period == "01/01/2024 - 14/01/2024"
        assert report.reports.sign_ups_per_week == 3
        assert report.reports.sign_ins_per_week == 4
        assert report.reports.total_sign_ups == 42

    def test_total_sign_ups_defaults_to_range_count(self):
        report = bucketize(date(2024, 1, 1), date(2024, 1, 3), Interval.DAILY, signups=[(1, _at(2))])
        assert report.reports.total_sign_ups == 1
        # 3 days count as 4, which rounds to zero weeks; floor at one
        assert report.reports.sign_ups_per_week == 1

    def test_weekly_rate_counts_one_extra_day(self):
        # Jan 1-10 counts 11 days, which rounds to two weeks
        signups = [(i, _at(2 + i)) for i in range(4)]
        report = bucketize(date(2024, 1, 1), date(2024, 1, 10), Interval.DAILY, signups=signups)
        assert report.reports.sign_ups_per_week == 2

    def test_accepts_rows_and_timed_records(self):
        users = [SimpleNamespace(id=5, created_at=_at(2))]
        events = [SimpleNamespace(user_id=5, created_at=_at(2)), TimedRecord(6, _at(3))]
        report = bucketize(date(2024, 1, 1), date(2024, 1, 3), Interval.DAILY, signups=users, activity=events)

        assert [b.new_users for b in report.buckets] == [0, 1, 0]
        assert [b.retained for b in report.buckets] == [0, 1, 1]

    def test_to_dict_shape(self):
        data = bucketize(date(2024, 1, 1), date(2024, 1, 31), Interval.MONTHLY).to_dict()

        assert set(data) == {"chart_data", "overview", "reports"}
        assert data["chart_data"][0] == {
            "date": "Jan 2024",
            "key": "2024-01-01",
            "new_users": 0,
            "retained": 0,
            "reactivated": 0,
            "churned": 0,
        }
        assert set(data["overview"]) == {"active", "new_users", "retained", "reactivated", "period"}


class TestCohorts:
    def _report(self, cohort_metrics=True):
        prior = {
            2: datetime(2023, 12, 31, 18),  # active in the bucket right before the range
            3: datetime(2023, 12, 20),      # lapsed earlier
        }
        activity = [
            (1, _at(1)),
            (3, _at(2)),
            (1, _at(3)),
            (4, _at(3)),
        ]
        signups = [(4, _at(3, hour=9))]
        return bucketize(
            date(2024, 1, 1), date(2024, 1, 4), Interval.DAILY,
            signups=signups, activity=activity,
            prior_last_seen=prior, cohort_metrics=cohort_metrics,
        )

    def test_reactivated_per_bucket(self):
        report = self._report()
        # day 2: user 3 returns; day 3: user 1 returns after skipping day 2, user 4 is brand new
        assert [b.reactivated for b in report.buckets] == [0, 1, 1, 0]
        assert report.overview.reactivated == 2

    def test_churned_per_bucket(self):
        report = self._report()
        # day 1: user 2 from Dec 31 is gone; day 4: users 1 and 4 are gone
        assert [b.churned for b in report.buckets] == [1, 1, 1, 2]

    def test_signup_is_never_reactivated(self):
        report = bucketize(
            date(2024, 1, 1), date(2024, 1, 2), Interval.DAILY,
            signups=[(9, _at(2))], activity=[(9, _at(2))],
            prior_last_seen={9: datetime(2023, 12, 1)},
        )
        assert report.buckets[1].reactivated == 0

    def test_disabled(self):
        report = self._report(cohort_metrics=False)
        assert all(b.reactivated == 0 and b.churned == 0 for b in report.buckets)
        assert report.overview.reactivated == 0


class TestUnalignedStart:
    def test_lookback_start(self):
        assert cohort_lookback_start(date(2024, 1, 3), Interval.WEEKLY) == datetime(2023, 12, 25)
        assert cohort_lookback_start(date(2024, 1, 15), Interval.MONTHLY) == datetime(2023, 12, 1)
        assert cohort_lookback_start(date(2024, 1, 15), Interval.DAILY) == datetime(2024, 1, 14)

    def test_weekly_activity_earlier_in_first_week(self):
        # Tuesday Jan 2 is in the same week as the Wednesday start
        report = bucketize(
            date(2024, 1, 3), date(2024, 1, 14), Interval.WEEKLY,
            activity=[(1, _at(4))],
            prior_last_seen={1: datetime(2024, 1, 2, 10)},
        )
        assert report.buckets[0].key == date(2024, 1, 1)
        assert report.buckets[0].reactivated == 0
        assert report.overview.reactivated == 0

    def test_monthly_previous_bucket_from_lookback(self):
        # Jan 5 alone would hide the Dec 20 visit that makes the user continuous
        report = bucketize(
            date(2024, 1, 15), date(2024, 1, 31), Interval.MONTHLY,
            activity=[(1, _at(20))],
            prior_activity=[(1, datetime(2023, 12, 20)), (1, _at(5))],
        )
        assert report.buckets[0].reactivated == 0
        assert report.buckets[0].churned == 0

    def test_lead_in_activity_is_not_churn(self):
        # active in December and on Jan 3, silent from the Jan 10 start onwards
        report = bucketize(
            date(2024, 1, 10), date(2024, 2, 29), Interval.MONTHLY,
            prior_activity=[(1, datetime(2023, 12, 28)), (1, _at(3))],
        )
        assert [b.churned for b in report.buckets] == [0, 1]

    def test_comeback_after_silent_bucket_still_counts(self):
        report = bucketize(
            date(2024, 1, 3), date(2024, 1, 14), Interval.WEEKLY,
            activity=[(1, _at(9))],
            prior_last_seen={1: datetime(2023, 12, 1)},
            prior_activity=[(2, datetime(2023, 12, 27))],
        )
        # user 2 from the week before is gone; user 1 returns in week two
        assert [b.churned for b in report.buckets] == [1, 0]
        assert [b.reactivated for b in report.buckets] == [0, 1]
