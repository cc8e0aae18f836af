"""
Tests for utils/srs.py: pure Python, no Telegram, no DB, no async.
"""
from datetime import datetime, timedelta

import pytest

from models.card import Card
from utils.srs import (
    format_interval, generate_interval_defaults,
    refresh_pending_review, review_label, schedule_next_review,
)

NOW = datetime(2024, 3, 1, 10, 0)


# ── Shared helper ─────────────────────────────────────────────

def card(review_count=0, next_review_date=None):
    return Card(id=1, question='q', review_count=review_count, next_review_date=next_review_date)


# ── Scheduling ────────────────────────────────────────────────

class TestScheduleNextReview:
    def test_first_step_uses_first_interval(self):
        c = card()
        due = schedule_next_review(c, [1, 3, 7], 3, now=NOW)
        assert due == NOW + timedelta(days=1)
        assert c.next_review_date == due
        assert c.review_count == 1

    def test_steps_follow_the_table(self):
        c = card()
        days = []
        for _ in range(3):
            due = schedule_next_review(c, [1, 3, 7], 3, now=NOW)
            days.append((due - NOW).days)
        assert days == [1, 3, 7]
        assert c.review_count == 3

    def test_exhausted_series_clears_date(self):
        c = card(review_count=3, next_review_date=NOW)
        assert schedule_next_review(c, [1, 3, 7], 3, now=NOW) is None
        assert c.next_review_date is None
        assert c.review_count == 3

    def test_short_table_reuses_last_interval(self):
        c = card(review_count=4)
        due = schedule_next_review(c, [1, 3], 6, now=NOW)
        assert due == NOW + timedelta(days=3)
        assert c.review_count == 5

    def test_empty_table_schedules_nothing(self):
        c = card()
        assert schedule_next_review(c, [], 5, now=NOW) is None
        assert c.review_count == 0


class TestRefreshPendingReview:
    def test_past_date_restarts_current_step(self):
        c = card(review_count=2, next_review_date=NOW - timedelta(days=4))
        due = refresh_pending_review(c, [1, 3, 7], now=NOW)
        assert due == NOW + timedelta(days=3)
        assert c.review_count == 2

    def test_future_date_is_kept(self):
        pending = NOW + timedelta(hours=5)
        c = card(review_count=1, next_review_date=pending)
        assert refresh_pending_review(c, [1, 3, 7], now=NOW) == pending

    def test_no_date_stays_unscheduled(self):
        c = card(review_count=3)
        assert refresh_pending_review(c, [1, 3, 7], now=NOW) is None

    def test_count_past_table_uses_last_interval(self):
        c = card(review_count=9, next_review_date=NOW)
        assert refresh_pending_review(c, [1, 3, 7], now=NOW) == NOW + timedelta(days=7)


# ── Interval generation ───────────────────────────────────────

class TestGenerateIntervals:
    def test_keeps_existing_steps(self):
        assert generate_interval_defaults(5, [1, 3, 7, 14, 30]) == [1, 3, 7, 14, 30]

    def test_truncates_to_count(self):
        assert generate_interval_defaults(2, [1, 3, 7]) == [1, 3]

    def test_extends_by_doubling_within_tier_caps(self):
        assert generate_interval_defaults(7, [1, 3, 7, 14, 30]) == [1, 3, 7, 14, 30, 60, 120]

    def test_from_scratch(self):
        assert generate_interval_defaults(3, []) == [14, 28, 56]

    def test_never_above_last_cap(self):
        intervals = generate_interval_defaults(10, [])
        assert len(intervals) == 10
        assert max(intervals) <= 180
        assert all(d >= 7 for d in intervals)


# ── Labels ────────────────────────────────────────────────────

class TestFormatInterval:
    @pytest.mark.parametrize('days, label', [
        (0, 'today'),
        (1, '1d'),
        (14, '14d'),
        (30, '1mo'),
        (90, '3mo'),
        (365, '1.0y'),
        (540, '1.5y'),
    ])
    def test_labels(self, days, label):
        assert format_interval(days) == label


class TestReviewLabel:
    def test_no_date(self):
        assert review_label(card(), now=NOW) == 'no review scheduled'

    def test_overdue(self):
        assert review_label(card(next_review_date=NOW - timedelta(minutes=1)), now=NOW) == 'overdue'

    def test_hours(self):
        assert review_label(card(next_review_date=NOW + timedelta(hours=5)), now=NOW) == 'in 5h'

    def test_days(self):
        assert review_label(card(next_review_date=NOW + timedelta(days=3, hours=1)), now=NOW) == 'in 3d'
