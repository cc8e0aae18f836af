"""
Forgetting-curve scheduler driven by a fixed interval table.

Each scheduled review consumes one step of the table:

    reviewCount 0 -> intervals[0] days -> reviewCount 1 -> intervals[1] days -> ...

Once reviewCount reaches the configured maximum the series is exhausted and
the card gets no further review date.
"""

from datetime import datetime, timedelta

# Tier caps for generated steps, keyed by the last zero-based index of each tier
TIER_CAPS = [
    (1, 30),    # steps 1-2
    (3, 60),    # steps 3-4
    (5, 90),    # steps 5-6
]
LAST_TIER_CAP = 180
MIN_GENERATED_INTERVAL = 7


def schedule_next_review(card, intervals, max_review_count, now=None):
    """
    Set card.next_review_date for its next review step and advance review_count.

    Returns the new next_review_date (None when the review series is over).
    """
    if card.review_count >= max_review_count or not intervals:
        card.next_review_date = None
        return None

    if card.review_count < len(intervals):
        interval_days = intervals[card.review_count]
    else:
        interval_days = intervals[-1]

    now = now or datetime.now()
    card.next_review_date = now + timedelta(days=interval_days)
    card.review_count += 1
    return card.next_review_date


def refresh_pending_review(card, intervals, now=None):
    """
    Restart an already-counted step whose date has passed, from now.

    review_count is not touched. Returns the (possibly new) next_review_date.
    """
    now = now or datetime.now()
    if card.next_review_date is None or card.next_review_date > now or not intervals:
        return card.next_review_date

    step = min(max(card.review_count - 1, 0), len(intervals) - 1)
    card.next_review_date = now + timedelta(days=intervals[step])
    return card.next_review_date


def generate_interval_defaults(count, existing):
    """
    Interval table of exactly `count` steps.

    Existing steps are kept; each missing step doubles the previous one
    (at least 7 days) and is capped by its tier.
    """
    intervals = []
    for i in range(count):
        if i < len(existing):
            intervals.append(existing[i])
            continue

        prev = intervals[i - 1] if i > 0 else MIN_GENERATED_INTERVAL
        intervals.append(min(max(MIN_GENERATED_INTERVAL, prev * 2), _tier_cap(i)))
    return intervals


def _tier_cap(index):
    for last_index, cap in TIER_CAPS:
        if index <= last_index:
            return cap
    return LAST_TIER_CAP


def format_interval(days):
    """Short label for a whole number of days."""
    if days <= 0:
        return "today"
    elif days == 1:
        return "1d"
    elif days < 30:
        return f"{days}d"
    elif days < 365:
        months = round(days / 30)
        return f"{months}mo"
    else:
        years = round(days / 365, 1)
        return f"{years}y"


def review_label(card, now=None):
    """Human-readable time until the card's next review, e.g. 'in 3d'."""
    if card.next_review_date is None:
        return "no review scheduled"

    now = now or datetime.now()
    diff = card.next_review_date - now
    if diff.total_seconds() <= 0:
        return "overdue"

    if diff < timedelta(days=1):
        hours = max(1, round(diff.total_seconds() / 3600))
        return f"in {hours}h"
    return f"in {format_interval(diff.days)}"
