"""
Settings store: forgetting curve, flashcard display, dark mode and sort order.

Each category is a small dict persisted under its own key. Getters hand out
copies; updates merge, validate and re-persist the whole category.
"""

import copy
import logging
from typing import Any

from storage.storage import get_from_storage, save_to_storage
from utils.constants import (
    FORGETTING_SETTINGS_KEY, FLASHCARD_SETTINGS_KEY, DARK_MODE_SETTINGS_KEY, SORT_SETTINGS_KEY,
    DEFAULT_FORGETTING_SETTINGS, DEFAULT_FLASHCARD_SETTINGS,
    DEFAULT_DARK_MODE_SETTINGS, DEFAULT_SORT_SETTINGS,
    REVIEW_COUNT_MIN, REVIEW_COUNT_MAX, INTERVAL_MIN_DAYS, INTERVAL_MAX_DAYS,
    SORT_FIELDS, SORT_DIRECTIONS,
)
from utils.errors import ValidationError
from utils.srs import generate_interval_defaults

logger = logging.getLogger(__name__)


class SettingsService:
    def __init__(self):
        self.forgetting_settings = _load(FORGETTING_SETTINGS_KEY, DEFAULT_FORGETTING_SETTINGS)
        self.flashcard_settings = _load(FLASHCARD_SETTINGS_KEY, DEFAULT_FLASHCARD_SETTINGS)
        self.dark_mode_settings = _load(DARK_MODE_SETTINGS_KEY, DEFAULT_DARK_MODE_SETTINGS)
        self.sort_settings = _load(SORT_SETTINGS_KEY, DEFAULT_SORT_SETTINGS)

    # ── Forgetting curve ──────────────────────────────────────

    def get_forgetting_settings(self) -> dict[str, Any]:
        return copy.deepcopy(self.forgetting_settings)

    def update_forgetting_settings(self, updates: dict[str, Any]) -> dict[str, Any]:
        merged = {**self.forgetting_settings, **updates}

        review_count = merged.get('reviewCount')
        if isinstance(review_count, bool) or not isinstance(review_count, int):
            raise ValidationError("Review count must be a whole number")
        if not REVIEW_COUNT_MIN <= review_count <= REVIEW_COUNT_MAX:
            raise ValidationError(f"Review count must be between {REVIEW_COUNT_MIN} and {REVIEW_COUNT_MAX}")

        intervals = list(merged.get('intervals') or [])
        for days in intervals:
            if isinstance(days, bool) or not isinstance(days, int):
                raise ValidationError("Intervals must be whole numbers of days")
            if not INTERVAL_MIN_DAYS <= days <= INTERVAL_MAX_DAYS:
                raise ValidationError(f"Intervals must be between {INTERVAL_MIN_DAYS} and {INTERVAL_MAX_DAYS} days")
        if len(intervals) < review_count:
            intervals = generate_interval_defaults(review_count, intervals)
        merged['intervals'] = intervals

        for flag in ('enabled', 'notifications'):
            if not isinstance(merged.get(flag), bool):
                raise ValidationError(f"'{flag}' must be true or false")

        self.forgetting_settings = merged
        save_to_storage(FORGETTING_SETTINGS_KEY, self.forgetting_settings)
        logger.info(f"Forgetting settings updated: {self.forgetting_settings}")
        return self.get_forgetting_settings()

    def generate_intervals(self, review_count: int) -> list[int]:
        """Default interval table for review_count steps, seeded with the current one."""
        return generate_interval_defaults(review_count, self.forgetting_settings.get('intervals', []))

    # ── Flashcard display ─────────────────────────────────────

    def get_flashcard_settings(self) -> dict[str, Any]:
        return dict(self.flashcard_settings)

    def update_flashcard_settings(self, updates: dict[str, Any]) -> dict[str, Any]:
        merged = {**self.flashcard_settings, **updates}
        _require_bool(merged, 'enabled')
        self.flashcard_settings = merged
        save_to_storage(FLASHCARD_SETTINGS_KEY, self.flashcard_settings)
        return self.get_flashcard_settings()

    def toggle_flashcard_mode(self) -> bool:
        return self.update_flashcard_settings({'enabled': not self.flashcard_settings.get('enabled')})['enabled']

    # ── Dark mode ─────────────────────────────────────────────

    def get_dark_mode_settings(self) -> dict[str, Any]:
        return dict(self.dark_mode_settings)

    def update_dark_mode_settings(self, updates: dict[str, Any]) -> dict[str, Any]:
        merged = {**self.dark_mode_settings, **updates}
        _require_bool(merged, 'enabled')
        self.dark_mode_settings = merged
        save_to_storage(DARK_MODE_SETTINGS_KEY, self.dark_mode_settings)
        return self.get_dark_mode_settings()

    def toggle_dark_mode(self) -> bool:
        return self.update_dark_mode_settings({'enabled': not self.dark_mode_settings.get('enabled')})['enabled']

    # ── Sort order ────────────────────────────────────────────

    def get_sort_settings(self) -> dict[str, Any]:
        return dict(self.sort_settings)

    def update_sort_settings(self, updates: dict[str, Any]) -> dict[str, Any]:
        merged = {**self.sort_settings, **updates}
        if merged.get('field') not in SORT_FIELDS:
            raise ValidationError(f"Sort field must be one of: {', '.join(SORT_FIELDS)}")
        if merged.get('direction') not in SORT_DIRECTIONS:
            raise ValidationError(f"Sort direction must be one of: {', '.join(SORT_DIRECTIONS)}")
        self.sort_settings = merged
        save_to_storage(SORT_SETTINGS_KEY, self.sort_settings)
        return self.get_sort_settings()

    def change_sort_order(self, field: str) -> dict[str, Any]:
        """Same field flips the direction; a new field starts newest-first."""
        if field == self.sort_settings.get('field'):
            direction = 'desc' if self.sort_settings.get('direction') == 'asc' else 'asc'
            return self.update_sort_settings({'direction': direction})
        return self.update_sort_settings({'field': field, 'direction': 'desc'})

    # ── Reset ─────────────────────────────────────────────────

    def reset_to_defaults(self) -> None:
        self.forgetting_settings = copy.deepcopy(DEFAULT_FORGETTING_SETTINGS)
        self.flashcard_settings = dict(DEFAULT_FLASHCARD_SETTINGS)
        self.dark_mode_settings = dict(DEFAULT_DARK_MODE_SETTINGS)
        self.sort_settings = dict(DEFAULT_SORT_SETTINGS)

        save_to_storage(FORGETTING_SETTINGS_KEY, self.forgetting_settings)
        save_to_storage(FLASHCARD_SETTINGS_KEY, self.flashcard_settings)
        save_to_storage(DARK_MODE_SETTINGS_KEY, self.dark_mode_settings)
        save_to_storage(SORT_SETTINGS_KEY, self.sort_settings)
        logger.info("Settings reset to defaults")


def _load(key: str, default: dict[str, Any]) -> dict[str, Any]:
    """Stored values are layered over the defaults so new keys get filled in."""
    stored = get_from_storage(key, {})
    if not isinstance(stored, dict):
        stored = {}
    return {**copy.deepcopy(default), **stored}


def _require_bool(settings: dict[str, Any], key: str) -> None:
    if not isinstance(settings.get(key), bool):
        raise ValidationError(f"'{key}' must be true or false")
