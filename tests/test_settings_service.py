"""
Tests for services/settings_service.py against a temp SQLite store.
"""
import pytest

import storage.storage as kv
from services.settings_service import SettingsService
from utils.constants import SORT_SETTINGS_KEY, DEFAULT_FORGETTING_SETTINGS
from utils.errors import ValidationError


@pytest.fixture()
def tdb(tmp_path, monkeypatch):
    """Patch DB_PATH to a fresh temp file and initialise the schema."""
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(kv, 'DB_PATH', db_path)
    kv.init_db()
    return db_path


@pytest.fixture()
def settings(tdb):
    return SettingsService()


# ── Defaults ──────────────────────────────────────────────────

class TestDefaults:
    def test_forgetting_defaults(self, settings):
        f = settings.get_forgetting_settings()
        assert f == {'enabled': True, 'reviewCount': 5, 'intervals': [1, 3, 7, 14, 30], 'notifications': True}

    def test_other_defaults(self, settings):
        assert settings.get_flashcard_settings() == {'enabled': True}
        assert settings.get_dark_mode_settings() == {'enabled': False}
        assert settings.get_sort_settings() == {'field': 'createdAt', 'direction': 'desc'}

    def test_getter_returns_copy(self, settings):
        settings.get_forgetting_settings()['intervals'].append(99)
        assert settings.get_forgetting_settings()['intervals'] == [1, 3, 7, 14, 30]
        assert DEFAULT_FORGETTING_SETTINGS['intervals'] == [1, 3, 7, 14, 30]

    def test_garbage_in_store_falls_back(self, tdb):
        kv.save_to_storage(SORT_SETTINGS_KEY, 'oops')
        assert SettingsService().get_sort_settings() == {'field': 'createdAt', 'direction': 'desc'}


# ── Forgetting curve ──────────────────────────────────────────

class TestForgettingSettings:
    def test_update_persists(self, settings):
        settings.update_forgetting_settings({'reviewCount': 3, 'intervals': [2, 4, 8]})
        again = SettingsService().get_forgetting_settings()
        assert again['reviewCount'] == 3
        assert again['intervals'] == [2, 4, 8]

    @pytest.mark.parametrize('count', [0, 11, 2.5, '3', True])
    def test_review_count_rejected(self, settings, count):
        with pytest.raises(ValidationError):
            settings.update_forgetting_settings({'reviewCount': count})

    @pytest.mark.parametrize('days', [0, 181, 1.5, '7'])
    def test_interval_rejected(self, settings, days):
        with pytest.raises(ValidationError):
            settings.update_forgetting_settings({'intervals': [1, days, 7, 14, 30]})

    def test_rejected_update_changes_nothing(self, settings):
        with pytest.raises(ValidationError):
            settings.update_forgetting_settings({'enabled': False, 'reviewCount': 0})
        assert settings.get_forgetting_settings()['enabled'] is True

    def test_flags_must_be_bool(self, settings):
        with pytest.raises(ValidationError):
            settings.update_forgetting_settings({'notifications': 'yes'})

    def test_short_table_is_extended(self, settings):
        f = settings.update_forgetting_settings({'reviewCount': 7})
        assert f['intervals'] == [1, 3, 7, 14, 30, 60, 120]

    def test_generate_intervals(self, settings):
        assert settings.generate_intervals(3) == [1, 3, 7]
        assert settings.generate_intervals(6) == [1, 3, 7, 14, 30, 60]


# ── Toggles ───────────────────────────────────────────────────

class TestToggles:
    def test_flashcard_mode(self, settings):
        assert settings.toggle_flashcard_mode() is False
        assert SettingsService().get_flashcard_settings()['enabled'] is False

    def test_dark_mode(self, settings):
        assert settings.toggle_dark_mode() is True
        assert settings.toggle_dark_mode() is False

    def test_non_bool_rejected(self, settings):
        with pytest.raises(ValidationError):
            settings.update_dark_mode_settings({'enabled': 1})


# ── Sort order ────────────────────────────────────────────────

class TestSortOrder:
    def test_same_field_flips_direction(self, settings):
        assert settings.change_sort_order('createdAt')['direction'] == 'asc'
        assert settings.change_sort_order('createdAt')['direction'] == 'desc'

    def test_new_field_starts_descending(self, settings):
        settings.change_sort_order('createdAt')
        sort = settings.change_sort_order('updatedAt')
        assert sort == {'field': 'updatedAt', 'direction': 'desc'}
        assert SettingsService().get_sort_settings() == sort

    def test_invalid_field(self, settings):
        with pytest.raises(ValidationError):
            settings.change_sort_order('title')

    def test_invalid_direction(self, settings):
        with pytest.raises(ValidationError):
            settings.update_sort_settings({'direction': 'sideways'})


# ── Reset ─────────────────────────────────────────────────────

class TestReset:
    def test_reset_restores_and_persists(self, settings):
        settings.update_forgetting_settings({'enabled': False})
        settings.toggle_dark_mode()
        settings.change_sort_order('updatedAt')

        settings.reset_to_defaults()
        again = SettingsService()
        assert again.get_forgetting_settings()['enabled'] is True
        assert again.get_dark_mode_settings() == {'enabled': False}
        assert again.get_sort_settings() == {'field': 'createdAt', 'direction': 'desc'}
