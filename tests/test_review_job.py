"""
Tests for the forgetting-curve job in handlers/review.py.

The Telegram side is mocked; the services run on a temp SQLite store.
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

import handlers.review as review
import storage.storage as kv
from services.card_service import CardService
from services.settings_service import SettingsService


@pytest.fixture()
def tdb(tmp_path, monkeypatch):
    """Patch DB_PATH to a fresh temp file and initialise the schema."""
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(kv, 'DB_PATH', db_path)
    kv.init_db()
    return db_path


@pytest.fixture()
def context(tdb):
    ctx = MagicMock()
    ctx.bot_data = {'cards': CardService(), 'settings': SettingsService(), 'chat_id': 42}
    ctx.bot.send_message = AsyncMock()
    return ctx


def _overdue_card(ctx):
    cards, settings = ctx.bot_data['cards'], ctx.bot_data['settings']
    card = cards.add_card({'question': 'q', 'answer': 'a'})
    cards.toggle_card_completion(card.id, settings.get_forgetting_settings())
    card.next_review_date = datetime.now() - timedelta(minutes=1)
    return card


# ── Sweep job ─────────────────────────────────────────────────

class TestForgettingCurveJob:
    @pytest.mark.asyncio
    async def test_due_card_triggers_one_notification(self, context):
        card = _overdue_card(context)
        _overdue_card(context)

        await review.forgetting_curve_job(context)

        assert card.completed is False
        context.bot.send_message.assert_awaited_once()
        kwargs = context.bot.send_message.call_args.kwargs
        assert kwargs['chat_id'] == 42
        assert '2 cards need review' in kwargs['text']

    @pytest.mark.asyncio
    async def test_nothing_due_sends_nothing(self, context):
        context.bot_data['cards'].add_card({'question': 'q'})
        await review.forgetting_curve_job(context)
        context.bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifications_off_still_demotes(self, context):
        context.bot_data['settings'].update_forgetting_settings({'notifications': False})
        card = _overdue_card(context)

        await review.forgetting_curve_job(context)

        assert card.completed is False
        context.bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_curve_disabled(self, context):
        card = _overdue_card(context)
        context.bot_data['settings'].update_forgetting_settings({'enabled': False})

        await review.forgetting_curve_job(context)

        assert card.completed is True
        context.bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_owner_chat(self, context, monkeypatch):
        monkeypatch.setattr(review, 'OWNER_CHAT_ID', '7')
        del context.bot_data['chat_id']
        _overdue_card(context)

        await review.forgetting_curve_job(context)

        assert context.bot.send_message.call_args.kwargs['chat_id'] == 7

    @pytest.mark.asyncio
    async def test_no_chat_known(self, context, monkeypatch):
        monkeypatch.setattr(review, 'OWNER_CHAT_ID', None)
        del context.bot_data['chat_id']
        card = _overdue_card(context)

        await review.forgetting_curve_job(context)

        assert card.completed is False
        context.bot.send_message.assert_not_awaited()


# ── Job registration ──────────────────────────────────────────

class TestSetupJob:
    def test_runs_at_startup_then_repeats(self):
        application = MagicMock()
        review.setup_forgetting_curve_job(application)

        application.job_queue.run_repeating.assert_called_once_with(
            review.forgetting_curve_job,
            interval=review.SWEEP_INTERVAL_SECONDS,
            first=0,
            name='forgetting_curve',
        )

    def test_missing_job_queue_is_tolerated(self):
        application = MagicMock()
        application.job_queue = None
        review.setup_forgetting_curve_job(application)
