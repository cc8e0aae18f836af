import html
from datetime import datetime, timedelta

from telegram import Update, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from services.card_service import CardService
from utils.telegram_helpers import get_services, menu_button, safe_edit_text, safe_send_text


def _build_stats_text(cards: CardService, now: datetime | None = None) -> str:
    now = now or datetime.now()
    stats = cards.get_stats()
    pending = cards.get_cards_needing_review()
    week = now + timedelta(days=7)
    due_week = sum(1 for c in pending if c.next_review_date <= week)

    tags = cards.get_all_tags()
    tag_line = ' '.join(f"#{html.escape(t)}" for t in tags) if tags else '<i>none</i>'

    return (
        f"\U0001f4ca Stats\n\n"
        f"\U0001f4da Total: {stats['total']}\n"
        f"\U0001f4d6 Learning: {stats['active']}\n"
        f"\u2705 Mastered: {stats['completed']}\n"
        f"\u2b50 Favorites: {stats['favorite']}\n\n"
        f"\U0001f514 Reviews scheduled: {len(pending)}\n"
        f"\U0001f4c5 Next 7 days: {due_week}\n\n"
        f"\U0001f3f7 {tag_line}"
    )


async def stats_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    cards, _ = get_services(context)
    await safe_edit_text(query, _build_stats_text(cards), reply_markup=InlineKeyboardMarkup([menu_button()]))


async def stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/stats slash command: send a fresh stats message."""
    cards, _ = get_services(context)
    await safe_send_text(update.message, _build_stats_text(cards), reply_markup=InlineKeyboardMarkup([menu_button()]))
