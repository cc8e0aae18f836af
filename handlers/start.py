import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes, ConversationHandler

from services.card_service import CardService
from utils.telegram_helpers import get_services, safe_edit_text, safe_send_text


def build_main_menu(cards: CardService) -> tuple[str, InlineKeyboardMarkup]:
    """
    Returns (message_text, markup) for the main menu.
    Text includes a one-line stats summary when the user has cards.
    """
    stats = cards.get_stats()
    total = stats['total']
    active = stats['active']

    if total == 0:
        text = "\U0001f4da <b>Kioku</b>\n\n<i>No cards yet \u2014 add your first one!</i>"
    elif active == 0:
        text = f"\u2705 <b>Everything mastered!</b>\n\n<i>{total} cards in your collection</i>"
    elif active == 1:
        text = f"\U0001f9e0 <b>1 card to learn</b>\n\n<i>{total} cards total</i>"
    else:
        text = f"\U0001f9e0 <b>{active} cards to learn</b>\n\n<i>{total} cards total</i>"

    learn_label = f'\U0001f4d6 Learning \u00b7 {active}' if active > 0 else '\U0001f4d6 Learning'
    markup = InlineKeyboardMarkup([
        [
            InlineKeyboardButton('\U0001f4dd New Card', callback_data='add_card'),
            InlineKeyboardButton(learn_label, callback_data='list_active_0'),
        ],
        [
            InlineKeyboardButton('\U0001f4da All cards', callback_data='list_all_0'),
            InlineKeyboardButton('\U0001f514 Upcoming', callback_data='upcoming'),
        ],
        [
            InlineKeyboardButton('\U0001f4ca Stats', callback_data='stats'),
            InlineKeyboardButton('\u2699\ufe0f Settings', callback_data='settings'),
        ],
        [
            InlineKeyboardButton('\u2753 How it works', callback_data='help'),
        ],
    ])

    return text, markup


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    logging.info("Started /start")

    cards, _ = get_services(context)
    # Forgetting-curve notifications go to the chat that last said hello
    context.bot_data['chat_id'] = update.effective_chat.id

    name = update.effective_user.first_name
    _, markup = build_main_menu(cards)
    await safe_send_text(
        update.message,
        f"Hey {html.escape(name)} \U0001f44b\n\n"
        "Write cards, mark them mastered, and I'll bring them back "
        "right before you'd forget them.",
        reply_markup=markup,
    )


_CONV_KEYS = (
    # add-card flow
    'cur_card',
    # list / search flow
    'list_status', 'search_query', 'selected_tags',
)


async def _reset_and_send_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Clear all in-progress conversation state and send a fresh main menu."""
    for key in _CONV_KEYS:
        context.user_data.pop(key, None)
    cards, _ = get_services(context)
    text, markup = build_main_menu(cards)
    await safe_send_text(update.message, text, reply_markup=markup)


async def force_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """ConversationHandler fallback: abort current flow and show main menu."""
    await _reset_and_send_menu(update, context)
    return ConversationHandler.END


async def main_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Callback handler for the 'Menu' button (outside conversation)."""
    query = update.callback_query
    await query.answer()

    # Lists opened from the menu are never filtered
    context.user_data.pop('search_query', None)
    context.user_data.pop('selected_tags', None)

    cards, _ = get_services(context)
    text, markup = build_main_menu(cards)
    await safe_edit_text(query, text, reply_markup=markup)
