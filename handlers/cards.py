import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery, Message
from telegram.ext import ContextTypes, ConversationHandler

import utils.utils as utils
from handlers.start import main_menu
from utils.constants import AddCardState
from utils.errors import ValidationError
from utils.telegram_helpers import get_services, menu_button, safe_edit_text, safe_send_text


PREVIEW_BUTTONS = [
    [InlineKeyboardButton("\u2705 Save", callback_data='save_card')],
    [
        InlineKeyboardButton("\u270f\ufe0f Edit", callback_data='edit_card'),
        InlineKeyboardButton("\u2716 Cancel", callback_data='cancel'),
    ],
]

CONTENT_HINT = (
    "\U0001f4dd Send me the card\n\n"
    "<i><code>question | answer | tag, tag</code>\n"
    "or the question on the first line and the answer below</i>"
)


async def add_card_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    context.user_data.pop('cur_card', None)
    await safe_edit_text(query, CONTENT_HINT)
    return AddCardState.AWAITING_CONTENT


async def add_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """/add: optionally with the card inline: /add question | answer | tags"""
    context.user_data.pop('cur_card', None)

    inline = (update.message.text or '').partition(' ')[2].strip()
    if inline:
        context.user_data['cur_card'] = utils.parse_text(inline)
        await preview(update.message, context)
        return AddCardState.CONFIRMATION_PREVIEW

    await safe_send_text(update.message, CONTENT_HINT)
    return AddCardState.AWAITING_CONTENT


async def get_content(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    logging.info("Got card content")

    parsed = utils.parse_text(update.message.text or '')
    if not parsed['question']:
        await update.message.reply_text("\u26a0\ufe0f The question can't be empty. Try again:")
        return AddCardState.AWAITING_CONTENT

    context.user_data['cur_card'] = parsed
    await preview(update.message, context)
    return AddCardState.CONFIRMATION_PREVIEW


async def preview(target: Message | CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> None:
    card = context.user_data.get('cur_card', {})
    answer = card.get('answer') or '<i>(no answer)</i>'
    if card.get('answer'):
        answer = html.escape(answer)
    tags = ' '.join(f"#{html.escape(t)}" for t in card.get('tags', []))

    text = (
        f"\u2753 {html.escape(card.get('question', ''))}\n\n"
        f"\U0001f4a1 {answer}"
    )
    if tags:
        text += f"\n\n\U0001f3f7 {tags}"

    markup = InlineKeyboardMarkup(PREVIEW_BUTTONS)
    if isinstance(target, CallbackQuery):
        await safe_edit_text(target, text, reply_markup=markup)
    else:
        await safe_send_text(target, text, reply_markup=markup)


async def save_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    cur_card = context.user_data.get('cur_card')
    if not cur_card:
        await safe_edit_text(
            query,
            "\u26a0\ufe0f Session expired \u2014 please start over.",
            reply_markup=InlineKeyboardMarkup([menu_button()])
        )
        return ConversationHandler.END

    cards, _ = get_services(context)
    try:
        card = cards.add_card(cur_card)
    except ValidationError as e:
        await safe_edit_text(query, f"\u26a0\ufe0f {html.escape(str(e))}\n\nSend the card again:")
        return AddCardState.AWAITING_CONTENT

    context.user_data.pop('cur_card', None)

    await safe_edit_text(
        query,
        f"\u2714\ufe0f Saved as <b>#{card.display_id}</b>! Send me another one",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton("\U0001f50e Open", callback_data=f'card_info_{card.id}')],
            menu_button(),
        ])
    )
    return AddCardState.AWAITING_CONTENT


async def edit_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    await safe_edit_text(query, "\u270f\ufe0f Send the new content")
    return AddCardState.AWAITING_CONTENT


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Cancel button or /cancel: drop the draft."""
    context.user_data.pop('cur_card', None)
    text = "\u2716 Cancelled"
    markup = InlineKeyboardMarkup([menu_button()])

    if update.callback_query:
        await update.callback_query.answer()
        await safe_edit_text(update.callback_query, text, reply_markup=markup)
    else:
        await safe_send_text(update.message, text, reply_markup=markup)
    return ConversationHandler.END


async def menu_exit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Menu button while adding a card: drop the draft and show the main menu."""
    context.user_data.pop('cur_card', None)
    await main_menu(update, context)
    return ConversationHandler.END
