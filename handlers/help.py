from telegram import Update, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from utils.telegram_helpers import menu_button, safe_edit_text, safe_send_text


HELP_TEXT = (
    "<b>\u2753 How it works</b>\n\n"
    "1. /add a card as <code>question | answer | tag, tag</code>\n"
    "2. Open a card and tap <b>Mastered</b> once you know it\n"
    "3. Mastered cards come back to <i>Learning</i> after 1, 3, 7\u2026 days\n"
    "4. /settings tunes the intervals and the number of reviews\n\n"
    "<b>Finding cards</b>\n"
    "/cards \u00b7 /search <i>text</i> \u00b7 /search #3 \u00b7 /tags <i>tag tag</i>\n\n"
    "<b>Editing</b>\n"
    "/card 3 \u00b7 /edit 3 <i>q | a | tags</i> \u00b7 /relate 3 5 7 \u00b7 "
    "/url 3 <i>link</i> \u00b7 photo with caption <code>#3</code>\n\n"
    "<b>More</b>\n"
    "/upcoming \u00b7 /stats \u00b7 /sort created|updated \u00b7 /clear_completed \u00b7 /export"
)

_MARKUP = InlineKeyboardMarkup([menu_button()])


async def help_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    await safe_edit_text(query, HELP_TEXT, reply_markup=_MARKUP)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await safe_send_text(update.message, HELP_TEXT, reply_markup=_MARKUP)
