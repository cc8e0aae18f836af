import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import Application, ContextTypes

from config import OWNER_CHAT_ID, SWEEP_INTERVAL_SECONDS
from utils.srs import review_label
from utils.telegram_helpers import get_services, menu_button, safe_edit_text, safe_send_text
from utils.utils import truncate

logger = logging.getLogger(__name__)

UPCOMING_LIMIT = 10
QUESTION_PREVIEW_MAX = 30


# ── Upcoming reviews ──────────────────────────────────────────

def _build_upcoming(context: ContextTypes.DEFAULT_TYPE) -> tuple[str, InlineKeyboardMarkup]:
    cards, settings = get_services(context)
    forgetting = settings.get_forgetting_settings()
    pending = cards.get_cards_needing_review()

    if not forgetting['enabled']:
        text = "\U0001f514 <b>Upcoming reviews</b>\n\n<i>The forgetting curve is off \u2014 turn it on in /settings</i>"
    elif not pending:
        text = "\U0001f514 <b>Upcoming reviews</b>\n\n<i>Nothing scheduled. Master a card to start its reviews.</i>"
    else:
        text = f"\U0001f514 <b>Upcoming reviews</b> \u00b7 {len(pending)}"

    buttons = [
        [InlineKeyboardButton(
            f"#{card.display_id} {truncate(card.question, QUESTION_PREVIEW_MAX)} \u00b7 {review_label(card)}",
            callback_data=f'card_info_{card.id}',
        )]
        for card in pending[:UPCOMING_LIMIT]
    ]
    if len(pending) > UPCOMING_LIMIT:
        text += f"\n<i>showing the first {UPCOMING_LIMIT}</i>"
    buttons.append(menu_button())
    return text, InlineKeyboardMarkup(buttons)


async def upcoming_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    text, markup = _build_upcoming(context)
    await safe_edit_text(query, text, reply_markup=markup)


async def upcoming_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    text, markup = _build_upcoming(context)
    await safe_send_text(update.message, text, reply_markup=markup)


# ── Forgetting curve sweep ────────────────────────────────────

def _notify_chat_id(context: ContextTypes.DEFAULT_TYPE) -> int | None:
    chat_id = context.bot_data.get('chat_id')
    if chat_id is None and OWNER_CHAT_ID:
        chat_id = int(OWNER_CHAT_ID)
    return chat_id


async def forgetting_curve_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Periodic job: move overdue mastered cards back to learning and say so once."""
    cards, settings = get_services(context)
    forgetting = settings.get_forgetting_settings()

    count = cards.check_forgetting_curve(forgetting)
    if count == 0 or not forgetting['notifications']:
        return

    chat_id = _notify_chat_id(context)
    if chat_id is None:
        logger.info(f"{count} card(s) due for review, no chat to notify")
        return

    noun = 'card needs' if count == 1 else 'cards need'
    await safe_send_text(
        (chat_id, context.bot),
        f"\U0001f9e0 <b>Review time!</b>\n\n{count} {noun} review \u2014 they're back in <i>Learning</i>.",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton('\U0001f4d6 Learning', callback_data='list_active_0')],
            menu_button(),
        ]),
    )


def setup_forgetting_curve_job(application: Application) -> None:
    """Run the sweep once at startup and then every SWEEP_INTERVAL_SECONDS."""
    job_queue = application.job_queue
    if job_queue is None:
        logger.warning("Job queue unavailable, install python-telegram-bot[job-queue]; forgetting curve disabled")
        return

    job_queue.run_repeating(
        forgetting_curve_job,
        interval=SWEEP_INTERVAL_SECONDS,
        first=0,
        name='forgetting_curve',
    )
    logger.info(f"Forgetting curve sweep every {SWEEP_INTERVAL_SECONDS}s")
