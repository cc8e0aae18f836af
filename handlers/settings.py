import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from services.settings_service import SettingsService
from utils.errors import ValidationError
from utils.srs import format_interval
from utils.telegram_helpers import get_services, menu_button, safe_edit_text, safe_send_text

_SORT_ALIASES = {
    'created': 'createdAt',
    'createdat': 'createdAt',
    'updated': 'updatedAt',
    'updatedat': 'updatedAt',
}


def _on_off(flag: bool) -> str:
    return 'on' if flag else 'off'


def _steps_label(steps: list[int]) -> str:
    return ' \u2192 '.join(format_interval(d) for d in steps)


def _build_settings(settings: SettingsService) -> tuple[str, InlineKeyboardMarkup]:
    forgetting = settings.get_forgetting_settings()
    flashcard = settings.get_flashcard_settings()
    dark_mode = settings.get_dark_mode_settings()
    sort = settings.get_sort_settings()

    steps = forgetting['intervals'][:forgetting['reviewCount']]
    arrow = '\u2193' if sort['direction'] == 'desc' else '\u2191'
    sort_label = 'created' if sort['field'] == 'createdAt' else 'updated'

    text = (
        "\u2699\ufe0f <b>Settings</b>\n\n"
        f"\U0001f9e0 Forgetting curve: <b>{_on_off(forgetting['enabled'])}</b>\n"
        f"   {forgetting['reviewCount']} reviews \u00b7 {_steps_label(steps)}\n"
        f"\U0001f514 Notifications: <b>{_on_off(forgetting['notifications'])}</b>\n"
        f"\U0001f0cf Flashcard mode: <b>{_on_off(flashcard['enabled'])}</b>\n"
        f"\U0001f319 Dark mode: <b>{_on_off(dark_mode['enabled'])}</b>\n"
        f"\u2195\ufe0f Sort: <b>{sort_label} {arrow}</b>\n\n"
        "<i>/reviews 5 \u00b7 /intervals 1 3 7 14 30 \u00b7 /sort created</i>"
    )

    markup = InlineKeyboardMarkup([
        [
            InlineKeyboardButton('\U0001f9e0 Forgetting curve', callback_data='set_forgetting'),
            InlineKeyboardButton('\U0001f514 Notifications', callback_data='set_notifications'),
        ],
        [
            InlineKeyboardButton('\U0001f0cf Flashcard mode', callback_data='set_flashcard'),
            InlineKeyboardButton('\U0001f319 Dark mode', callback_data='set_dark'),
        ],
        [
            InlineKeyboardButton('Sort by created', callback_data='sort_createdAt'),
            InlineKeyboardButton('Sort by updated', callback_data='sort_updatedAt'),
        ],
        [InlineKeyboardButton('\u21ba Reset to defaults', callback_data='set_reset')],
        menu_button(),
    ])
    return text, markup


async def settings_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    _, settings = get_services(context)
    text, markup = _build_settings(settings)
    await safe_edit_text(query, text, reply_markup=markup)


async def settings_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    _, settings = get_services(context)
    text, markup = _build_settings(settings)
    await safe_send_text(update.message, text, reply_markup=markup)


async def settings_toggle(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """set_forgetting / set_notifications / set_flashcard / set_dark / set_reset"""
    query = update.callback_query
    _, settings = get_services(context)
    action = query.data.removeprefix('set_')

    if action == 'forgetting':
        enabled = not settings.get_forgetting_settings()['enabled']
        settings.update_forgetting_settings({'enabled': enabled})
        note = f"Forgetting curve {_on_off(enabled)}"
    elif action == 'notifications':
        enabled = not settings.get_forgetting_settings()['notifications']
        settings.update_forgetting_settings({'notifications': enabled})
        note = f"Notifications {_on_off(enabled)}"
    elif action == 'flashcard':
        note = f"Flashcard mode {_on_off(settings.toggle_flashcard_mode())}"
    elif action == 'dark':
        note = f"Dark mode {_on_off(settings.toggle_dark_mode())}"
    elif action == 'reset':
        settings.reset_to_defaults()
        note = "Settings reset"
    else:
        logging.warning(f"Unknown settings action: {query.data}")
        note = None

    await query.answer(note)
    text, markup = _build_settings(settings)
    await safe_edit_text(query, text, reply_markup=markup)


async def sort_selected(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    _, settings = get_services(context)

    try:
        sort = settings.change_sort_order(query.data.removeprefix('sort_'))
    except ValidationError as e:
        await query.answer(str(e))
        return

    await query.answer(f"Sorted {sort['direction']}")
    text, markup = _build_settings(settings)
    await safe_edit_text(query, text, reply_markup=markup)


async def sort_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/sort created|updated: repeating the current field flips the direction."""
    _, settings = get_services(context)
    field = _SORT_ALIASES.get(context.args[0].lower()) if context.args else None
    if field is None:
        await safe_send_text(update.message, "Usage: /sort created or /sort updated")
        return

    sort = settings.change_sort_order(field)
    arrow = '\u2193 newest first' if sort['direction'] == 'desc' else '\u2191 oldest first'
    await safe_send_text(update.message, f"\u2195\ufe0f Sorted by {context.args[0].lower()} {arrow}")


async def reviews_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/reviews <n>: number of review steps; the interval table is regenerated."""
    _, settings = get_services(context)
    if not context.args or not context.args[0].isdigit():
        await safe_send_text(update.message, "Usage: /reviews <i>1-10</i>")
        return

    count = int(context.args[0])
    try:
        forgetting = settings.update_forgetting_settings({
            'reviewCount': count,
            'intervals': settings.generate_intervals(count),
        })
    except ValidationError as e:
        await safe_send_text(update.message, f"\u26a0\ufe0f {html.escape(str(e))}")
        return

    steps = forgetting['intervals'][:forgetting['reviewCount']]
    await safe_send_text(
        update.message,
        f"\U0001f9e0 {count} reviews: {_steps_label(steps)}",
    )


async def intervals_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/intervals <days> <days> ...: one value per review step."""
    _, settings = get_services(context)
    if not context.args or not all(arg.isdigit() for arg in context.args):
        await safe_send_text(update.message, "Usage: /intervals 1 3 7 14 30 <i>(days)</i>")
        return

    try:
        forgetting = settings.update_forgetting_settings({'intervals': [int(arg) for arg in context.args]})
    except ValidationError as e:
        await safe_send_text(update.message, f"\u26a0\ufe0f {html.escape(str(e))}")
        return

    steps = forgetting['intervals'][:forgetting['reviewCount']]
    await safe_send_text(
        update.message,
        f"\U0001f4c5 Intervals: {_steps_label(steps)}",
    )
