"""
Safe wrappers for Telegram API calls, plus access to the injected services.

Every handler uses these instead of raw query.edit_message_text / bot.send_message.
If the API call fails, these recover gracefully instead of crashing the handler.

DISCIPLINE RULE: all callers must:
  - Pass parse_mode='HTML' (the default here)
  - Wrap every piece of user-supplied text in html.escape() before embedding it
    in a format string. User content = card question, answer, tags, URLs.
"""

import logging
from typing import Any

from telegram import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message
from telegram.error import BadRequest, Forbidden, TimedOut, NetworkError
from telegram.ext import ContextTypes

from services.card_service import CardService
from services.settings_service import SettingsService

logger = logging.getLogger(__name__)


def get_services(context: ContextTypes.DEFAULT_TYPE) -> tuple[CardService, SettingsService]:
    """Services are built once in bot.main() and handed over through bot_data."""
    return context.bot_data['cards'], context.bot_data['settings']


def menu_button() -> list[InlineKeyboardButton]:
    return [InlineKeyboardButton('\U0001f3e0 Menu', callback_data='main_menu')]


async def safe_edit_text(
    query: CallbackQuery,
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
    parse_mode: str = 'HTML',
) -> bool:
    """Edit a callback query's message text. Falls back to reply on failure."""
    try:
        await query.edit_message_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
        return True
    except BadRequest as e:
        msg = str(e).lower()
        if "message is not modified" in msg:
            return True  # same content: harmless
        logger.warning(f"safe_edit_text BadRequest: {e}")
        return await _fallback_reply(query, text, reply_markup, parse_mode)
    except (TimedOut, NetworkError) as e:
        logger.warning(f"safe_edit_text network error: {e}")
        return False


async def safe_send_text(
    target: Message | tuple[int, Any],
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
    parse_mode: str = 'HTML',
) -> bool:
    """Send a text message. target can be Message or (chat_id, bot) tuple."""
    try:
        if hasattr(target, 'reply_text'):
            await target.reply_text(text, reply_markup=reply_markup, parse_mode=parse_mode)  # type: ignore[union-attr]
        else:
            chat_id, bot = target
            await bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup, parse_mode=parse_mode)
        return True
    except Forbidden:
        logger.warning("Bot was blocked by user")
        return False
    except (TimedOut, NetworkError) as e:
        logger.warning(f"safe_send_text network error: {e}")
        return False
    except BadRequest as e:
        logger.warning(f"safe_send_text BadRequest: {e}")
        return False


async def safe_send_photo(message: Message, photo: bytes, caption: str | None = None) -> bool:
    """Reply with raw image bytes."""
    try:
        await message.reply_photo(photo=photo, caption=caption, parse_mode='HTML')
        return True
    except (TimedOut, NetworkError) as e:
        logger.warning(f"safe_send_photo network error: {e}")
        return False
    except BadRequest as e:
        logger.warning(f"safe_send_photo BadRequest: {e}")
        return False


async def safe_send_document(message: Message, document: bytes, filename: str, caption: str | None = None) -> bool:
    try:
        await message.reply_document(document=document, filename=filename, caption=caption)
        return True
    except (TimedOut, NetworkError) as e:
        logger.warning(f"safe_send_document network error: {e}")
        return False
    except BadRequest as e:
        logger.warning(f"safe_send_document BadRequest: {e}")
        return False


async def _fallback_reply(
    query: CallbackQuery,
    text: str,
    reply_markup: InlineKeyboardMarkup | None,
    parse_mode: str = 'HTML',
) -> bool:
    """When edit fails, try sending a new message instead."""
    try:
        await query.message.reply_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
        return True
    except (BadRequest, Forbidden, TimedOut, NetworkError) as e:
        logger.warning(f"_fallback_reply also failed: {e}")
        return False
