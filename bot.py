import logging

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)

from telegram import Update
from telegram.error import BadRequest, Forbidden, TimedOut, NetworkError
from telegram.ext import (
    ApplicationBuilder,
    CommandHandler,
    MessageHandler,
    ConversationHandler,
    CallbackQueryHandler,
    ContextTypes,
    filters,
)

from config import TG_BOT_TOKEN, PROXY_URL
from storage.storage import init_db
from services.card_service import CardService
from services.settings_service import SettingsService
import handlers.cards as hand_card
import handlers.start as hand_start
import handlers.review as hand_review
import handlers.stats as hand_stats
import handlers.help as hand_help
import handlers.manage as hand_manage
import handlers.settings as hand_settings
from utils.constants import AddCardState


def log_card_event(event: str, payload) -> None:
    """CardService listener: one log line per committed change."""
    if hasattr(payload, 'display_id'):
        logging.info(f"[{event}] card #{payload.display_id}")
    else:
        logging.info(f"[{event}] {payload}")


def main() -> None:
    logging.info("Running main")

    builder = ApplicationBuilder().token(TG_BOT_TOKEN)
    if PROXY_URL:
        builder = builder.proxy(PROXY_URL).get_updates_proxy(PROXY_URL)
    application = builder.build()

    cards = CardService()
    cards.subscribe(log_card_event)
    application.bot_data['cards'] = cards
    application.bot_data['settings'] = SettingsService()

    # Add Card conversation
    add_card_handler = ConversationHandler(
        entry_points=[
            CallbackQueryHandler(hand_card.add_card_entry, pattern='^add_card$'),
            CommandHandler('add', hand_card.add_command),
        ],
        per_message=False,

        states={
            AddCardState.AWAITING_CONTENT: [
                CallbackQueryHandler(hand_card.cancel, pattern='^cancel$'),
                MessageHandler(filters.TEXT & ~filters.COMMAND, hand_card.get_content),
            ],

            AddCardState.CONFIRMATION_PREVIEW: [
                CallbackQueryHandler(hand_card.save_card, pattern='^save_card$'),
                CallbackQueryHandler(hand_card.edit_card, pattern='^edit_card$'),
                CallbackQueryHandler(hand_card.cancel, pattern='^cancel$'),
            ]
        },

        fallbacks=[
            CommandHandler('cancel', hand_card.cancel),
            CommandHandler('start', hand_start.force_start),
            CallbackQueryHandler(hand_card.menu_exit, pattern='^main_menu$'),
        ]
    )

    application.add_handler(CommandHandler('start', hand_start.start))
    application.add_handler(add_card_handler)

    # Slash commands
    application.add_handler(CommandHandler('help', hand_help.help_command))
    application.add_handler(CommandHandler('cards', hand_manage.cards_command))
    application.add_handler(CommandHandler('search', hand_manage.search_command))
    application.add_handler(CommandHandler('tags', hand_manage.tags_command))
    application.add_handler(CommandHandler('card', hand_manage.card_command))
    application.add_handler(CommandHandler('edit', hand_manage.edit_command))
    application.add_handler(CommandHandler('relate', hand_manage.relate_command))
    application.add_handler(CommandHandler('url', hand_manage.url_command))
    application.add_handler(CommandHandler('clear_completed', hand_manage.clear_completed_command))
    application.add_handler(CommandHandler('export', hand_manage.export_command))
    application.add_handler(CommandHandler('upcoming', hand_review.upcoming_command))
    application.add_handler(CommandHandler('stats', hand_stats.stats_command))
    application.add_handler(CommandHandler('settings', hand_settings.settings_command))
    application.add_handler(CommandHandler('sort', hand_settings.sort_command))
    application.add_handler(CommandHandler('reviews', hand_settings.reviews_command))
    application.add_handler(CommandHandler('intervals', hand_settings.intervals_command))
    application.add_handler(MessageHandler(filters.PHOTO, hand_manage.photo_attach))

    # Standalone callback handlers
    application.add_handler(CallbackQueryHandler(hand_start.main_menu, pattern='^main_menu$'))
    application.add_handler(CallbackQueryHandler(hand_stats.stats_entry, pattern='^stats$'))
    application.add_handler(CallbackQueryHandler(hand_help.help_entry, pattern='^help$'))
    application.add_handler(CallbackQueryHandler(hand_review.upcoming_entry, pattern='^upcoming$'))

    # Settings
    application.add_handler(CallbackQueryHandler(hand_settings.settings_entry, pattern='^settings$'))
    application.add_handler(CallbackQueryHandler(
        hand_settings.settings_toggle, pattern=r'^set_(forgetting|notifications|flashcard|dark|reset)$'
    ))
    application.add_handler(CallbackQueryHandler(hand_settings.sort_selected, pattern=r'^sort_\w+$'))

    # Card list & card actions
    application.add_handler(CallbackQueryHandler(
        hand_manage.list_page, pattern=r'^(list_(all|active|completed|favorites)_\d+|list_back)$'
    ))
    application.add_handler(CallbackQueryHandler(hand_manage.card_info, pattern=r'^card_info_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_reveal, pattern=r'^card_reveal_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_toggle, pattern=r'^card_toggle_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_favorite, pattern=r'^card_fav_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_images, pattern=r'^card_images_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_delete_confirm, pattern=r'^card_delete_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_delete_yes, pattern=r'^card_delete_yes_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.clear_completed_yes, pattern='^clear_completed_yes$'))

    hand_review.setup_forgetting_curve_job(application)

    application.add_error_handler(error_handler)
    application.run_polling()


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """Global error handler: logs the error and tries to notify the user."""
    error = context.error
    logging.error(f"Update {update} caused error: {error}", exc_info=error)

    if isinstance(error, Forbidden):
        # User blocked the bot: nothing we can do
        logging.warning(f"Bot was blocked by user: {error}")
        return

    if isinstance(error, (TimedOut, NetworkError)):
        logging.warning(f"Network issue: {error}")
        return

    if isinstance(error, BadRequest):
        msg = str(error).lower()
        if "message is not modified" in msg:
            # User tapped the same button twice: harmless, ignore
            return
        if "message to edit not found" in msg or "message to delete not found" in msg:
            return
        logging.warning(f"Bad request: {error}")

    if isinstance(update, Update) and update.effective_chat:
        try:
            await context.bot.send_message(
                chat_id=update.effective_chat.id,
                text="\u26a0\ufe0f Something went wrong. Try /start to reset."
            )
        except (BadRequest, Forbidden, TimedOut, NetworkError) as e:
            logging.warning(f"Could not notify user about the error: {e}")


if __name__ == '__main__':
    logging.info("Init db...")
    init_db()

    logging.info("Starting app")
    main()
