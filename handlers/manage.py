import base64
import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery, Message
from telegram.ext import ContextTypes

from models.card import Card
from services.card_service import CardService
from utils.constants import IMAGE_MAX_SIZE
from utils.errors import NotFoundError, ValidationError
from utils.srs import review_label
from utils.telegram_helpers import (
    get_services, menu_button, safe_edit_text, safe_send_text,
    safe_send_photo, safe_send_document,
)
from utils.utils import parse_text, truncate

CARDS_PER_PAGE = 5
QUESTION_PREVIEW_MAX = 30

_STATUS_LABELS = {
    'all': '\U0001f4da All',
    'active': '\U0001f4d6 Learning',
    'completed': '\u2705 Mastered',
    'favorites': '\u2b50 Favorites',
}


def parse_display_id(arg: str) -> int | None:
    """'3' or '#3' -> 3"""
    arg = arg.strip().lstrip('#')
    return int(arg) if arg.isdigit() else None


def _find_by_arg(cards: CardService, arg: str) -> Card | None:
    display_id = parse_display_id(arg)
    if display_id is None:
        return None
    return cards.get_card_by_display_id(display_id)


# ── Card detail ───────────────────────────────────────────────

def render_card(card: Card, cards: CardService, max_reviews: int, reveal: bool = True) -> str:
    status = '\u2705 Mastered' if card.completed else '\U0001f4d6 Learning'
    star = '  \u2b50' if card.favorite else ''
    lines = [f"<b>#{card.display_id}</b>  {html.escape(card.question)}{star}", '']

    if not reveal:
        lines.append('\U0001f4a1 <i>tap Show answer</i>')
    elif card.answer:
        lines.append(f"\U0001f4a1 {html.escape(card.answer)}")
    else:
        lines.append('\U0001f4a1 <i>(no answer)</i>')

    if card.tags:
        lines.append('')
        lines.append('\U0001f3f7 ' + ' '.join(f"#{html.escape(t)}" for t in card.tags))

    related = [cards.get_card(rid) for rid in card.related_cards]
    related = [r for r in related if r is not None]
    if related:
        lines.append('\U0001f517 Related: ' + ', '.join(f"#{r.display_id}" for r in related))

    for url in card.urls:
        lines.append(f"\U0001f310 {html.escape(url)}")
    if card.images:
        lines.append(f"\U0001f5bc {len(card.images)} image{'s' if len(card.images) != 1 else ''}")

    lines.append('')
    lines.append(f"{status} \u00b7 review {card.review_count}/{max_reviews}")
    if card.next_review_date is not None:
        lines.append(f"\U0001f514 Next review {review_label(card)}")
    lines.append(f"<i>Created {card.created_at:%Y-%m-%d %H:%M}</i>")
    if card.updated_at:
        lines.append(f"<i>Updated {card.updated_at:%Y-%m-%d %H:%M}</i>")

    return '\n'.join(lines)


def card_markup(card: Card, reveal: bool = True) -> InlineKeyboardMarkup:
    buttons: list[list[InlineKeyboardButton]] = []
    if not reveal:
        buttons.append([InlineKeyboardButton("\U0001f440 Show answer", callback_data=f'card_reveal_{card.id}')])

    buttons.append([
        InlineKeyboardButton(
            '\u21a9\ufe0f Back to learning' if card.completed else '\u2705 Mastered',
            callback_data=f'card_toggle_{card.id}',
        ),
        InlineKeyboardButton(
            '\u2606 Unfavorite' if card.favorite else '\u2b50 Favorite',
            callback_data=f'card_fav_{card.id}',
        ),
    ])

    extra = []
    if card.images:
        extra.append(InlineKeyboardButton('\U0001f5bc Images', callback_data=f'card_images_{card.id}'))
    extra.append(InlineKeyboardButton('\U0001f5d1\ufe0f Delete', callback_data=f'card_delete_{card.id}'))
    buttons.append(extra)

    buttons.append([
        InlineKeyboardButton('\U0001f4da Cards', callback_data='list_back'),
        InlineKeyboardButton('\U0001f3e0 Menu', callback_data='main_menu'),
    ])
    return InlineKeyboardMarkup(buttons)


async def _show_card(
    target: Message | CallbackQuery,
    context: ContextTypes.DEFAULT_TYPE,
    card: Card,
    reveal: bool | None = None,
) -> None:
    cards, settings = get_services(context)
    if reveal is None:
        # Flashcard mode hides the answer until asked
        reveal = not settings.get_flashcard_settings()['enabled']

    max_reviews = settings.get_forgetting_settings()['reviewCount']
    text = render_card(card, cards, max_reviews, reveal=reveal)
    markup = card_markup(card, reveal=reveal)

    if isinstance(target, CallbackQuery):
        await safe_edit_text(target, text, reply_markup=markup)
    else:
        await safe_send_text(target, text, reply_markup=markup)


async def _card_from_query(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> Card | None:
    cards, _ = get_services(context)
    card_id = int(query.data.rsplit('_', 1)[1])
    card = cards.get_card(card_id)
    if card is None:
        await safe_edit_text(
            query,
            "Card not found \u2014 it may have been deleted.",
            reply_markup=InlineKeyboardMarkup([menu_button()]),
        )
    return card


async def card_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/card <n>"""
    cards, _ = get_services(context)
    card = _find_by_arg(cards, context.args[0]) if context.args else None
    if card is None:
        await safe_send_text(update.message, "Usage: /card <i>number</i>, e.g. /card 3")
        return
    await _show_card(update.message, context, card)


async def card_info(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card = await _card_from_query(query, context)
    if card:
        await _show_card(query, context, card)


async def card_reveal(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card = await _card_from_query(query, context)
    if card:
        await _show_card(query, context, card, reveal=True)


async def card_toggle(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    card = await _card_from_query(query, context)
    if card is None:
        await query.answer()
        return

    cards, settings = get_services(context)
    card = cards.toggle_card_completion(card.id, settings.get_forgetting_settings())
    await query.answer('Marked as mastered' if card.completed else 'Back to learning')
    await _show_card(query, context, card, reveal=True)


async def card_favorite(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    card = await _card_from_query(query, context)
    if card is None:
        await query.answer()
        return

    cards, _ = get_services(context)
    card = cards.toggle_card_favorite(card.id)
    await query.answer('Added to favorites' if card.favorite else 'Removed from favorites')
    await _show_card(query, context, card, reveal=True)


async def card_delete_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card = await _card_from_query(query, context)
    if card is None:
        return

    await safe_edit_text(
        query,
        f"\U0001f5d1\ufe0f Delete <b>#{card.display_id}</b> {html.escape(card.question)}?\n"
        "<i>This cannot be undone.</i>",
        reply_markup=InlineKeyboardMarkup([
            [
                InlineKeyboardButton('Yes, delete', callback_data=f'card_delete_yes_{card.id}'),
                InlineKeyboardButton('Cancel', callback_data=f'card_info_{card.id}'),
            ]
        ]),
    )


async def card_delete_yes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card_id = int(query.data.rsplit('_', 1)[1])

    cards, _ = get_services(context)
    try:
        card = cards.delete_card(card_id)
    except NotFoundError:
        await safe_edit_text(query, "Card was already deleted.", reply_markup=InlineKeyboardMarkup([menu_button()]))
        return

    await safe_edit_text(
        query,
        f"\U0001f5d1\ufe0f Deleted #{card.display_id}",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton('\U0001f4da Cards', callback_data='list_back')],
            menu_button(),
        ]),
    )


async def card_images(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card = await _card_from_query(query, context)
    if card is None:
        return

    for image in card.images:
        data_url = card.image_data.get(image['id'])
        if not data_url:
            continue
        raw = base64.b64decode(data_url.split(',', 1)[1])
        await safe_send_photo(query.message, raw, caption=html.escape(image['name']))


# ── Card list ─────────────────────────────────────────────────

def _build_list(
    cards: CardService,
    sort_settings: dict,
    status: str,
    page: int,
    search_query: str = '',
    selected_tags: list[str] | None = None,
) -> tuple[str, InlineKeyboardMarkup]:
    matches = cards.get_filtered_cards(
        search_query=search_query,
        selected_tags=selected_tags,
        status=status,
        sort_field=sort_settings['field'],
        sort_direction=sort_settings['direction'],
    )
    total = len(matches)
    total_pages = max(1, (total + CARDS_PER_PAGE - 1) // CARDS_PER_PAGE)
    page = max(0, min(page, total_pages - 1))
    page_cards = matches[page * CARDS_PER_PAGE:(page + 1) * CARDS_PER_PAGE]

    header = f"<b>{_STATUS_LABELS.get(status, _STATUS_LABELS['all'])}</b> \u00b7 {total} card{'s' if total != 1 else ''}"
    if total_pages > 1:
        header += f"  ({page + 1}/{total_pages})"
    if search_query:
        header += f"\n\U0001f50e {html.escape(search_query)}"
    if selected_tags:
        header += '\n\U0001f3f7 ' + ' '.join(f"#{html.escape(t)}" for t in selected_tags)
    if not page_cards:
        header += '\n\n<i>No cards here</i>'

    buttons: list[list[InlineKeyboardButton]] = []
    for card in page_cards:
        mark = '\u2705' if card.completed else '\u25ab\ufe0f'
        star = '\u2b50' if card.favorite else ''
        buttons.append([InlineKeyboardButton(
            f"{mark} #{card.display_id} {truncate(card.question, QUESTION_PREVIEW_MAX)} {star}".rstrip(),
            callback_data=f'card_info_{card.id}',
        )])

    if total_pages > 1:
        nav: list[InlineKeyboardButton] = []
        if page > 0:
            nav.append(InlineKeyboardButton('\u2190', callback_data=f'list_{status}_{page - 1}'))
        if page < total_pages - 1:
            nav.append(InlineKeyboardButton('\u2192', callback_data=f'list_{status}_{page + 1}'))
        buttons.append(nav)

    buttons.append([
        InlineKeyboardButton(label, callback_data=f'list_{key}_0')
        for key, label in _STATUS_LABELS.items() if key != status
    ])
    buttons.append(menu_button())
    return header, InlineKeyboardMarkup(buttons)


async def _send_list(message: Message, context: ContextTypes.DEFAULT_TYPE, status: str) -> None:
    cards, settings = get_services(context)
    context.user_data['list_status'] = status
    text, markup = _build_list(
        cards, settings.get_sort_settings(), status, 0,
        context.user_data.get('search_query', ''),
        context.user_data.get('selected_tags'),
    )
    await safe_send_text(message, text, reply_markup=markup)


async def list_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """list_<status>_<page>, or list_back to return to the last list shown."""
    query = update.callback_query
    await query.answer()

    if query.data == 'list_back':
        status, page = context.user_data.get('list_status', 'all'), 0
    else:
        _, status, page_str = query.data.split('_')
        page = int(page_str)
    context.user_data['list_status'] = status

    cards, settings = get_services(context)
    text, markup = _build_list(
        cards, settings.get_sort_settings(), status, page,
        context.user_data.get('search_query', ''),
        context.user_data.get('selected_tags'),
    )
    await safe_edit_text(query, text, reply_markup=markup)


async def cards_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/cards: every card, search and tag filters cleared."""
    context.user_data.pop('search_query', None)
    context.user_data.pop('selected_tags', None)
    await _send_list(update.message, context, context.user_data.get('list_status', 'all'))


async def search_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/search <text> or /search #<n>"""
    query = ' '.join(context.args).strip()
    if not query:
        await safe_send_text(update.message, "Usage: /search <i>text</i> or /search #3")
        return
    context.user_data['search_query'] = query
    await _send_list(update.message, context, 'all')


async def tags_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/tags a b: cards carrying every listed tag. Bare /tags lists the known tags."""
    cards, _ = get_services(context)
    wanted = [t.lstrip('#').lower() for t in context.args if t.lstrip('#')]

    if not wanted:
        context.user_data.pop('selected_tags', None)
        known = cards.get_all_tags()
        text = ('\U0001f3f7 ' + ' '.join(f"#{html.escape(t)}" for t in known)) if known else "No tags yet"
        await safe_send_text(update.message, text)
        return

    context.user_data['selected_tags'] = wanted
    await _send_list(update.message, context, 'all')


# ── Editing commands ─────────────────────────────────────────

async def edit_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/edit <n> question | answer | tags"""
    cards, _ = get_services(context)
    raw = (update.message.text or '').split(maxsplit=2)
    card = _find_by_arg(cards, raw[1]) if len(raw) > 1 else None
    if card is None or len(raw) < 3:
        await safe_send_text(update.message, "Usage: /edit <i>number</i> question | answer | tags")
        return

    if card.completed:
        await safe_send_text(update.message, "\u26a0\ufe0f Mastered cards can't be edited \u2014 move it back to learning first.")
        return

    parsed = parse_text(raw[2])
    # A bare question keeps the current answer and tags
    updates = {'question': parsed['question']}
    if '|' in raw[2] or '\n' in raw[2]:
        updates['answer'] = parsed['answer']
    if raw[2].count('|') >= 2:
        updates['tags'] = parsed['tags']

    try:
        card = cards.update_card(card.id, updates)
    except ValidationError as e:
        await safe_send_text(update.message, f"\u26a0\ufe0f {html.escape(str(e))}")
        return
    await _show_card(update.message, context, card, reveal=True)


async def relate_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/relate <n> <m> ...: replaces card n's related cards. /relate <n> alone clears them."""
    cards, _ = get_services(context)
    card = _find_by_arg(cards, context.args[0]) if context.args else None
    if card is None:
        await safe_send_text(update.message, "Usage: /relate <i>number</i> <i>number</i> \u2026")
        return

    related_ids = []
    unknown = []
    for arg in context.args[1:]:
        other = _find_by_arg(cards, arg)
        if other is None:
            unknown.append(arg)
        else:
            related_ids.append(other.id)

    card = cards.set_related_cards(card.id, related_ids)
    logging.info(f"Card #{card.display_id} related to {len(card.related_cards)} card(s)")

    text = f"\U0001f517 #{card.display_id} is linked with {len(card.related_cards)} card(s) both ways"
    if unknown:
        text += f"\n<i>Skipped unknown: {html.escape(' '.join(unknown))}</i>"
    await safe_send_text(update.message, text)


async def url_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/url <n> <link> adds a link; /url <n> -<link> removes it."""
    cards, _ = get_services(context)
    card = _find_by_arg(cards, context.args[0]) if len(context.args) >= 2 else None
    if card is None:
        await safe_send_text(update.message, "Usage: /url <i>number</i> <i>https://\u2026</i>")
        return

    link = context.args[1]
    try:
        if link.startswith('-'):
            removed = cards.remove_card_url(card.id, link[1:])
            text = "\U0001f310 Link removed" if removed else "That link isn't on this card"
        else:
            cards.add_card_url(card.id, link)
            text = f"\U0001f310 Link added to #{card.display_id}"
    except ValidationError as e:
        text = f"\u26a0\ufe0f {html.escape(str(e))}"
    await safe_send_text(update.message, text)


async def photo_attach(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """A photo captioned '#<n>' is attached to card n."""
    cards, _ = get_services(context)
    card = _find_by_arg(cards, update.message.caption or '')
    if card is None:
        await safe_send_text(update.message, "Caption the photo with the card number, e.g. <code>#3</code>")
        return

    photo = update.message.photo[-1]
    if photo.file_size and photo.file_size > IMAGE_MAX_SIZE:
        await safe_send_text(update.message, f"\u26a0\ufe0f Images must be {IMAGE_MAX_SIZE // (1024 * 1024)}MB or smaller")
        return

    tg_file = await photo.get_file()
    data = bytes(await tg_file.download_as_bytearray())

    try:
        cards.add_card_image(card.id, f"{photo.file_unique_id}.jpg", 'image/jpeg', data)
    except (ValidationError, NotFoundError) as e:
        await safe_send_text(update.message, f"\u26a0\ufe0f {html.escape(str(e))}")
        return
    await safe_send_text(update.message, f"\U0001f5bc Image attached to #{card.display_id}")


# ── Bulk ──────────────────────────────────────────────────────

async def clear_completed_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    cards, _ = get_services(context)
    completed = cards.get_stats()['completed']
    if completed == 0:
        await safe_send_text(update.message, "No mastered cards to clear")
        return

    await safe_send_text(
        update.message,
        f"\U0001f5d1\ufe0f Delete {completed} mastered card{'s' if completed != 1 else ''}?",
        reply_markup=InlineKeyboardMarkup([[
            InlineKeyboardButton('Yes, delete', callback_data='clear_completed_yes'),
            InlineKeyboardButton('Cancel', callback_data='main_menu'),
        ]]),
    )


async def clear_completed_yes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    cards, _ = get_services(context)
    removed = cards.clear_completed_cards()
    await safe_edit_text(
        query,
        f"\U0001f5d1\ufe0f Deleted {removed} card{'s' if removed != 1 else ''}",
        reply_markup=InlineKeyboardMarkup([menu_button()]),
    )


async def export_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    cards, _ = get_services(context)
    payload = cards.export_cards().encode('utf-8')
    count = cards.get_stats()['total']
    await safe_send_document(update.message, payload, 'flashcards.json', caption=f"{count} cards")
