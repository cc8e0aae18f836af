"""
Card repository: the single owner of the card collection.

Every mutation goes through this service, which writes the whole collection
back to storage before returning and then tells subscribers what changed.
"""

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable

from models.card import Card
from storage.storage import get_from_storage, save_to_storage
from utils.constants import FLASHCARDS_KEY, DISPLAY_ID_COUNTER_KEY
from utils.errors import NotFoundError
from utils.srs import refresh_pending_review, schedule_next_review

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]


class CardService:
    def __init__(self):
        self.cards: list[Card] = []
        self.max_display_id = 0
        self._listeners: list[Listener] = []
        self.load_cards()

    # ── Persistence ───────────────────────────────────────────

    def load_cards(self) -> None:
        cards_data = get_from_storage(FLASHCARDS_KEY, [])
        self.cards = [Card.from_dict(data) for data in cards_data]
        repaired = self._repair_card_ids()
        self._initialize_display_ids(force_save=repaired)
        logger.info(f"Loaded {len(self.cards)} cards (max display id {self.max_display_id})")

    def _repair_card_ids(self) -> bool:
        """Give cards that collide with an earlier id a fresh one. True if any changed."""
        seen: set[int] = set()
        repaired = False
        for card in self.cards:
            if card.id in seen:
                card.id = max(seen) + 1
                repaired = True
                logger.warning(f"Card with duplicate id reassigned to {card.id}")
            seen.add(card.id)
        return repaired

    def _initialize_display_ids(self, force_save: bool = False) -> None:
        stored = get_from_storage(DISPLAY_ID_COUNTER_KEY, 0)
        seen = max((card.display_id for card in self.cards), default=0)
        self.max_display_id = max(stored or 0, seen)

        # Legacy cards without a display id get fresh numbers, oldest first
        missing = [card for card in self.cards if not card.display_id]
        for card in sorted(missing, key=lambda c: c.created_at):
            self.max_display_id += 1
            card.display_id = self.max_display_id

        if missing or force_save:
            self.save_cards()

    def save_cards(self) -> bool:
        ok = save_to_storage(FLASHCARDS_KEY, [card.to_dict() for card in self.cards])
        save_to_storage(DISPLAY_ID_COUNTER_KEY, self.max_display_id)
        return ok

    def export_cards(self) -> str:
        """The whole collection as a JSON document, in stored order."""
        return json.dumps([card.to_dict() for card in self.cards], ensure_ascii=False, indent=2)

    # ── Change notifications ──────────────────────────────────

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _commit(self, event: str, payload: Any = None) -> None:
        self.save_cards()
        for listener in list(self._listeners):
            listener(event, payload)

    # ── Lookups ───────────────────────────────────────────────

    def get_card(self, card_id: int) -> Card | None:
        return next((card for card in self.cards if card.id == card_id), None)

    def get_card_by_display_id(self, display_id: int) -> Card | None:
        return next((card for card in self.cards if card.display_id == display_id), None)

    def _require(self, card_id: int) -> Card:
        card = self.get_card(card_id)
        if card is None:
            raise NotFoundError(card_id)
        return card

    def get_all_cards(self) -> list[Card]:
        return list(self.cards)

    def get_all_tags(self) -> list[str]:
        return sorted({tag for card in self.cards for tag in card.tags})

    # ── Mutations ─────────────────────────────────────────────

    def add_card(self, data: dict[str, Any]) -> Card:
        card = Card.create(data, card_id=self._next_card_id(), display_id=self.max_display_id + 1)
        self.max_display_id = card.display_id

        self.cards.insert(0, card)
        logger.info(f"Added card #{card.display_id} ({card.id})")
        self._commit('card_added', card)
        return card

    def _next_card_id(self) -> int:
        now_ms = int(time.time() * 1000)
        newest = max((card.id for card in self.cards), default=0)
        return max(now_ms, newest + 1)

    def update_card(self, card_id: int, updates: dict[str, Any]) -> Card:
        card = self._require(card_id)
        card.update(updates)
        self._commit('card_updated', card)
        return card

    def delete_card(self, card_id: int) -> Card:
        card = self._require(card_id)
        self.cards.remove(card)
        self._scrub_relations({card_id})

        logger.info(f"Deleted card #{card.display_id} ({card.id})")
        self._commit('card_deleted', card)
        return card

    def clear_completed_cards(self) -> int:
        removed = {card.id for card in self.cards if card.completed}
        if not removed:
            return 0

        self.cards = [card for card in self.cards if card.id not in removed]
        self._scrub_relations(removed)

        logger.info(f"Cleared {len(removed)} completed cards")
        self._commit('cards_cleared', len(removed))
        return len(removed)

    def _scrub_relations(self, removed_ids: set[int]) -> None:
        for card in self.cards:
            if any(rid in removed_ids for rid in card.related_cards):
                card.related_cards = [rid for rid in card.related_cards if rid not in removed_ids]

    def toggle_card_completion(
        self,
        card_id: int,
        forgetting_settings: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Card:
        """
        Flip Active <-> Mastered. When forgetting_settings is given and enabled,
        mastering schedules the next review: a card without a pending date takes
        its next step, a card whose pending date has already passed restarts
        that step from now.
        """
        card = self._require(card_id)
        card.toggle_completion()

        if card.completed and forgetting_settings and forgetting_settings.get('enabled'):
            now = now or datetime.now()
            if card.next_review_date is None:
                schedule_next_review(
                    card, forgetting_settings['intervals'], forgetting_settings['reviewCount'], now=now,
                )
            else:
                refresh_pending_review(card, forgetting_settings['intervals'], now=now)

        self._commit('card_completion_toggled', card)
        return card

    def schedule_card_review(self, card_id: int, forgetting_settings: dict[str, Any]) -> Card:
        card = self._require(card_id)
        if card.completed:
            schedule_next_review(card, forgetting_settings['intervals'], forgetting_settings['reviewCount'])
            self._commit('card_review_scheduled', card)
        return card

    def toggle_card_favorite(self, card_id: int) -> Card:
        card = self._require(card_id)
        card.toggle_favorite()
        self._commit('card_favorite_toggled', card)
        return card

    def set_related_cards(self, card_id: int, related_ids: list[int]) -> Card:
        """Replace the card's relations, mirroring every change on the other side."""
        card = self._require(card_id)

        selected: list[int] = []
        for rid in related_ids:
            if rid != card_id and rid not in selected and self.get_card(rid) is not None:
                selected.append(rid)

        for old_id in card.related_cards:
            if old_id in selected:
                continue
            old_card = self.get_card(old_id)
            if old_card is not None:
                old_card.related_cards = [rid for rid in old_card.related_cards if rid != card_id]

        card.related_cards = selected

        for rid in selected:
            related = self.get_card(rid)
            if card_id not in related.related_cards:
                related.related_cards.append(card_id)

        self._commit('relations_changed', card)
        return card

    def add_card_url(self, card_id: int, url: str) -> Card:
        card = self._require(card_id)
        card.add_url(url)
        self._commit('card_updated', card)
        return card

    def remove_card_url(self, card_id: int, url: str) -> bool:
        card = self._require(card_id)
        removed = card.remove_url(url)
        if removed:
            self._commit('card_updated', card)
        return removed

    def add_card_image(self, card_id: int, name: str, mime_type: str, data: bytes) -> str:
        card = self._require(card_id)
        image_id = card.add_image(name, mime_type, data)
        self._commit('card_updated', card)
        return image_id

    def remove_card_image(self, card_id: int, image_id: str) -> bool:
        card = self._require(card_id)
        removed = card.remove_image(image_id)
        if removed:
            self._commit('card_updated', card)
        return removed

    # ── Forgetting curve ──────────────────────────────────────

    def check_forgetting_curve(self, forgetting_settings: dict[str, Any], now: datetime | None = None) -> int:
        """
        Demote every mastered card whose review date has passed back to Active
        and schedule its following review. Returns how many cards were demoted.
        """
        if not forgetting_settings.get('enabled'):
            return 0

        now = now or datetime.now()
        due = [card for card in self.cards if card.needs_review(now)]

        for card in due:
            card.revert_for_review()
            schedule_next_review(
                card,
                forgetting_settings['intervals'],
                forgetting_settings['reviewCount'],
                now=now,
            )

        if due:
            logger.info(f"Forgetting curve: {len(due)} card(s) back to learning")
            self._commit('forgetting_curve', len(due))

        return len(due)

    # ── Queries ───────────────────────────────────────────────

    def get_filtered_cards(
        self,
        search_query: str = '',
        selected_tags=None,
        status: str | None = None,
        sort_field: str | None = None,
        sort_direction: str | None = None,
    ) -> list[Card]:
        cards = list(self.cards)

        if search_query:
            cards = [card for card in cards if card.matches_query(search_query)]

        if selected_tags:
            cards = [card for card in cards if card.has_all_tags(selected_tags)]

        if status == 'active':
            cards = [card for card in cards if not card.completed]
        elif status == 'completed':
            cards = [card for card in cards if card.completed]
        elif status == 'favorites':
            cards = [card for card in cards if card.favorite]

        if sort_field and sort_direction:
            cards = sort_cards(cards, sort_field, sort_direction)

        return cards

    def get_cards_needing_review(self) -> list[Card]:
        pending = [card for card in self.cards if card.completed and card.next_review_date is not None]
        return sorted(pending, key=lambda card: card.next_review_date)

    def get_stats(self) -> dict[str, int]:
        total = len(self.cards)
        active = sum(1 for card in self.cards if not card.completed)
        return {
            'total': total,
            'active': active,
            'completed': total - active,
            'favorite': sum(1 for card in self.cards if card.favorite),
        }


def sort_cards(cards: list[Card], field: str, direction: str) -> list[Card]:
    """Stable sort by createdAt or updatedAt (never-updated cards use createdAt)."""
    if field == 'updatedAt':
        key = lambda card: card.updated_at or card.created_at
    else:
        key = lambda card: card.created_at
    return sorted(cards, key=key, reverse=(direction != 'asc'))
