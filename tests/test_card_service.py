"""
Tests for services/card_service.py.

Every test runs against a real SQLite file in tmp_path, so persistence is
checked by building a second CardService over the same DB.
"""
import json
from datetime import datetime, timedelta

import pytest

import storage.storage as kv
from models.card import Card
from services.card_service import CardService, sort_cards
from utils.constants import FLASHCARDS_KEY, DISPLAY_ID_COUNTER_KEY
from utils.errors import NotFoundError, ValidationError

FORGETTING = {'enabled': True, 'reviewCount': 3, 'intervals': [1, 3, 7], 'notifications': True}


# ── Fixtures ──────────────────────────────────────────────────

@pytest.fixture()
def tdb(tmp_path, monkeypatch):
    """Patch DB_PATH to a fresh temp file and initialise the schema."""
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(kv, 'DB_PATH', db_path)
    kv.init_db()
    return db_path


@pytest.fixture()
def svc(tdb):
    return CardService()


def _add(svc, question='q', answer='a', tags=None):
    return svc.add_card({'question': question, 'answer': answer, 'tags': tags or []})


# ── Adding & loading ──────────────────────────────────────────

class TestAddCard:
    def test_first_card_gets_display_id_one(self, svc):
        card = _add(svc, 'What is 記憶?', 'memory')
        assert card.display_id == 1
        assert card.completed is False
        assert card.review_count == 0

    def test_newest_card_first(self, svc):
        first = _add(svc, 'first')
        second = _add(svc, 'second')
        assert [c.id for c in svc.get_all_cards()] == [second.id, first.id]
        assert second.display_id == 2

    def test_ids_are_unique(self, svc):
        ids = {_add(svc, f'q{i}').id for i in range(5)}
        assert len(ids) == 5

    def test_invalid_card_not_stored(self, svc):
        with pytest.raises(ValidationError):
            svc.add_card({'question': '', 'answer': 'a'})
        assert svc.get_all_cards() == []
        assert svc.max_display_id == 0

    def test_cards_survive_reload(self, svc):
        card = _add(svc, 'persist me', tags=['x'])
        again = CardService().get_card(card.id)
        assert again is not None
        assert again.question == 'persist me'
        assert again.tags == ['x']
        assert again.display_id == 1

    def test_display_ids_never_reused(self, svc):
        _add(svc, 'one')
        _add(svc, 'two')
        third = _add(svc, 'three')
        svc.delete_card(third.id)

        assert _add(svc, 'four').display_id == 4
        assert _add(CardService(), 'five').display_id == 5

    def test_legacy_cards_are_numbered_by_age(self, tdb):
        kv.save_to_storage(FLASHCARDS_KEY, [
            {'id': 2, 'question': 'newer', 'createdAt': '2024-02-01T00:00:00'},
            {'id': 1, 'question': 'older', 'createdAt': '2024-01-01T00:00:00'},
        ])
        svc = CardService()
        assert svc.get_card(1).display_id == 1
        assert svc.get_card(2).display_id == 2
        assert kv.get_from_storage(DISPLAY_ID_COUNTER_KEY) == 2

    def test_stored_card_without_id_still_loads(self, tdb):
        kv.save_to_storage(FLASHCARDS_KEY, [
            {'id': 1, 'question': 'kept', 'displayId': 1},
            {'question': 'no id', 'displayId': 2},
            {'id': 1, 'question': 'duplicate', 'displayId': 3},
        ])
        svc = CardService()
        ids = [card.id for card in svc.cards]
        assert len(svc.cards) == 3
        assert len(set(ids)) == 3
        assert all(isinstance(i, int) and i > 0 for i in ids)
        assert svc.get_card(1).question == 'kept'

        # Repaired ids are written back
        again = CardService()
        assert [card.id for card in again.cards] == ids

    def test_stored_tags_are_normalized_on_load(self, tdb):
        kv.save_to_storage(FLASHCARDS_KEY, [
            {'id': 1, 'question': 'q', 'displayId': 1, 'tags': ['Geo', 'geo', ' Maps ']},
        ])
        svc = CardService()
        assert svc.get_card(1).tags == ['geo', 'maps']
        assert [c.id for c in svc.get_filtered_cards(selected_tags=['GEO'])] == [1]

    def test_lookup_by_display_id(self, svc):
        card = _add(svc)
        assert svc.get_card_by_display_id(1) is card
        assert svc.get_card_by_display_id(99) is None


# ── Updating & deleting ───────────────────────────────────────

class TestUpdateDelete:
    def test_update(self, svc):
        card = _add(svc)
        svc.update_card(card.id, {'answer': 'new', 'tags': 'A, b'})
        again = CardService().get_card(card.id)
        assert again.answer == 'new'
        assert again.tags == ['a', 'b']
        assert again.updated_at is not None

    def test_update_unknown_card(self, svc):
        with pytest.raises(NotFoundError) as exc:
            svc.update_card(12345, {'answer': 'x'})
        assert exc.value.card_id == 12345

    def test_delete_unknown_card(self, svc):
        with pytest.raises(NotFoundError):
            svc.delete_card(12345)

    def test_delete_scrubs_relations(self, svc):
        a, b, c = _add(svc, 'a'), _add(svc, 'b'), _add(svc, 'c')
        svc.set_related_cards(a.id, [b.id, c.id])
        svc.delete_card(b.id)

        reloaded = CardService()
        all_ids = {card.id for card in reloaded.get_all_cards()}
        for card in reloaded.get_all_cards():
            assert set(card.related_cards) <= all_ids
        assert reloaded.get_card(a.id).related_cards == [c.id]

    def test_clear_completed(self, svc):
        a, b, c = _add(svc, 'a'), _add(svc, 'b'), _add(svc, 'c')
        svc.set_related_cards(a.id, [b.id])
        svc.toggle_card_completion(b.id)
        svc.toggle_card_completion(c.id)

        assert svc.clear_completed_cards() == 2
        assert [card.id for card in svc.get_all_cards()] == [a.id]
        assert svc.get_card(a.id).related_cards == []
        assert svc.clear_completed_cards() == 0


# ── Completion & review scheduling ────────────────────────────

class TestCompletion:
    def test_master_schedules_first_review(self, svc):
        card = _add(svc)
        before = datetime.now()
        svc.toggle_card_completion(card.id, FORGETTING)

        assert card.completed is True
        assert card.review_count == 1
        expected = before + timedelta(days=1)
        assert abs((card.next_review_date - expected).total_seconds()) < 5

    def test_master_without_settings_schedules_nothing(self, svc):
        card = _add(svc)
        svc.toggle_card_completion(card.id)
        assert card.completed is True
        assert card.next_review_date is None
        assert card.review_count == 0

    def test_disabled_curve_schedules_nothing(self, svc):
        card = _add(svc)
        svc.toggle_card_completion(card.id, {**FORGETTING, 'enabled': False})
        assert card.next_review_date is None

    def test_back_to_learning_clears_date(self, svc):
        card = _add(svc)
        svc.toggle_card_completion(card.id, FORGETTING)
        svc.toggle_card_completion(card.id, FORGETTING)

        assert card.completed is False
        assert card.next_review_date is None
        assert card.review_count == 1

    def test_exhausted_card_gets_no_date(self, svc):
        card = _add(svc)
        card.review_count = 3
        svc.toggle_card_completion(card.id, FORGETTING)
        assert card.completed is True
        assert card.next_review_date is None
        assert card.review_count == 3

    def test_schedule_card_review_ignores_active_cards(self, svc):
        card = _add(svc)
        svc.schedule_card_review(card.id, FORGETTING)
        assert card.next_review_date is None

    def test_favorite(self, svc):
        card = _add(svc)
        assert svc.toggle_card_favorite(card.id).favorite is True
        assert CardService().get_card(card.id).favorite is True


# ── Forgetting curve sweep ────────────────────────────────────

class TestForgettingCurve:
    def _mastered(self, svc):
        card = _add(svc)
        svc.toggle_card_completion(card.id, FORGETTING)
        return card

    def test_due_card_goes_back_to_learning(self, svc):
        card = self._mastered(svc)
        now = card.next_review_date + timedelta(seconds=1)

        assert svc.check_forgetting_curve(FORGETTING, now=now) == 1
        assert card.completed is False
        assert card.completed_at is None
        assert card.review_count == 2
        assert card.next_review_date == now + timedelta(days=3)

    def test_not_yet_due(self, svc):
        card = self._mastered(svc)
        now = card.next_review_date - timedelta(seconds=1)
        assert svc.check_forgetting_curve(FORGETTING, now=now) == 0
        assert card.completed is True

    def test_sweep_is_idempotent(self, svc):
        card = self._mastered(svc)
        now = card.next_review_date + timedelta(seconds=1)
        svc.check_forgetting_curve(FORGETTING, now=now)
        snapshot = card.to_dict()

        assert svc.check_forgetting_curve(FORGETTING, now=now) == 0
        assert card.to_dict() == snapshot

    def test_disabled_sweep_does_nothing(self, svc):
        card = self._mastered(svc)
        now = card.next_review_date + timedelta(days=1)
        assert svc.check_forgetting_curve({**FORGETTING, 'enabled': False}, now=now) == 0
        assert card.completed is True

    def test_full_review_cycle(self, svc):
        card = self._mastered(svc)

        for expected_count in (2, 3):
            now = card.next_review_date + timedelta(seconds=1)
            svc.check_forgetting_curve(FORGETTING, now=now)
            assert card.review_count == expected_count
            # Re-mastering keeps the pending review instead of counting again
            svc.toggle_card_completion(card.id, FORGETTING)
            assert card.review_count == expected_count
            assert card.next_review_date is not None

        now = card.next_review_date + timedelta(seconds=1)
        assert svc.check_forgetting_curve(FORGETTING, now=now) == 1
        assert card.next_review_date is None
        assert card.review_count == 3

        svc.toggle_card_completion(card.id, FORGETTING)
        assert card.completed is True
        assert card.next_review_date is None
        assert svc.check_forgetting_curve(FORGETTING, now=now + timedelta(days=365)) == 0

    def test_remastering_after_missed_review_restarts_the_step(self, svc):
        card = self._mastered(svc)
        swept_at = card.next_review_date + timedelta(seconds=1)
        svc.check_forgetting_curve(FORGETTING, now=swept_at)
        assert card.next_review_date == swept_at + timedelta(days=3)

        remastered_at = swept_at + timedelta(days=10)
        svc.toggle_card_completion(card.id, FORGETTING, now=remastered_at)
        assert card.review_count == 2
        assert card.next_review_date > remastered_at
        assert card.next_review_date == remastered_at + timedelta(days=3)

        later = remastered_at + timedelta(seconds=60)
        assert svc.check_forgetting_curve(FORGETTING, now=later) == 0
        assert card.completed is True
        assert card.review_count == 2

    def test_remastering_with_real_clock_after_stale_date(self, svc):
        card = self._mastered(svc)
        svc.check_forgetting_curve(FORGETTING, now=card.next_review_date + timedelta(seconds=1))
        card.next_review_date = datetime.now() - timedelta(days=2)

        svc.toggle_card_completion(card.id, FORGETTING)
        assert card.next_review_date > datetime.now()
        assert svc.check_forgetting_curve(FORGETTING, now=datetime.now()) == 0

    def test_remastering_keeps_future_pending_date(self, svc):
        card = self._mastered(svc)
        svc.check_forgetting_curve(FORGETTING, now=card.next_review_date + timedelta(seconds=1))
        pending = card.next_review_date

        svc.toggle_card_completion(card.id, FORGETTING, now=pending - timedelta(days=1))
        assert card.next_review_date == pending
        assert card.review_count == 2

    def test_sweep_is_persisted(self, svc):
        card = self._mastered(svc)
        svc.check_forgetting_curve(FORGETTING, now=card.next_review_date)
        assert CardService().get_card(card.id).completed is False

    def test_cards_needing_review_sorted_by_date(self, svc):
        a = self._mastered(svc)
        b = self._mastered(svc)
        a.next_review_date = datetime.now() + timedelta(days=5)
        b.next_review_date = datetime.now() + timedelta(days=2)
        _add(svc, 'still learning')

        assert [c.id for c in svc.get_cards_needing_review()] == [b.id, a.id]


# ── Relations ─────────────────────────────────────────────────

class TestRelations:
    def test_relations_are_symmetric(self, svc):
        a, b, c = _add(svc, 'a'), _add(svc, 'b'), _add(svc, 'c')
        svc.set_related_cards(a.id, [b.id, c.id])
        assert a.related_cards == [b.id, c.id]
        assert b.related_cards == [a.id]
        assert c.related_cards == [a.id]

    def test_removing_a_relation_updates_both_sides(self, svc):
        a, b, c = _add(svc, 'a'), _add(svc, 'b'), _add(svc, 'c')
        svc.set_related_cards(a.id, [b.id, c.id])
        svc.set_related_cards(a.id, [c.id])
        assert b.related_cards == []
        assert c.related_cards == [a.id]

    def test_self_unknown_and_duplicates_filtered(self, svc):
        a, b = _add(svc, 'a'), _add(svc, 'b')
        svc.set_related_cards(a.id, [a.id, b.id, b.id, 999])
        assert a.related_cards == [b.id]


# ── Attachments ───────────────────────────────────────────────

class TestAttachments:
    def test_url_round_trip(self, svc):
        card = _add(svc)
        svc.add_card_url(card.id, 'https://example.com')
        assert CardService().get_card(card.id).urls == ['https://example.com']
        assert svc.remove_card_url(card.id, 'https://example.com') is True
        assert svc.remove_card_url(card.id, 'https://example.com') is False

    def test_image(self, svc):
        card = _add(svc)
        image_id = svc.add_card_image(card.id, 'a.png', 'image/png', b'\x89PNG')
        stored = CardService().get_card(card.id)
        assert stored.images[0]['id'] == image_id
        assert stored.image_data[image_id].startswith('data:image/png;base64,')
        assert svc.remove_card_image(card.id, image_id) is True


# ── Queries ───────────────────────────────────────────────────

class TestQueries:
    def test_search_by_display_id_is_exact(self, svc):
        for i in range(12):
            _add(svc, f'card {i}')
        found = svc.get_filtered_cards(search_query='#1')
        assert [c.display_id for c in found] == [1]

    def test_tag_filter_requires_all_tags(self, svc):
        both = _add(svc, 'both', tags=['a', 'b'])
        _add(svc, 'only a', tags=['a'])
        assert svc.get_filtered_cards(selected_tags=['a', 'b']) == [both]

    def test_status_filters(self, svc):
        learning = _add(svc, 'learning')
        mastered = _add(svc, 'mastered')
        svc.toggle_card_completion(mastered.id)
        svc.toggle_card_favorite(learning.id)

        assert svc.get_filtered_cards(status='active') == [learning]
        assert svc.get_filtered_cards(status='completed') == [mastered]
        assert svc.get_filtered_cards(status='favorites') == [learning]
        assert len(svc.get_filtered_cards(status='all')) == 2

    def test_all_tags_sorted(self, svc):
        _add(svc, tags=['zen', 'art'])
        _add(svc, tags=['art', 'math'])
        assert svc.get_all_tags() == ['art', 'math', 'zen']

    def test_stats(self, svc):
        a = _add(svc)
        _add(svc)
        svc.toggle_card_completion(a.id)
        svc.toggle_card_favorite(a.id)
        assert svc.get_stats() == {'total': 2, 'active': 1, 'completed': 1, 'favorite': 1}

    def test_export_is_json(self, svc):
        _add(svc, 'exported')
        exported = json.loads(svc.export_cards())
        assert exported[0]['question'] == 'exported'
        assert exported[0]['displayId'] == 1


class TestSortCards:
    T0 = datetime(2024, 1, 1)

    def _card(self, card_id, created_days, updated_days=None):
        return Card(
            id=card_id,
            question=str(card_id),
            created_at=self.T0 + timedelta(days=created_days),
            updated_at=self.T0 + timedelta(days=updated_days) if updated_days is not None else None,
        )

    def test_updated_falls_back_to_created(self):
        a, b, c = self._card(1, 0), self._card(2, 1, updated_days=10), self._card(3, 2)
        assert [x.id for x in sort_cards([a, b, c], 'updatedAt', 'desc')] == [2, 3, 1]
        assert [x.id for x in sort_cards([a, b, c], 'updatedAt', 'asc')] == [1, 3, 2]

    def test_created(self):
        a, b = self._card(1, 0), self._card(2, 1)
        assert [x.id for x in sort_cards([a, b], 'createdAt', 'desc')] == [2, 1]

    def test_stable_for_equal_keys(self):
        a, b = self._card(1, 0), self._card(2, 0)
        assert [x.id for x in sort_cards([a, b], 'createdAt', 'asc')] == [1, 2]


# ── Change notifications ──────────────────────────────────────

class TestSubscribers:
    def test_listener_sees_committed_changes(self, svc):
        events = []
        listener = lambda event, payload: events.append(event)
        svc.subscribe(listener)

        card = _add(svc)
        svc.toggle_card_favorite(card.id)
        svc.unsubscribe(listener)
        svc.delete_card(card.id)

        assert events == ['card_added', 'card_favorite_toggled']
