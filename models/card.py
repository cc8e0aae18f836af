"""
Card entity: one question/answer pair plus its study state.

Two completion states: Active (learning) <-> Mastered (completed).
Every operation validates its whole input before writing any field, so a
ValidationError always leaves the card untouched.
"""

import base64
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from utils.constants import (
    QUESTION_MAX_LENGTH, ANSWER_MAX_LENGTH, TAGS_MAX_LENGTH,
    URLS_MAX_COUNT, URL_MAX_LENGTH, IMAGES_MAX_COUNT, IMAGE_MAX_SIZE,
)
from utils.errors import ValidationError
from utils.utils import process_tags

UPDATABLE_FIELDS = ('question', 'answer', 'tags', 'urls')


@dataclass
class Card:
    id: int
    question: str
    answer: str = ''
    display_id: int = 0
    tags: list[str] = field(default_factory=list)
    completed: bool = False
    favorite: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    last_completed_at: datetime | None = None
    review_count: int = 0
    next_review_date: datetime | None = None
    related_cards: list[int] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)
    images: list[dict[str, Any]] = field(default_factory=list)
    image_data: dict[str, str] = field(default_factory=dict)

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def create(cls, data: dict[str, Any], card_id: int, display_id: int) -> 'Card':
        """
        Build a validated card from user input.

        data keys: question (required), answer, tags (list or comma text),
        urls (list), images (list of {'name', 'type', 'data': bytes}).
        """
        question = _validate_question(data.get('question'))
        answer = _validate_answer(data.get('answer'))
        tags = _normalize_tags(data.get('tags'))

        urls: list[str] = []
        for url in data.get('urls') or []:
            urls.append(_validate_url(url, urls))

        images = data.get('images') or []
        for i, image in enumerate(images):
            _validate_image(image.get('type', ''), len(image.get('data', b'')), i)

        card = cls(
            id=card_id,
            question=question,
            answer=answer,
            display_id=display_id,
            tags=tags,
            urls=urls,
        )
        for image in images:
            card._store_image(image.get('name', 'image'), image['type'], image['data'])
        return card

    # ── Editing ───────────────────────────────────────────────

    def update(self, fields: dict[str, Any]) -> None:
        """Shallow-merge question/answer/tags/urls. Completion and review state are never touched."""
        unknown = [k for k in fields if k not in UPDATABLE_FIELDS]
        if unknown:
            raise ValidationError(f"Field(s) cannot be updated: {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = {}
        if 'question' in fields:
            changes['question'] = _validate_question(fields['question'])
        if 'answer' in fields:
            changes['answer'] = _validate_answer(fields['answer'])
        if 'tags' in fields:
            changes['tags'] = _normalize_tags(fields['tags'])
        if 'urls' in fields:
            urls: list[str] = []
            for url in fields['urls'] or []:
                urls.append(_validate_url(url, urls))
            changes['urls'] = urls

        for key, value in changes.items():
            setattr(self, key, value)
        self.updated_at = datetime.now()

    # ── State transitions ─────────────────────────────────────

    def toggle_completion(self) -> bool:
        """Flip Active <-> Mastered. Returns the new `completed` value."""
        now = datetime.now()
        if self.completed:
            self.completed = False
            self.completed_at = None
            self.next_review_date = None
        else:
            self.completed = True
            self.completed_at = now
            self.last_completed_at = now
        return self.completed

    def revert_for_review(self) -> None:
        """Forgetting-curve demotion: back to Active, review state left for the scheduler."""
        self.completed = False
        self.completed_at = None

    def toggle_favorite(self) -> bool:
        self.favorite = not self.favorite
        self.updated_at = datetime.now()
        return self.favorite

    def needs_review(self, now: datetime | None = None) -> bool:
        if not self.completed or self.next_review_date is None:
            return False
        return (now or datetime.now()) >= self.next_review_date

    # ── Matching ──────────────────────────────────────────────

    def matches_query(self, query: str) -> bool:
        """
        Case-insensitive substring search over question, answer and tags.
        `#<n>` instead matches the card whose display id is exactly n.
        """
        if not query:
            return True

        if query.startswith('#'):
            id_query = query[1:]
            if not id_query:
                return False
            return bool(self.display_id) and str(self.display_id) == id_query

        term = query.lower()
        if term in self.question.lower():
            return True
        if self.answer and term in self.answer.lower():
            return True
        return any(term in tag.lower() for tag in self.tags)

    def has_all_tags(self, selected_tags) -> bool:
        wanted = {t.lower() for t in selected_tags}
        if not wanted:
            return True
        return wanted.issubset(self.tags)

    # ── Attachments ───────────────────────────────────────────

    def add_url(self, url: str) -> str:
        cleaned = _validate_url(url, self.urls)
        self.urls.append(cleaned)
        self.updated_at = datetime.now()
        return cleaned

    def remove_url(self, url: str) -> bool:
        if url not in self.urls:
            return False
        self.urls.remove(url)
        self.updated_at = datetime.now()
        return True

    def add_image(self, name: str, mime_type: str, data: bytes) -> str:
        """Attach raw image bytes. Returns the generated image id."""
        _validate_image(mime_type, len(data), len(self.images))
        image_id = self._store_image(name, mime_type, data)
        self.updated_at = datetime.now()
        return image_id

    def remove_image(self, image_id: str) -> bool:
        index = next((i for i, img in enumerate(self.images) if img['id'] == image_id), None)
        if index is None:
            return False
        self.images.pop(index)
        self.image_data.pop(image_id, None)
        self.updated_at = datetime.now()
        return True

    def _store_image(self, name: str, mime_type: str, data: bytes) -> str:
        image_id = _new_image_id()
        self.images.append({
            'id': image_id,
            'name': name,
            'type': mime_type,
            'size': len(data),
            'uploadedAt': datetime.now().isoformat(),
        })
        encoded = base64.b64encode(bytes(data)).decode('ascii')
        self.image_data[image_id] = f"data:{mime_type};base64,{encoded}"
        return image_id

    # ── Serialization ─────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'displayId': self.display_id,
            'question': self.question,
            'answer': self.answer,
            'tags': list(self.tags),
            'completed': self.completed,
            'favorite': self.favorite,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'completedAt': _iso(self.completed_at),
            'lastCompletedAt': _iso(self.last_completed_at),
            'reviewCount': self.review_count,
            'nextReviewDate': _iso(self.next_review_date),
            'relatedCards': list(self.related_cards),
            'urls': list(self.urls),
            'images': [dict(img) for img in self.images],
            'imageData': dict(self.image_data),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Card':
        return cls(
            id=data.get('id') or int(time.time() * 1000),
            question=data.get('question') or '',
            answer=data.get('answer') or '',
            display_id=data.get('displayId') or 0,
            tags=_load_tags(data.get('tags')),
            completed=bool(data.get('completed')),
            favorite=bool(data.get('favorite')),
            created_at=_parse(data.get('createdAt')) or datetime.now(),
            updated_at=_parse(data.get('updatedAt')),
            completed_at=_parse(data.get('completedAt')),
            last_completed_at=_parse(data.get('lastCompletedAt')),
            review_count=data.get('reviewCount') or 0,
            next_review_date=_parse(data.get('nextReviewDate')),
            related_cards=list(data.get('relatedCards') or []),
            urls=list(data.get('urls') or []),
            images=[dict(img) for img in data.get('images') or []],
            image_data=dict(data.get('imageData') or {}),
        )


# ============================================================
# Validation helpers
# ============================================================

def _validate_question(question) -> str:
    text = (question or '').strip()
    if not text:
        raise ValidationError("Question can't be empty")
    if len(text) > QUESTION_MAX_LENGTH:
        raise ValidationError(f"Question must be {QUESTION_MAX_LENGTH} characters or fewer")
    return text


def _validate_answer(answer) -> str:
    text = (answer or '').strip()
    if len(text) > ANSWER_MAX_LENGTH:
        raise ValidationError(f"Answer must be {ANSWER_MAX_LENGTH} characters or fewer")
    return text


def _normalize_tags(tags) -> list[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        normalized = process_tags(tags)
    else:
        normalized = process_tags(','.join(tags))
    if len(', '.join(normalized)) > TAGS_MAX_LENGTH:
        raise ValidationError(f"Tags must be {TAGS_MAX_LENGTH} characters or fewer in total")
    return normalized


def _load_tags(tags) -> list[str]:
    """Stored tags, lowercased and deduplicated. Never raises."""
    if not tags:
        return []
    if isinstance(tags, str):
        return process_tags(tags)
    return process_tags(','.join(str(tag) for tag in tags))


def _validate_url(url, existing: list[str]) -> str:
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("Enter a valid URL")

    cleaned = url.strip()
    parsed = urlparse(cleaned)
    if not parsed.scheme or not parsed.netloc:
        raise ValidationError("URL is malformed")
    if len(cleaned) > URL_MAX_LENGTH:
        raise ValidationError(f"URL must be {URL_MAX_LENGTH} characters or fewer")
    if cleaned in existing:
        raise ValidationError("This URL is already attached")
    if len(existing) >= URLS_MAX_COUNT:
        raise ValidationError(f"At most {URLS_MAX_COUNT} URLs per card")
    return cleaned


def _validate_image(mime_type: str, size: int, current_count: int) -> None:
    if not mime_type or not mime_type.startswith('image/'):
        raise ValidationError("Only image files can be attached")
    if size > IMAGE_MAX_SIZE:
        raise ValidationError(f"Images must be {IMAGE_MAX_SIZE // (1024 * 1024)}MB or smaller")
    if current_count >= IMAGES_MAX_COUNT:
        raise ValidationError(f"At most {IMAGES_MAX_COUNT} images per card")


def _new_image_id() -> str:
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"img_{int(time.time() * 1000)}_{suffix}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value) -> datetime | None:
    if not value:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    # Stored timestamps are naive local time
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
