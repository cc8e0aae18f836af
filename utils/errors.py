class FlashcardError(Exception):
    """Base class for every error the card core raises."""


class ValidationError(FlashcardError):
    """User input broke a card or settings constraint. Raised before any state changes."""


class NotFoundError(FlashcardError):
    """No card with the requested id."""

    def __init__(self, card_id):
        self.card_id = card_id
        super().__init__(f"Card {card_id} not found")


class StorageError(FlashcardError):
    """Reading or writing the key/value store failed."""
