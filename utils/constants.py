from enum import auto, IntEnum

# Storage keys ===============================================

FLASHCARDS_KEY = 'flashcards'
FORGETTING_SETTINGS_KEY = 'forgettingSettings'
FLASHCARD_SETTINGS_KEY = 'flashcardSettings'
DARK_MODE_SETTINGS_KEY = 'darkModeSettings'
SORT_SETTINGS_KEY = 'sortSettings'
DISPLAY_ID_COUNTER_KEY = 'displayIdCounter'

# Defaults ===================================================

DEFAULT_FORGETTING_SETTINGS = {
    'enabled': True,
    'reviewCount': 5,
    'intervals': [1, 3, 7, 14, 30],
    'notifications': True,
}
DEFAULT_FLASHCARD_SETTINGS = {'enabled': True}
DEFAULT_DARK_MODE_SETTINGS = {'enabled': False}
DEFAULT_SORT_SETTINGS = {'field': 'createdAt', 'direction': 'desc'}

SORT_FIELDS = ('createdAt', 'updatedAt')
SORT_DIRECTIONS = ('asc', 'desc')
STATUS_FILTERS = ('all', 'active', 'completed', 'favorites')

# Limits =====================================================

QUESTION_MAX_LENGTH = 50
ANSWER_MAX_LENGTH = 200
TAGS_MAX_LENGTH = 100
REVIEW_COUNT_MIN = 1
REVIEW_COUNT_MAX = 10
INTERVAL_MIN_DAYS = 1
INTERVAL_MAX_DAYS = 180
URLS_MAX_COUNT = 10
URL_MAX_LENGTH = 500
IMAGES_MAX_COUNT = 2
IMAGE_MAX_SIZE = 5 * 1024 * 1024  # 5MB


class AddCardState(IntEnum):
    AWAITING_CONTENT = auto()
    CONFIRMATION_PREVIEW = auto()
