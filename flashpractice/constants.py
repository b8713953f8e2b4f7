"""
Interval scheduler and practice limit constants.

Pure constants only: bounds used to clamp per-user settings and the defaults
applied when a user has not configured a value.
"""

SECOND_MS: int = 1000
MINUTE_MS: int = 60 * SECOND_MS
HOUR_MS: int = 60 * MINUTE_MS
DAY_MS: int = 24 * HOUR_MS

# Intervals are always kept inside [1s, 10y].
MIN_INTERVAL_MS: int = SECOND_MS
MAX_INTERVAL_MS: int = 10 * 365 * DAY_MS

MIN_MULTIPLIER: float = 0.0001
MAX_MULTIPLIER: float = 1000.0

# Think-time is capped at one hour, both for the budget and recorded attempts.
MAX_REQUIRED_TIME_MS: int = HOUR_MS
MAX_REVIEW_TIME_MS: int = HOUR_MS

MIN_HISTORY_LIMIT: int = 1
MAX_HISTORY_LIMIT: int = 1000

DEFAULT_BASE_INTERVAL_MS: int = 30 * MINUTE_MS
DEFAULT_REWARD_MULTIPLIER: float = 1.8
DEFAULT_PENALTY_MULTIPLIER: float = 0.6
DEFAULT_REQUIRED_TIME_MS: int = 10 * SECOND_MS
DEFAULT_TIME_HISTORY_LIMIT: int = 10

DEFAULT_DAILY_NOVEL_LIMIT: int = 20
DEFAULT_DAILY_REVIEW_LIMIT: int = 200
MAX_DAILY_LIMIT: int = 10000

# Deck import bounds.
MAX_DECK_NAME_LENGTH: int = 64
MAX_IMPORT_FLASHCARDS: int = 10000
MAX_IMPORT_TEXT_LENGTH: int = 4000
MAX_IMPORT_FILE_BYTES: int = 10 * 1024 * 1024
MAX_SKETCH_CODE_LENGTH: int = 40000

# Inclusive code point ranges that str.isspace() accepts, and so the ones
# str.strip() removes. The SQL playable filter is built from this table.
WHITESPACE_RANGES = (
    (0x09, 0x0D),
    (0x1C, 0x20),
    (0x85, 0x85),
    (0xA0, 0xA0),
    (0x1680, 0x1680),
    (0x2000, 0x200A),
    (0x2028, 0x2029),
    (0x202F, 0x202F),
    (0x205F, 0x205F),
    (0x3000, 0x3000),
)
