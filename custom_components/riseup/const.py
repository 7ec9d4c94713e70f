"""Constants for the RiseUp integration.

This file centralizes configuration keys, defaults, collection names, storage
keys, document field names, and service names for consistency across the
integration. Engines import from here, so nothing in this module may depend
on Home Assistant.
"""

import logging
from typing import Final

# ------------------------------------------------------------------------------------------------
# General / Integration Information
# ------------------------------------------------------------------------------------------------
# Integration Name
RISEUP_TITLE = "RiseUp"

# Integration Domain
DOMAIN = "riseup"

# Logger
LOGGER = logging.getLogger(__package__)

# ------------------------------------------------------------------------------------------------
# Storage
# ------------------------------------------------------------------------------------------------
STORAGE_KEY = "riseup_local_store"
STORAGE_VERSION = 1

# Local store key format: riseup_<entity>_<user_id>
LOCAL_KEY_PREFIX = "riseup"
LOCAL_KEY_FMT = "{prefix}_{entity}_{user_id}"

# Backup files: riseup_backup_YYYY-MM-DD_HH-MM-SS_<tag> under .storage
BACKUP_FILENAME_PREFIX = "riseup_backup"
BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
BACKUP_TAG_MANUAL = "manual"
BACKUP_TAG_PRE_IMPORT = "pre-import"

# ------------------------------------------------------------------------------------------------
# hass.data keys
# ------------------------------------------------------------------------------------------------
LOCAL_STORE = "local_store"
REMOTE_STORE = "remote_store"
CONNECTIVITY = "connectivity"
SYNC_SERVICE = "sync_service"
SYNC_STATE = "sync_state"
PROBE = "probe"

# Bus event fired when a subscribed remote document changes
EVENT_REMOTE_CHANGE = "riseup_remote_change"

# ------------------------------------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------------------------------------
CONF_PROJECT_ID = "project_id"
CONF_API_KEY = "api_key"
CONF_USER_ID = "user_id"
CONF_REMOTE_TIMEOUT = "remote_timeout"
CONF_PROBE_INTERVAL = "probe_interval"
CONF_BACKUPS_MAX_RETAINED = "backups_max_retained"

DEFAULT_REMOTE_TIMEOUT: Final = 10
DEFAULT_PROBE_INTERVAL: Final = 30
DEFAULT_SUBSCRIBE_INTERVAL: Final = 30
MIN_REMOTE_TIMEOUT: Final = 1
MAX_REMOTE_TIMEOUT: Final = 120
MIN_PROBE_INTERVAL: Final = 5
MAX_PROBE_INTERVAL: Final = 3600
DEFAULT_BACKUPS_MAX_RETAINED: Final = 5
MAX_BACKUPS_MAX_RETAINED: Final = 50

# ------------------------------------------------------------------------------------------------
# Remote document store (Cloud Firestore REST)
# ------------------------------------------------------------------------------------------------
FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"
FIRESTORE_DATABASE = "(default)"

# HTTP 4xx statuses worth replaying (all 5xx are retryable too)
RETRYABLE_HTTP_STATUSES: Final = frozenset({408, 429})

# ------------------------------------------------------------------------------------------------
# Remote collections
# ------------------------------------------------------------------------------------------------
COLLECTION_USERS = "users"
COLLECTION_HABITS = "user_habits"
COLLECTION_CUSTOM_HABITS = "custom_habits"
COLLECTION_CHARACTER = "character_states"
COLLECTION_ACHIEVEMENTS = "user_achievements"
COLLECTION_BONUSES = "user_bonuses"
COLLECTION_COINS = "user_coins"
COLLECTION_DAILY_RECORDS = "daily_records"

# ------------------------------------------------------------------------------------------------
# Entity names (also the local key entity segment)
# ------------------------------------------------------------------------------------------------
ENTITY_USER = "user"
ENTITY_HABITS = "habits"
ENTITY_CUSTOM_HABITS = "custom_habits"
ENTITY_CHARACTER = "character"
ENTITY_ACHIEVEMENTS = "achievements"
ENTITY_BONUSES = "bonuses"
ENTITY_COINS = "coins"
ENTITY_DAILY_RECORDS = "daily_records"

# ------------------------------------------------------------------------------------------------
# Document fields (wire names, camelCase as stored remotely)
# ------------------------------------------------------------------------------------------------
FIELD_ID = "id"
FIELD_USER_ID = "userId"
FIELD_UPDATED_AT = "updatedAt"
FIELD_VERSION = "version"

FIELD_HABITS = "habits"
FIELD_CUSTOM_HABITS = "customHabits"
FIELD_CHARACTER = "character"
FIELD_ACHIEVEMENTS = "achievements"
FIELD_BONUSES = "bonuses"
FIELD_DAILY_BONUS = "dailyBonus"
FIELD_DAILY_RECORDS = "dailyRecords"

# Character state
FIELD_LEVEL = "level"
FIELD_HEALTH = "health"
FIELD_MAX_HEALTH = "maxHealth"
FIELD_EXPERIENCE = "experience"
FIELD_MAX_EXPERIENCE = "maxExperience"
FIELD_STATE = "state"

CHARACTER_STATE_STRONG = "strong"
CHARACTER_STATE_NORMAL = "normal"
CHARACTER_STATE_WEAK = "weak"

# Coin ledger
FIELD_COINS = "coins"
FIELD_TOTAL_EARNED = "totalEarned"
FIELD_PURCHASES = "purchases"
FIELD_PURCHASED = "purchased"
FIELD_COST = "cost"

# Daily record
FIELD_DATE = "date"
FIELD_COMPLETED_HABIT_IDS = "completedHabitIds"
FIELD_TOTAL_HABITS = "totalHabits"
FIELD_EXPERIENCE_GAINED = "experienceGained"
FIELD_PERFECT_DAY = "perfectDay"

# Export envelope
FIELD_EXPORT_DATE = "exportDate"
FIELD_DATA = "data"
EXPORT_FORMAT_VERSION = "2.0.0"

# ------------------------------------------------------------------------------------------------
# Gamification rules
# ------------------------------------------------------------------------------------------------
EXPERIENCE_PER_HABIT: Final = 20
EXPERIENCE_PENALTY_PER_MISSED: Final = 10
DAILY_RECORD_LIMIT: Final = 365
TREND_WINDOW_DAYS: Final = 7
TREND_THRESHOLD: Final = 5

STRONG_COMPLETION_RATIO: Final = 0.8
NORMAL_COMPLETION_RATIO: Final = 0.5
HEALTH_GAIN_STRONG: Final = 10
HEALTH_LOSS_WEAK: Final = 15
MIN_HEALTH: Final = 20
LEVEL_UP_MAX_EXPERIENCE_STEP: Final = 50
LEVEL_UP_MAX_HEALTH_STEP: Final = 20

TREND_IMPROVING = "improving"
TREND_STABLE = "stable"
TREND_DECLINING = "declining"

INSIGHTS_DEFAULT_DAYS: Final = 30
INSIGHTS_LOW_COMPLETION: Final = 50
INSIGHTS_HIGH_COMPLETION: Final = 80
INSIGHTS_SHORT_STREAK: Final = 3
INSIGHTS_SHORT_STREAK_DAYS: Final = 4

WEEKDAYS: Final = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# Recommendation codes returned with insights
RECOMMEND_START_SMALLER = "start_smaller"
RECOMMEND_SET_REMINDERS = "set_reminders"
RECOMMEND_ADD_HABITS = "add_habits"
RECOMMEND_SHARE_SUCCESS = "share_success"
RECOMMEND_FOCUS_CONSISTENCY = "focus_on_consistency"

DEFAULT_CHARACTER_STATE: Final = {
    FIELD_LEVEL: 1,
    FIELD_HEALTH: 100,
    FIELD_MAX_HEALTH: 100,
    FIELD_EXPERIENCE: 0,
    FIELD_MAX_EXPERIENCE: 100,
    FIELD_STATE: CHARACTER_STATE_NORMAL,
}

# ------------------------------------------------------------------------------------------------
# Sync status (published through the observable state cell)
# ------------------------------------------------------------------------------------------------
STATUS_ONLINE = "online"
STATUS_PENDING_OPERATIONS = "pending_operations"
STATUS_LAST_SYNC = "last_sync"
STATUS_LAST_ERROR = "last_error"

# ------------------------------------------------------------------------------------------------
# Services
# ------------------------------------------------------------------------------------------------
SERVICE_EXPORT_USER_DATA = "export_user_data"
SERVICE_IMPORT_USER_DATA = "import_user_data"
SERVICE_SYNC_NOW = "sync_now"
SERVICE_RECORD_DAY = "record_day"
SERVICE_ADD_COINS = "add_coins"
SERVICE_PURCHASE_ITEM = "purchase_item"
SERVICE_GET_INSIGHTS = "get_insights"

SERVICE_FIELD_SAVE_BACKUP = "save_backup"
SERVICE_FIELD_PAYLOAD = "payload"
SERVICE_FIELD_BACKUP_FILE = "backup_file"
SERVICE_FIELD_COMPLETED_HABIT_IDS = "completed_habit_ids"
SERVICE_FIELD_TOTAL_HABITS = "total_habits"
SERVICE_FIELD_DATE = "date"
SERVICE_FIELD_AMOUNT = "amount"
SERVICE_FIELD_ITEM_ID = "item_id"
SERVICE_FIELD_DAYS = "days"

# Service responses
RESPONSE_BACKUP_FILE = "backup_file"
RESPONSE_DRAINED = "drained"
RESPONSE_PENDING = "pending"
RESPONSE_PAYLOAD = "payload"
RESPONSE_IMPORTED_RECORDS = "imported_records"
RESPONSE_RECORD = "record"
RESPONSE_CHARACTER = "character"
RESPONSE_LEDGER = "ledger"
RESPONSE_INSIGHTS = "insights"

# ------------------------------------------------------------------------------------------------
# Errors / translation keys
# ------------------------------------------------------------------------------------------------
MSG_NO_ENTRY_FOUND = "No RiseUp entry found"
TRANS_KEY_ERROR_INSUFFICIENT_COINS = "insufficient_coins"
TRANS_KEY_ERROR_INVALID_BACKUP = "invalid_backup"
TRANS_KEY_ERROR_ITEM_NOT_FOUND = "item_not_found"
TRANS_KEY_ERROR_ITEM_ALREADY_PURCHASED = "item_already_purchased"
TRANS_KEY_ERROR_MISSING_IMPORT_SOURCE = "missing_import_source"
TRANS_KEY_ERROR_NOT_LOADED = "not_loaded"

CFOP_ERROR_CANNOT_CONNECT = "cannot_connect"
CFOP_ERROR_INVALID_AUTH = "invalid_auth"
CFOP_ERROR_ALREADY_CONFIGURED = "already_configured"
