from __future__ import annotations

# Persisted keys in the local key-value store.
PENDING_OPERATIONS_KEY = "pendingWeightOperations"
TRAINING_STATS_CACHE_KEY = "training_stats_cache"
TRAINING_STATS_LAST_UPDATE_KEY = "training_stats_last_update"
PROFILE_STATS_CACHE_KEY = "profile_stats_cache"
PROFILE_STATS_LAST_UPDATE_KEY = "profile_stats_last_update"
WEIGHT_RECORDS_CACHE_PREFIX = "cachedWeightRecordsData"
WORKOUT_RECORDS_CACHE_PREFIX = "cachedWorkoutRecordsData"

# Remote collection layout.
USERS_COLLECTION = "users"
WEIGHT_RECORDS_COLLECTION = "weightRecords"
TRAININGS_COLLECTION = "trainings"
TRAINING_RECORDS_COLLECTION = "records"

DEFAULT_USER_PLACEHOLDER = "local-user"
DEFAULT_TRAINING_STATS_REFRESH_SECONDS = 60.0
DEFAULT_PROFILE_STATS_REFRESH_SECONDS = 300.0
DEFAULT_SYNC_WINDOW_MONTHS = 3
DEFAULT_RECENT_RECORDS_LIMIT = 5
