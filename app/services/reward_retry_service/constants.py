"""
Reward Retry Service Constants.

Module: constants.py
Contains configuration constants for the retry mechanism.
"""

from app.config.settings import settings

# Exponential backoff: 1min, 2min, 4min, 8min, 16min
BASE_RETRY_DELAY_SECONDS = settings.reward_retry_base_delay_seconds
DEFAULT_MAX_RETRIES = settings.reward_max_retries

# PENDING rows and in-flight jobs older than this are considered lost
STALE_THRESHOLD_SECONDS = settings.reward_stale_threshold_seconds
SWEEP_BATCH_LIMIT = settings.reward_sweep_batch_limit
