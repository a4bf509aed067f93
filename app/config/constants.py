"""
Application constants.

Centralized constants for the referral reward engine.
"""

from decimal import Decimal

# ========================================================================
# REWARD CALCULATION
# ========================================================================

# Reward amounts are stored as DECIMAL(18, 8); calculation quantizes to match
REWARD_AMOUNT_QUANTUM = Decimal("0.00000001")

# ========================================================================
# CACHE KEYS
# ========================================================================

CHAIN_CACHE_KEY = "referral:chain:{user_id}"
STATS_CACHE_KEY = "referral:stats:{user_id}"

# ========================================================================
# REFERRAL CODES
# ========================================================================

REFERRAL_CODE_PREFIX = "REF_"
REFERRAL_CODE_LENGTH = 8

# ========================================================================
# DISTRIBUTED LOCKS (maintenance tasks)
# ========================================================================

LOCK_TIMEOUT_STANDARD = 300  # 5 minutes
RETRY_PROCESSING_LOCK = "reward_retry_processing"
QUEUE_CLEANUP_LOCK = "referral_queue_cleanup"
CHAIN_REPAIR_LOCK = "referral_chain_repair"

# Dramatiq actor time limit (milliseconds)
DRAMATIQ_TIME_LIMIT_STANDARD = 300_000

# ========================================================================
# CHAIN REPAIR
# ========================================================================

CHAIN_REPAIR_BATCH_SIZE = 200
