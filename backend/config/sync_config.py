"""
Email Sync Configuration
Tunable constants for the sync orchestrator, scheduler and merchant mapping
engine, loaded from environment variables.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=False)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    return float(value) if value else default


@dataclass
class SyncConfig:
    """Orchestrator and scheduler settings"""

    lookback_days: int = 30  # Window searched on a connection's first sync
    max_results: int = 100  # Messages requested per mailbox search
    raw_content_limit: int = 5000  # Characters of body kept on the audit record
    prompt_body_limit: int = 3000  # Characters of body sent to the completion service
    connection_delay_seconds: float = 1.0  # Pause between connections in a fan-out
    connection_jitter_seconds: float = 0.5  # Random extra pause on top of the delay
    min_sync_interval_minutes: int = 60  # A connection is due again after this long
    stale_after_minutes: int = 30  # PROCESSING rows older than this are swept
    max_attempts: int = 3  # Claims per message before the sweep gives up

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.lookback_days <= 0:
            raise ValueError("EMAIL_SYNC_LOOKBACK_DAYS must be greater than 0")
        if self.max_results <= 0:
            raise ValueError("EMAIL_SYNC_MAX_RESULTS must be greater than 0")
        if self.connection_delay_seconds < 0 or self.connection_jitter_seconds < 0:
            raise ValueError("Connection delay and jitter must be non-negative")
        if self.stale_after_minutes <= 0:
            raise ValueError("EMAIL_SYNC_STALE_AFTER_MINUTES must be greater than 0")
        if self.max_attempts <= 0:
            raise ValueError("EMAIL_SYNC_MAX_ATTEMPTS must be greater than 0")


@dataclass
class MappingConfig:
    """Merchant mapping trust thresholds and confidence dynamics.

    The defaults reproduce the tuned production behaviour: global rows start
    at 50, agreeing corrections add 5 (capped at 100), disagreeing ones take
    10 away, and a row that falls to 30 or below switches to the corrected
    category and restarts at 50.
    """

    min_users_for_global_trust: int = 3
    min_confidence_for_global: int = 70
    user_confidence: int = 100
    seed_confidence: int = 50
    agreement_bonus: int = 5
    disagreement_penalty: int = 10
    flip_floor: int = 30
    max_confidence: int = 100

    def __post_init__(self):
        self.validate()

    def validate(self):
        if not 0 <= self.flip_floor < self.seed_confidence <= self.max_confidence:
            raise ValueError(
                "Mapping confidences must satisfy 0 <= flip_floor < seed_confidence <= max_confidence"
            )
        if self.agreement_bonus < 0 or self.disagreement_penalty <= 0:
            raise ValueError("Agreement bonus must be >= 0 and disagreement penalty > 0")
        if self.min_users_for_global_trust < 1:
            raise ValueError("MERCHANT_MAPPING_MIN_USERS must be at least 1")


def load_sync_config() -> SyncConfig:
    """
    Load sync configuration from environment variables.

    Environment Variables:
    - EMAIL_SYNC_LOOKBACK_DAYS (default: 30)
    - EMAIL_SYNC_MAX_RESULTS (default: 100)
    - EMAIL_SYNC_RAW_CONTENT_LIMIT (default: 5000)
    - EMAIL_SYNC_PROMPT_BODY_LIMIT (default: 3000)
    - EMAIL_SYNC_CONNECTION_DELAY (seconds, default: 1.0)
    - EMAIL_SYNC_CONNECTION_JITTER (seconds, default: 0.5)
    - EMAIL_SYNC_MIN_INTERVAL_MINUTES (default: 60)
    - EMAIL_SYNC_STALE_AFTER_MINUTES (default: 30)
    - EMAIL_SYNC_MAX_ATTEMPTS (default: 3)
    """
    return SyncConfig(
        lookback_days=_env_int("EMAIL_SYNC_LOOKBACK_DAYS", 30),
        max_results=_env_int("EMAIL_SYNC_MAX_RESULTS", 100),
        raw_content_limit=_env_int("EMAIL_SYNC_RAW_CONTENT_LIMIT", 5000),
        prompt_body_limit=_env_int("EMAIL_SYNC_PROMPT_BODY_LIMIT", 3000),
        connection_delay_seconds=_env_float("EMAIL_SYNC_CONNECTION_DELAY", 1.0),
        connection_jitter_seconds=_env_float("EMAIL_SYNC_CONNECTION_JITTER", 0.5),
        min_sync_interval_minutes=_env_int("EMAIL_SYNC_MIN_INTERVAL_MINUTES", 60),
        stale_after_minutes=_env_int("EMAIL_SYNC_STALE_AFTER_MINUTES", 30),
        max_attempts=_env_int("EMAIL_SYNC_MAX_ATTEMPTS", 3),
    )


def load_mapping_config() -> MappingConfig:
    """
    Load merchant mapping configuration from environment variables.

    Environment Variables:
    - MERCHANT_MAPPING_MIN_USERS (default: 3)
    - MERCHANT_MAPPING_MIN_CONFIDENCE (default: 70)
    - MERCHANT_MAPPING_SEED_CONFIDENCE (default: 50)
    - MERCHANT_MAPPING_AGREEMENT_BONUS (default: 5)
    - MERCHANT_MAPPING_DISAGREEMENT_PENALTY (default: 10)
    - MERCHANT_MAPPING_FLIP_FLOOR (default: 30)
    """
    return MappingConfig(
        min_users_for_global_trust=_env_int("MERCHANT_MAPPING_MIN_USERS", 3),
        min_confidence_for_global=_env_int("MERCHANT_MAPPING_MIN_CONFIDENCE", 70),
        seed_confidence=_env_int("MERCHANT_MAPPING_SEED_CONFIDENCE", 50),
        agreement_bonus=_env_int("MERCHANT_MAPPING_AGREEMENT_BONUS", 5),
        disagreement_penalty=_env_int("MERCHANT_MAPPING_DISAGREEMENT_PENALTY", 10),
        flip_floor=_env_int("MERCHANT_MAPPING_FLIP_FLOOR", 30),
    )
