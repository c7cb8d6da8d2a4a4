"""
Merchant Mapping Engine
Learns merchant -> category associations from user corrections and resolves
categories for newly imported transactions.

Two tiers:
- User mappings (per user): authoritative for their owner, always win.
- Global mappings (shared): trusted for everyone only once enough users have
  corroborated them and their confidence is high enough.

Global confidence dynamics (defaults from MappingConfig):
- agreeing correction: +5, capped at 100, corroboration +1
- disagreeing correction: -10; at or below 30 the category flips to the
  corrected one and confidence restarts at 50
"""

from dataclasses import dataclass
from typing import Optional

import database
from config.sync_config import MappingConfig, load_mapping_config

from .logging_config import get_logger
from .merchant_normalizer import first_token, generate_merchant_pattern, normalize_merchant_name

logger = get_logger(__name__)

# Attempts at a guarded global update before giving up on a contended row
MAX_GLOBAL_UPDATE_ATTEMPTS = 3


@dataclass
class MappingMatch:
    """A category resolved from the mapping tables."""

    category_id: int
    source: str  # "user" or "global"
    confidence: int
    mapping_id: int
    merchant_name: str


def resolve_merchant(
    user_id: int, merchant: str, config: Optional[MappingConfig] = None
) -> Optional[MappingMatch]:
    """
    Resolve a merchant to a category for a user.

    Lookup order:
    1. User mapping by exact normalized key, then by first-token prefix
    2. Global mapping meeting both trust thresholds

    A hit increments the mapping's usage counter.

    Args:
        user_id: User importing the transaction
        merchant: Raw merchant name
        config: Trust thresholds (loaded from environment when omitted)

    Returns:
        MappingMatch, or None when the caller should use the parser's category
    """
    config = config or load_mapping_config()

    key = normalize_merchant_name(merchant)
    if not key:
        return None

    user_mapping = database.find_user_mapping(user_id, key, first_token(key))
    if user_mapping:
        database.increment_mapping_usage(user_mapping["id"])
        logger.debug(
            f"User mapping hit for {key} -> category {user_mapping['category_id']}",
            extra={"merchant": key},
        )
        return MappingMatch(
            category_id=user_mapping["category_id"],
            source="user",
            confidence=config.user_confidence,
            mapping_id=user_mapping["id"],
            merchant_name=user_mapping["merchant_name"],
        )

    global_mapping = database.find_trusted_global_mapping(
        key, config.min_users_for_global_trust, config.min_confidence_for_global
    )
    if global_mapping:
        database.increment_mapping_usage(global_mapping["id"])
        logger.debug(
            f"Global mapping hit for {key} -> category {global_mapping['category_id']} "
            f"(confidence {global_mapping['confidence']}, users {global_mapping['confirmed_by_users']})",
            extra={"merchant": key},
        )
        return MappingMatch(
            category_id=global_mapping["category_id"],
            source="global",
            confidence=global_mapping["confidence"],
            mapping_id=global_mapping["id"],
            merchant_name=key,
        )

    return None


def record_correction(
    user_id: int,
    merchant: str,
    category_id: int,
    source: str = "USER_CORRECTION",
    config: Optional[MappingConfig] = None,
) -> Optional[str]:
    """
    Learn from a user assigning a category to a merchant.

    Always upserts the user's own mapping. The shared global mapping is only
    fed when the user's mapping is new or changed category, so one user
    repeating a correction never counts as extra corroboration.

    Args:
        user_id: User making the correction
        merchant: Raw merchant name
        category_id: Category the user chose
        source: Provenance tag stored on the mappings
        config: Confidence dynamics (loaded from environment when omitted)

    Returns:
        Outcome for the global tier: "created", "reinforced", "weakened",
        "flipped", "conflict" or "unchanged" (repeat of the user's own choice);
        None when the merchant normalizes to nothing
    """
    config = config or load_mapping_config()

    key = normalize_merchant_name(merchant)
    if not key:
        return None
    pattern = generate_merchant_pattern(merchant)

    created, previous_category_id = database.upsert_user_mapping(
        user_id,
        key,
        pattern,
        category_id,
        confidence=config.user_confidence,
        source=source,
    )
    logger.info(
        f"{'Created' if created else 'Updated'} user mapping {key} -> category {category_id} for user {user_id}",
        extra={"merchant": key},
    )

    # Corroboration counts distinct users; re-confirming one's own choice adds none
    if previous_category_id == category_id:
        return "unchanged"

    outcome = _update_global_mapping(key, pattern, category_id, source, config)
    logger.info(f"Global mapping {key}: {outcome}", extra={"merchant": key})
    return outcome


def _update_global_mapping(
    key: str, pattern: str, category_id: int, source: str, config: MappingConfig
) -> str:
    for _ in range(MAX_GLOBAL_UPDATE_ATTEMPTS):
        existing = database.get_global_mapping(key)

        if existing is None:
            if database.create_global_mapping_if_absent(
                key,
                pattern,
                category_id,
                confidence=config.seed_confidence,
                confirmed_by_users=1,
                source=source,
            ):
                return "created"
            continue

        if existing["category_id"] == category_id:
            if database.apply_global_agreement(
                key, category_id, config.agreement_bonus, config.max_confidence
            ):
                return "reinforced"
            continue

        if database.apply_global_disagreement(
            key,
            category_id,
            config.disagreement_penalty,
            config.flip_floor,
            config.seed_confidence,
        ):
            after = database.get_global_mapping(key)
            if after and after["category_id"] == category_id:
                return "flipped"
            return "weakened"

    # Every guarded update missed: the row kept changing category underneath us
    logger.warning(f"Global mapping {key} contended, correction not applied to global tier")
    return "conflict"


def seed_global_mapping(
    merchant: str, category_id: int, config: Optional[MappingConfig] = None
) -> bool:
    """
    Record an AI-inferred category as a global mapping if none exists yet.

    Seeds start at seed confidence with no corroborating users, so they only
    become trusted after real corrections agree with them.

    Returns:
        True if a new global mapping was created
    """
    config = config or load_mapping_config()

    key = normalize_merchant_name(merchant)
    if not key:
        return False

    return database.create_global_mapping_if_absent(
        key,
        generate_merchant_pattern(merchant),
        category_id,
        confidence=config.seed_confidence,
        confirmed_by_users=0,
        source="AI_INFERRED",
    )


def get_user_mapping_stats(user_id: int, config: Optional[MappingConfig] = None) -> dict:
    """Mapping counts and top five categories for a user."""
    config = config or load_mapping_config()
    return database.get_user_mapping_stats(
        user_id, config.min_users_for_global_trust, config.min_confidence_for_global
    )


def delete_user_mapping(user_id: int, merchant: str) -> bool:
    """Forget a user's mapping for a merchant (global tier untouched)."""
    key = normalize_merchant_name(merchant)
    if not key:
        return False
    return database.delete_user_mapping(user_id, key)
