"""
Merchant Category Mappings - Database Operations

Storage for the two-tier merchant -> category learning engine.

Global rows are shared by every user and mutated concurrently, so their
confidence and counters are only ever changed by single UPDATE statements
whose new values are SQL expressions over the stored values. Callers never
read-modify-write a global row.
"""

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from .base import get_session, store_operation, utcnow
from .models.category import Category
from .models.merchant_mapping import MerchantCategoryMapping


def _to_dict(mapping: MerchantCategoryMapping) -> dict:
    return {
        "id": mapping.id,
        "user_id": mapping.user_id,
        "merchant_name": mapping.merchant_name,
        "merchant_pattern": mapping.merchant_pattern,
        "category_id": mapping.category_id,
        "source": mapping.source,
        "confidence": mapping.confidence,
        "times_used": mapping.times_used,
        "confirmed_by_users": mapping.confirmed_by_users,
    }


# ============================================================================
# LOOKUPS
# ============================================================================


@store_operation
def find_user_mapping(user_id: int, merchant_name: str, first_token: str = None) -> dict | None:
    """
    Find a user-scoped mapping by exact normalized key, else by its first word.

    Args:
        user_id: Mapping owner
        merchant_name: Normalized merchant key
        first_token: First word of the key; enables the prefix fallback

    Returns:
        Mapping dict or None
    """
    with get_session() as session:
        base = session.query(MerchantCategoryMapping).filter(
            MerchantCategoryMapping.user_id == user_id
        )

        mapping = base.filter(MerchantCategoryMapping.merchant_name == merchant_name).first()

        if mapping is None and first_token:
            mapping = (
                base.filter(
                    or_(
                        MerchantCategoryMapping.merchant_name == first_token,
                        MerchantCategoryMapping.merchant_name.startswith(
                            f"{first_token} ", autoescape=True
                        ),
                    )
                )
                .order_by(
                    MerchantCategoryMapping.times_used.desc(),
                    MerchantCategoryMapping.id.asc(),
                )
                .first()
            )

        return _to_dict(mapping) if mapping else None


@store_operation
def get_global_mapping(merchant_name: str) -> dict | None:
    """Get the global mapping for a normalized key regardless of trust."""
    with get_session() as session:
        mapping = (
            session.query(MerchantCategoryMapping)
            .filter(
                MerchantCategoryMapping.user_id.is_(None),
                MerchantCategoryMapping.merchant_name == merchant_name,
            )
            .first()
        )
        return _to_dict(mapping) if mapping else None


@store_operation
def find_trusted_global_mapping(
    merchant_name: str, min_users: int, min_confidence: int
) -> dict | None:
    """Get the global mapping for a key only if it meets both trust thresholds."""
    with get_session() as session:
        mapping = (
            session.query(MerchantCategoryMapping)
            .filter(
                MerchantCategoryMapping.user_id.is_(None),
                MerchantCategoryMapping.merchant_name == merchant_name,
                MerchantCategoryMapping.confirmed_by_users >= min_users,
                MerchantCategoryMapping.confidence >= min_confidence,
            )
            .first()
        )
        return _to_dict(mapping) if mapping else None


@store_operation
def increment_mapping_usage(mapping_id: int) -> None:
    with get_session() as session:
        session.execute(
            update(MerchantCategoryMapping)
            .where(MerchantCategoryMapping.id == mapping_id)
            .values(
                times_used=MerchantCategoryMapping.times_used + 1,
                updated_at=utcnow(),
            )
        )
        session.commit()


# ============================================================================
# USER-SCOPED WRITES
# ============================================================================


@store_operation
def upsert_user_mapping(
    user_id: int,
    merchant_name: str,
    merchant_pattern: str,
    category_id: int,
    confidence: int = 100,
    source: str = "USER_CORRECTION",
) -> tuple[bool, int | None]:
    """
    Create or update the user's mapping for a merchant.

    Existing rows take the new category, keep correction-strength confidence
    and count one more use. The existing row is locked while it is read so
    the reported previous category is the one this update replaced.

    Returns:
        (created, previous_category_id); previous_category_id is None for a new row
    """
    with get_session() as session:
        for attempt in range(2):
            existing = session.execute(
                select(MerchantCategoryMapping.id, MerchantCategoryMapping.category_id)
                .where(
                    MerchantCategoryMapping.user_id == user_id,
                    MerchantCategoryMapping.merchant_name == merchant_name,
                )
                .with_for_update()
            ).first()

            if existing is not None:
                session.execute(
                    update(MerchantCategoryMapping)
                    .where(MerchantCategoryMapping.id == existing.id)
                    .values(
                        category_id=category_id,
                        confidence=confidence,
                        source=source,
                        merchant_pattern=merchant_pattern,
                        times_used=MerchantCategoryMapping.times_used + 1,
                        updated_at=utcnow(),
                    )
                )
                session.commit()
                return False, existing.category_id

            session.add(
                MerchantCategoryMapping(
                    user_id=user_id,
                    merchant_name=merchant_name,
                    merchant_pattern=merchant_pattern,
                    category_id=category_id,
                    source=source,
                    confidence=confidence,
                    times_used=1,
                    confirmed_by_users=1,
                )
            )
            try:
                session.commit()
                return True, None
            except IntegrityError:
                session.rollback()
                # A concurrent request for the same user created it; update that row instead
                if attempt:
                    raise


@store_operation
def delete_user_mapping(user_id: int, merchant_name: str) -> bool:
    """Delete a user's mapping. Returns True if a row was removed."""
    with get_session() as session:
        result = session.execute(
            delete(MerchantCategoryMapping).where(
                MerchantCategoryMapping.user_id == user_id,
                MerchantCategoryMapping.merchant_name == merchant_name,
            )
        )
        session.commit()
        return result.rowcount > 0


# ============================================================================
# GLOBAL WRITES (ATOMIC)
# ============================================================================


@store_operation
def create_global_mapping_if_absent(
    merchant_name: str,
    merchant_pattern: str,
    category_id: int,
    confidence: int,
    confirmed_by_users: int,
    source: str,
) -> bool:
    """
    Insert the global row for a merchant unless one already exists.

    Returns:
        True if this call created the row
    """
    with get_session() as session:
        session.add(
            MerchantCategoryMapping(
                user_id=None,
                merchant_name=merchant_name,
                merchant_pattern=merchant_pattern,
                category_id=category_id,
                source=source,
                confidence=confidence,
                times_used=1,
                confirmed_by_users=confirmed_by_users,
            )
        )
        try:
            session.commit()
            return True
        except IntegrityError:
            session.rollback()
            return False


@store_operation
def apply_global_agreement(
    merchant_name: str, category_id: int, bonus: int, max_confidence: int
) -> bool:
    """
    Reinforce the global row if it still points at category_id.

    confidence = min(max_confidence, confidence + bonus), usage and
    corroboration each +1, all in one statement.

    Returns:
        True if the row matched and was updated
    """
    raised = MerchantCategoryMapping.confidence + bonus

    with get_session() as session:
        result = session.execute(
            update(MerchantCategoryMapping)
            .where(
                MerchantCategoryMapping.user_id.is_(None),
                MerchantCategoryMapping.merchant_name == merchant_name,
                MerchantCategoryMapping.category_id == category_id,
            )
            .values(
                confidence=case((raised > max_confidence, max_confidence), else_=raised),
                times_used=MerchantCategoryMapping.times_used + 1,
                confirmed_by_users=MerchantCategoryMapping.confirmed_by_users + 1,
                updated_at=utcnow(),
            )
        )
        session.commit()
        return result.rowcount > 0


@store_operation
def apply_global_disagreement(
    merchant_name: str,
    category_id: int,
    penalty: int,
    flip_floor: int,
    reset_confidence: int,
) -> bool:
    """
    Weaken the global row if it points at a different category.

    confidence drops by penalty; when the result is at or below flip_floor the
    row switches to category_id and confidence restarts at reset_confidence.
    Every SET expression reads the pre-update values.

    Returns:
        True if the row matched and was updated
    """
    lowered = MerchantCategoryMapping.confidence - penalty
    flips = lowered <= flip_floor

    with get_session() as session:
        result = session.execute(
            update(MerchantCategoryMapping)
            .where(
                MerchantCategoryMapping.user_id.is_(None),
                MerchantCategoryMapping.merchant_name == merchant_name,
                MerchantCategoryMapping.category_id != category_id,
            )
            .values(
                category_id=case((flips, category_id), else_=MerchantCategoryMapping.category_id),
                source=case((flips, "USER_CORRECTION"), else_=MerchantCategoryMapping.source),
                confidence=case((flips, reset_confidence), else_=lowered),
                updated_at=utcnow(),
            )
        )
        session.commit()
        return result.rowcount > 0


# ============================================================================
# STATISTICS
# ============================================================================


@store_operation
def get_user_mapping_stats(user_id: int, min_users: int, min_confidence: int) -> dict:
    """
    Summarize a user's learned mappings.

    Returns:
        Dict with user_mappings, trusted_global_mappings and top_categories
        (up to five {category_id, category_name, count} entries)
    """
    with get_session() as session:
        user_mappings = (
            session.query(func.count(MerchantCategoryMapping.id))
            .filter(MerchantCategoryMapping.user_id == user_id)
            .scalar()
        )

        trusted_global = (
            session.query(func.count(MerchantCategoryMapping.id))
            .filter(
                MerchantCategoryMapping.user_id.is_(None),
                MerchantCategoryMapping.confirmed_by_users >= min_users,
                MerchantCategoryMapping.confidence >= min_confidence,
            )
            .scalar()
        )

        mapping_count = func.count(MerchantCategoryMapping.id).label("count")
        top = (
            session.query(Category.id, Category.name, mapping_count)
            .join(Category, Category.id == MerchantCategoryMapping.category_id)
            .filter(MerchantCategoryMapping.user_id == user_id)
            .group_by(Category.id, Category.name)
            .order_by(mapping_count.desc(), Category.name.asc())
            .limit(5)
            .all()
        )

        return {
            "user_mappings": user_mappings or 0,
            "trusted_global_mappings": trusted_global or 0,
            "top_categories": [
                {"category_id": cat_id, "category_name": name, "count": count}
                for cat_id, name, count in top
            ],
        }
