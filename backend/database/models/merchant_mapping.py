# backend/database/models/merchant_mapping.py
"""
Merchant to category mapping model.

Maps to:
- merchant_category_mappings table

Two tiers share the table: user-scoped rows (user_id set) and global rows
(user_id NULL). The partial unique index keeps one global row per merchant,
since NULLs never collide in the composite unique constraint.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func

from database.base import Base

MAPPING_SOURCES = ("USER_CORRECTION", "AI_INFERRED", "SEED")


class MerchantCategoryMapping(Base):
    """Learned association between a normalized merchant and a category."""

    __tablename__ = "merchant_category_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True)  # NULL = global mapping
    merchant_name = Column(String(255), nullable=False)  # Normalized key
    merchant_pattern = Column(String(255), nullable=True)
    category_id = Column(
        Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    source = Column(String(20), nullable=False, default="USER_CORRECTION")
    confidence = Column(Integer, nullable=False, default=50)
    times_used = Column(Integer, nullable=False, default=1)
    confirmed_by_users = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_name", name="uq_merchant_mapping_user_merchant"),
        Index(
            "uq_merchant_mapping_global_merchant",
            "merchant_name",
            unique=True,
            postgresql_where=text("user_id IS NULL"),
            sqlite_where=text("user_id IS NULL"),
        ),
        Index("idx_merchant_mapping_trust", "confirmed_by_users", "confidence"),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_merchant_mapping_confidence"
        ),
        CheckConstraint(
            "source IN ('USER_CORRECTION', 'AI_INFERRED', 'SEED')",
            name="ck_merchant_mapping_source",
        ),
    )

    def __repr__(self) -> str:
        scope = self.user_id if self.user_id is not None else "global"
        return f"<MerchantCategoryMapping(id={self.id}, scope={scope}, merchant={self.merchant_name}, confidence={self.confidence})>"
