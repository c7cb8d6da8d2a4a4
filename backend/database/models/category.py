# backend/database/models/category.py
"""
Category model for transaction classification.

Maps to:
- categories table - Category Catalog supplied by the surrounding application

The email parser only ever asks the completion service for categories that
currently exist in this table.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from database.base import Base


class Category(Base):
    """Spending/income category."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    type = Column(String(10), nullable=False, default="EXPENSE")
    icon = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('EXPENSE', 'INCOME')", name="ck_category_type"),
    )

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name={self.name}, type={self.type})>"
