"""
Category Catalog - Database Operations

Read access to the categories the surrounding application maintains. The email
parser requests only the names returned here, so parsing stays valid as the
catalog evolves.
"""

from .base import get_session, store_operation
from .models.category import Category


def _to_dict(category: Category) -> dict:
    return {"id": category.id, "name": category.name, "type": category.type}


@store_operation
def get_expense_categories() -> list[dict]:
    """Get all EXPENSE categories ordered by name."""
    with get_session() as session:
        categories = (
            session.query(Category)
            .filter(Category.type == "EXPENSE")
            .order_by(Category.name.asc())
            .all()
        )
        return [_to_dict(c) for c in categories]


@store_operation
def create_category(name: str, category_type: str = "EXPENSE", icon: str = None) -> int:
    """
    Create a category.

    Args:
        name: Unique display name
        category_type: EXPENSE or INCOME
        icon: Optional icon identifier

    Returns:
        Category ID
    """
    with get_session() as session:
        category = Category(name=name, type=category_type, icon=icon)
        session.add(category)
        session.commit()
        return category.id
