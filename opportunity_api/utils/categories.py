# opportunity_api/utils/categories.py
"""Category identifiers accepted by the lifecycle and access endpoints."""

from typing import Any

from opportunity_api.errors import ValidationError
from opportunity_api.models import OpportunityCategory


def validate_category(category: Any) -> OpportunityCategory:
    """Return the category enum or raise ValidationError naming the bad value."""
    try:
        return OpportunityCategory(category)
    except ValueError:
        raise ValidationError(
            f"Invalid opportunity category '{category}'. Valid categories: {', '.join(OpportunityCategory.values())}",
            field="category",
        ) from None
