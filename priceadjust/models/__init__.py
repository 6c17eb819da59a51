"""SQLAlchemy models."""

from priceadjust.models.enums import ProcessingStatus
from priceadjust.models.line_item import LineItem
from priceadjust.models.receipt import Receipt

__all__ = [
    "ProcessingStatus",
    "Receipt",
    "LineItem",
]
