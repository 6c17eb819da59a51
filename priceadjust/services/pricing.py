"""Sale and price adjustment derivation.

Receipts print the original, pre-discount price for every line and list
instant savings separately, so the stored price is never the charged price.
Every display or aggregate of a price goes through these helpers.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from priceadjust.exceptions import DataQualityWarning

CENT = Decimal("0.01")
DEFAULT_TOLERANCE = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a price-like value to a Decimal rounded to cents.

    Floats go through their shortest string form, so 79.99 stays 79.99.
    """
    if value is None:
        return Decimal("0.00")
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_on_sale(on_sale: bool, instant_savings: Any) -> bool:
    return bool(on_sale) or to_money(instant_savings) > 0


def effective_price(price: Any, on_sale: bool, instant_savings: Any) -> Decimal:
    """Per-unit price actually paid, never below zero."""
    raw = to_money(price)
    if not is_on_sale(on_sale, instant_savings):
        return raw
    return max(Decimal("0.00"), raw - to_money(instant_savings))


def line_total(price: Any, quantity: int, on_sale: bool, instant_savings: Any) -> Decimal:
    return effective_price(price, on_sale, instant_savings) * int(quantity)


def total_savings(line_items: Iterable[Any]) -> Decimal:
    """Sum of instant savings over a receipt's line items."""
    return sum((to_money(item.instant_savings) for item in line_items), Decimal("0.00"))


def line_item_warnings(item: Any, receipt_id: str | None = None) -> list[DataQualityWarning]:
    warnings = []
    savings = to_money(item.instant_savings)
    price = to_money(item.price)
    if savings > price:
        warnings.append(
            DataQualityWarning(
                code="savings_exceed_price",
                message=f"Instant savings {savings} exceed price {price} for {item.name!r}",
                receipt_id=receipt_id,
                line_item=item.name,
                details={"price": str(price), "instant_savings": str(savings)},
            )
        )
    if savings < 0:
        warnings.append(
            DataQualityWarning(
                code="negative_savings",
                message=f"Negative instant savings {savings} for {item.name!r}",
                receipt_id=receipt_id,
                line_item=item.name,
            )
        )
    return warnings


def receipt_warnings(
    receipt: Any,
    tolerance: Decimal = DEFAULT_TOLERANCE,
    receipt_id: str | None = None,
) -> list[DataQualityWarning]:
    """Check a receipt-shaped object (entity or remote payload) for bad data.

    Violations are returned for reporting. Nothing is corrected.
    """
    receipt_id = receipt_id or getattr(receipt, "id", None)
    warnings = []
    subtotal = to_money(receipt.subtotal)
    tax = to_money(receipt.tax)
    total = to_money(receipt.total)
    if abs(total - (subtotal + tax)) > tolerance:
        warnings.append(
            DataQualityWarning(
                code="total_mismatch",
                message=f"Total {total} differs from subtotal {subtotal} + tax {tax}",
                receipt_id=receipt_id,
                details={"subtotal": str(subtotal), "tax": str(tax), "total": str(total)},
            )
        )
    for item in receipt.line_items:
        warnings.extend(line_item_warnings(item, receipt_id))
    return warnings
