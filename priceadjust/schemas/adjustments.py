"""Server-side price adjustment and current sale schemas.

These are computed by the remote service from every user's receipts and
the retailer's published promotions, so they are fetched rather than derived
locally.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from priceadjust.services import pricing


class LocationContext(BaseModel):
    """Where a lower price applies."""

    model_config = ConfigDict(extra="ignore")

    type: str = ""
    description: str = ""
    store_specific: bool = False


class PriceAdjustment(BaseModel):
    """An item bought at a higher price than it is now sold for.

    The difference can be claimed back while ``days_remaining`` is positive.
    """

    model_config = ConfigDict(extra="ignore")

    item_code: str = Field(..., min_length=1)
    description: str
    current_price: Decimal
    lower_price: Decimal
    price_difference: Decimal
    store_location: str | None = None
    store_number: str | None = None
    purchase_date: str | None = None
    days_remaining: int = 0
    original_store: str | None = None
    original_store_number: str | None = None
    data_source: str | None = None
    is_official: bool = False
    promotion_title: str | None = None
    sale_type: str | None = None
    confidence_level: str | None = None
    transaction_number: str | None = None
    source_description: str | None = None
    source_type_display: str | None = None
    action_required: str | None = None
    location_context: LocationContext | None = None

    @field_validator("item_code", mode="before")
    @classmethod
    def coerce_item_code(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("current_price", "lower_price", "price_difference")
    @classmethod
    def round_money(cls, value: Decimal) -> Decimal:
        return pricing.to_money(value)

    @property
    def is_claimable(self) -> bool:
        return self.days_remaining > 0 and self.price_difference > 0


class PriceAdjustmentList(BaseModel):
    """Response of the price adjustments endpoint."""

    model_config = ConfigDict(extra="ignore")

    adjustments: list[PriceAdjustment] = Field(default_factory=list)
    total_potential_savings: Decimal = Decimal("0.00")

    @field_validator("total_potential_savings")
    @classmethod
    def round_money(cls, value: Decimal) -> Decimal:
        return pricing.to_money(value)

    def without(self, item_code: str) -> "PriceAdjustmentList":
        """Copy of this list with one item's adjustments removed."""
        kept = [a for a in self.adjustments if a.item_code != item_code]
        removed = sum(
            (a.price_difference for a in self.adjustments if a.item_code == item_code),
            Decimal("0.00"),
        )
        return PriceAdjustmentList(
            adjustments=kept,
            total_potential_savings=max(Decimal("0.00"), self.total_potential_savings - removed),
        )


class Promotion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    sale_start_date: str | None = None
    sale_end_date: str | None = None
    days_remaining: int = 0
    items_count: int | None = None


class SaleItem(BaseModel):
    """One item in a current retailer promotion."""

    model_config = ConfigDict(extra="ignore")

    id: int
    item_code: str
    description: str
    regular_price: Decimal | None = None
    sale_price: Decimal | None = None
    instant_rebate: Decimal | None = None
    savings: Decimal | None = None
    sale_type: str = ""
    promotion: Promotion | None = None

    @field_validator("item_code", mode="before")
    @classmethod
    def coerce_item_code(cls, value: Any) -> Any:
        return None if value is None else str(value)


class OnSaleList(BaseModel):
    """Response of the current sales endpoint."""

    model_config = ConfigDict(extra="ignore")

    sales: list[SaleItem] = Field(default_factory=list)
    total_count: int = 0
    active_promotions: list[Promotion] = Field(default_factory=list)
    current_date: str | None = None
    last_updated: str | None = None
