"""Analytics result schemas."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class CategorySpending(BaseModel):
    """Spending in one category."""

    category: str
    amount: Decimal
    percentage: float


class SpendingBucket(BaseModel):
    """One calendar month or week of spending."""

    label: str  # "Oct" for months, "10/13" for weeks
    start: date
    amount: Decimal


class StoreVisits(BaseModel):
    store: str
    visit_count: int
    total_spent: Decimal


class PurchasedItem(BaseModel):
    name: str
    quantity: int
    total_spent: Decimal


class SavingsEstimate(BaseModel):
    """Heuristic price adjustment estimate. Not a guarantee."""

    amount: Decimal
    threshold: Decimal
    rate: Decimal
    is_estimate: bool = True
    label: str = "Estimated potential savings"


class SpendingTrend(BaseModel):
    current: Decimal
    previous: Decimal
    change_percent: float


class AnalyticsSnapshot(BaseModel):
    """Everything the analytics screen shows for one window."""

    window_start: datetime | None = None
    window_end: datetime | None = None
    generated_at: datetime
    total_spent: Decimal
    receipt_count: int
    average_receipt: Decimal
    instant_savings: Decimal
    top_categories: list[CategorySpending] = Field(default_factory=list)
    spending_by_month: list[SpendingBucket] = Field(default_factory=list)
    spending_by_week: list[SpendingBucket] = Field(default_factory=list)
    store_visits: list[StoreVisits] = Field(default_factory=list)
    most_purchased_items: list[PurchasedItem] = Field(default_factory=list)
    potential_savings: SavingsEstimate
    monthly_trend: SpendingTrend
