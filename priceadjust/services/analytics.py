"""Spending analytics over the local receipt collection.

Everything here is a pure function of the receipts passed in: no caching,
no I/O. An empty collection yields zeros, never an error.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import StrEnum

from priceadjust.config import Settings
from priceadjust.models.mixins import as_utc, utcnow
from priceadjust.models.receipt import Receipt
from priceadjust.schemas.analytics import (
    AnalyticsSnapshot,
    CategorySpending,
    PurchasedItem,
    SavingsEstimate,
    SpendingBucket,
    SpendingTrend,
    StoreVisits,
)
from priceadjust.services import pricing

UNCATEGORIZED = "Uncategorized"
UNKNOWN_STORE = "Unknown Store"
UNKNOWN_ITEM = "Unknown"
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class DateWindow:
    """Closed time range; both ends are inclusive."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.end < self.start:
            raise ValueError(f"window ends before it starts: {self.start} > {self.end}")

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end


class TimeFrame(StrEnum):
    """Preset windows offered by the analytics screen."""

    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _month_start(moment: datetime) -> datetime:
    return _start_of_day(moment).replace(day=1)


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def window_for(timeframe: TimeFrame | str, now: datetime | None = None) -> DateWindow | None:
    """Calendar-to-date window for a time frame. ``ALL`` means no window."""
    now = as_utc(now or utcnow())
    timeframe = TimeFrame(timeframe)
    if timeframe is TimeFrame.ALL:
        return None
    if timeframe is TimeFrame.WEEK:
        start = _start_of_day(now) - timedelta(days=now.weekday())
    elif timeframe is TimeFrame.MONTH:
        start = _month_start(now)
    else:
        start = _month_start(now).replace(month=1)
    return DateWindow(start, now)


def filter_window(receipts: Iterable[Receipt], window: DateWindow | None) -> list[Receipt]:
    if window is None:
        return list(receipts)
    return [receipt for receipt in receipts if window.contains(receipt.purchase_date)]


def total_spent(receipts: Iterable[Receipt], window: DateWindow | None = None) -> Decimal:
    return sum((pricing.to_money(r.total) for r in filter_window(receipts, window)), ZERO)


def receipt_count(receipts: Iterable[Receipt], window: DateWindow | None = None) -> int:
    return len(filter_window(receipts, window))


def average_receipt(receipts: Sequence[Receipt], window: DateWindow | None = None) -> Decimal:
    selected = filter_window(receipts, window)
    return pricing.to_money(total_spent(selected) / max(1, len(selected)))


def total_instant_savings(receipts: Iterable[Receipt], window: DateWindow | None = None) -> Decimal:
    return sum((r.total_savings for r in filter_window(receipts, window)), ZERO)


def top_categories(
    receipts: Iterable[Receipt], window: DateWindow | None = None
) -> list[CategorySpending]:
    """Effective line spend per category, largest first."""
    amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for receipt in filter_window(receipts, window):
        for item in receipt.line_items:
            category = (item.category or "").strip() or UNCATEGORIZED
            amounts[category] += item.line_total

    grand_total = sum(amounts.values(), ZERO)
    ranked = sorted(amounts.items(), key=lambda entry: (-entry[1], entry[0]))
    return [
        CategorySpending(
            category=category,
            amount=amount,
            percentage=float(amount / grand_total * 100) if grand_total > 0 else 0.0,
        )
        for category, amount in ranked
    ]


def spending_by_month(
    receipts: Iterable[Receipt],
    window: DateWindow | None = None,
    now: datetime | None = None,
    months: int = 6,
) -> list[SpendingBucket]:
    """Trailing calendar months ending with the current one, oldest first.

    Every month is present, zero when nothing was bought.
    """
    now = as_utc(now or utcnow())
    buckets = []
    index = {}
    for offset in reversed(range(months)):
        year, month = _shift_month(now.year, now.month, -offset)
        start = _month_start(now).replace(year=year, month=month)
        index[(year, month)] = len(buckets)
        buckets.append(SpendingBucket(label=start.strftime("%b"), start=start.date(), amount=ZERO))

    for receipt in filter_window(receipts, window):
        purchased = as_utc(receipt.purchase_date)
        position = index.get((purchased.year, purchased.month))
        if position is not None:
            buckets[position].amount += pricing.to_money(receipt.total)
    return buckets


def spending_by_week(
    receipts: Iterable[Receipt],
    window: DateWindow | None = None,
    now: datetime | None = None,
    weeks: int = 12,
) -> list[SpendingBucket]:
    """Trailing weeks (Monday start) ending with the current one, zero-filled."""
    now = as_utc(now or utcnow())
    this_week = now.date() - timedelta(days=now.weekday())
    buckets = []
    index = {}
    for offset in reversed(range(weeks)):
        start = this_week - timedelta(weeks=offset)
        index[start] = len(buckets)
        buckets.append(SpendingBucket(label=f"{start.month}/{start.day}", start=start, amount=ZERO))

    for receipt in filter_window(receipts, window):
        purchased = as_utc(receipt.purchase_date).date()
        position = index.get(purchased - timedelta(days=purchased.weekday()))
        if position is not None:
            buckets[position].amount += pricing.to_money(receipt.total)
    return buckets


def store_visits(receipts: Iterable[Receipt], window: DateWindow | None = None) -> list[StoreVisits]:
    visits: dict[str, int] = defaultdict(int)
    spent: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for receipt in filter_window(receipts, window):
        store = (receipt.store_name or "").strip() or UNKNOWN_STORE
        visits[store] += 1
        spent[store] += pricing.to_money(receipt.total)

    ranked = sorted(visits, key=lambda store: (-visits[store], -spent[store], store))
    return [StoreVisits(store=s, visit_count=visits[s], total_spent=spent[s]) for s in ranked]


def most_purchased_items(
    receipts: Iterable[Receipt], window: DateWindow | None = None, limit: int = 10
) -> list[PurchasedItem]:
    quantities: dict[str, int] = defaultdict(int)
    spent: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for receipt in filter_window(receipts, window):
        for item in receipt.line_items:
            name = (item.name or "").strip() or UNKNOWN_ITEM
            quantities[name] += item.quantity
            spent[name] += item.line_total

    ranked = sorted(quantities, key=lambda name: (-quantities[name], name))[:limit]
    return [PurchasedItem(name=n, quantity=quantities[n], total_spent=spent[n]) for n in ranked]


def potential_savings(
    receipts: Iterable[Receipt],
    window: DateWindow | None = None,
    threshold: Decimal = Decimal("50.00"),
    rate: Decimal = Decimal("0.15"),
) -> SavingsEstimate:
    """Rough price adjustment estimate: a fixed share of every pricey line."""
    amount = ZERO
    for receipt in filter_window(receipts, window):
        for item in receipt.line_items:
            price = item.effective_price
            if price > threshold:
                amount += price * rate
    return SavingsEstimate(amount=pricing.to_money(amount), threshold=threshold, rate=rate)


def trend(current: Decimal, previous: Decimal) -> float:
    """Percent change from previous to current; 0 when there is no baseline."""
    if previous == 0:
        return 0.0
    return float((Decimal(current) - Decimal(previous)) / Decimal(previous) * 100)


def monthly_trend(receipts: Sequence[Receipt], now: datetime | None = None) -> SpendingTrend:
    """This month so far against the whole previous calendar month."""
    now = as_utc(now or utcnow())
    current_start = _month_start(now)
    year, month = _shift_month(now.year, now.month, -1)
    previous_start = current_start.replace(year=year, month=month)
    previous_end = current_start - timedelta(microseconds=1)

    current = total_spent(receipts, DateWindow(current_start, now))
    previous = total_spent(receipts, DateWindow(previous_start, previous_end))
    return SpendingTrend(current=current, previous=previous, change_percent=trend(current, previous))


def build_snapshot(
    receipts: Sequence[Receipt],
    settings: Settings,
    window: DateWindow | None = None,
    now: datetime | None = None,
) -> AnalyticsSnapshot:
    """Compute every analytics figure for one window."""
    now = as_utc(now or utcnow())
    selected = filter_window(receipts, window)
    return AnalyticsSnapshot(
        window_start=window.start if window else None,
        window_end=window.end if window else None,
        generated_at=now,
        total_spent=total_spent(selected),
        receipt_count=len(selected),
        average_receipt=average_receipt(selected),
        instant_savings=total_instant_savings(selected),
        top_categories=top_categories(selected),
        spending_by_month=spending_by_month(selected, now=now, months=settings.trailing_months),
        spending_by_week=spending_by_week(selected, now=now, weeks=settings.trailing_weeks),
        store_visits=store_visits(selected),
        most_purchased_items=most_purchased_items(selected, limit=settings.top_items_limit),
        potential_savings=potential_savings(
            selected,
            threshold=settings.potential_savings_threshold,
            rate=settings.potential_savings_rate,
        ),
        monthly_trend=monthly_trend(receipts, now=now),
    )
