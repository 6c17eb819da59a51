"""Wire schemas for the remote receipt service.

The service has shipped two spellings of the same payload: camelCase
(``receiptNumber``, ``lineItems``) and the older snake_case form
(``transaction_number``, ``items``, ``description``). Both are accepted.
"""

import hashlib
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from priceadjust.models.enums import ProcessingStatus
from priceadjust.models.mixins import as_utc
from priceadjust.services import pricing


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class RemoteLineItem(BaseModel):
    """A parsed line item as the server reports it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    name: str = Field(..., min_length=1, validation_alias=_alias("name", "description"))
    price: Decimal
    quantity: int = Field(1, gt=0)
    item_code: str | None = Field(None, validation_alias=_alias("itemCode", "item_code"))
    category: str | None = None
    order_index: int | None = Field(None, validation_alias=_alias("orderIndex", "order_index"))
    on_sale: bool = Field(False, validation_alias=_alias("onSale", "on_sale"))
    instant_savings: Decimal = Field(
        Decimal("0"), validation_alias=_alias("instantSavings", "instant_savings")
    )
    original_price: Decimal | None = Field(
        None, validation_alias=_alias("originalPrice", "original_price")
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @field_validator("instant_savings", mode="before")
    @classmethod
    def default_savings(cls, value: Any) -> Any:
        return Decimal("0") if value in (None, "") else value

    @field_validator("price", "instant_savings", "original_price")
    @classmethod
    def round_money(cls, value: Decimal | None) -> Decimal | None:
        return None if value is None else pricing.to_money(value)

    @model_validator(mode="after")
    def default_original_price(self) -> "RemoteLineItem":
        if self.original_price is None:
            self.original_price = self.price
        return self


class RemoteReceipt(BaseModel):
    """A fully parsed receipt as the server reports it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    # True when the payload carried no server id and ``id`` is the receipt number
    id_is_fallback: bool = Field(False, exclude=True)
    receipt_number: str | None = Field(
        None, validation_alias=_alias("receiptNumber", "receipt_number", "transaction_number")
    )
    store_name: str | None = Field(None, validation_alias=_alias("storeName", "store_name"))
    store_location: str | None = Field(
        None, validation_alias=_alias("storeLocation", "store_location")
    )
    date: datetime = Field(..., validation_alias=_alias("date", "transaction_date"))
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: str | None = None
    status: ProcessingStatus = ProcessingStatus.COMPLETED
    line_items: list[RemoteLineItem] = Field(
        default_factory=list, validation_alias=_alias("lineItems", "line_items", "items")
    )

    @model_validator(mode="before")
    @classmethod
    def fill_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("id") in (None, ""):
            # Older payloads are keyed by transaction number only
            data["id"] = (
                data.get("receiptNumber")
                or data.get("receipt_number")
                or data.get("transaction_number")
            )
            data["id_is_fallback"] = True
        if "status" not in data and "parsed_successfully" in data:
            parsed = data["parsed_successfully"]
            data["status"] = ProcessingStatus.COMPLETED if parsed else ProcessingStatus.FAILED
        return data

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        if value is None or value == "":
            raise ValueError("receipt has no id or receipt number")
        return str(value)

    @field_validator("date")
    @classmethod
    def normalize_date(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("subtotal", "tax", "total")
    @classmethod
    def round_money(cls, value: Decimal) -> Decimal:
        return pricing.to_money(value)

    @model_validator(mode="after")
    def order_line_items(self) -> "RemoteReceipt":
        for position, item in enumerate(self.line_items):
            if item.order_index is None:
                item.order_index = position
        self.line_items.sort(key=lambda item: item.order_index)
        return self

    def fingerprint(self) -> str:
        """Digest of the payload, used to skip re-applying an unchanged record."""
        return hashlib.sha256(self.model_dump_json().encode("utf-8")).hexdigest()


class ReceiptUpdateLineItem(BaseModel):
    """Line item in a push of local edits."""

    id: int | None = None
    item_code: str = ""
    description: str
    price: str
    quantity: int
    total_price: str


class ReceiptUpdateRequest(BaseModel):
    """Body for pushing local edits to the server."""

    accept_manual_edits: bool = True
    store_location: str | None = None
    transaction_date: str | None = None
    subtotal: str | None = None
    tax: str | None = None
    total: str | None = None
    notes: str | None = None
    items: list[ReceiptUpdateLineItem] | None = None
