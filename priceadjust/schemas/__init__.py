"""Pydantic schemas for wire payloads and results."""

from priceadjust.schemas.adjustments import OnSaleList, PriceAdjustment, PriceAdjustmentList, SaleItem
from priceadjust.schemas.analytics import AnalyticsSnapshot
from priceadjust.schemas.remote import RemoteLineItem, RemoteReceipt, ReceiptUpdateRequest
from priceadjust.schemas.sync import RecordOutcome, SyncSummary
from priceadjust.schemas.upload import UploadOutcome, UploadStatus

__all__ = [
    "AnalyticsSnapshot",
    "OnSaleList",
    "PriceAdjustment",
    "PriceAdjustmentList",
    "RemoteLineItem",
    "RemoteReceipt",
    "ReceiptUpdateRequest",
    "RecordOutcome",
    "SaleItem",
    "SyncSummary",
    "UploadOutcome",
    "UploadStatus",
]
