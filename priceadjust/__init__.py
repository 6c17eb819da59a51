"""Local-first receipt sync and spending analytics."""

from priceadjust.config import Settings, get_settings
from priceadjust.exceptions import (
    DataQualityWarning,
    PartialSyncError,
    PersistenceFailedError,
    StoreError,
    SyncAbortedError,
    UploadError,
)
from priceadjust.models import LineItem, ProcessingStatus, Receipt
from priceadjust.schemas import AnalyticsSnapshot, SyncSummary, UploadOutcome, UploadStatus
from priceadjust.services.analytics import DateWindow, TimeFrame, window_for
from priceadjust.services.store import ReceiptFilter, ReceiptStore, SortOrder
from priceadjust.tracker import ReceiptTracker

__version__ = "0.1.0"

__all__ = [
    "AnalyticsSnapshot",
    "DataQualityWarning",
    "DateWindow",
    "LineItem",
    "PartialSyncError",
    "PersistenceFailedError",
    "ProcessingStatus",
    "Receipt",
    "ReceiptFilter",
    "ReceiptStore",
    "ReceiptTracker",
    "Settings",
    "SortOrder",
    "StoreError",
    "SyncAbortedError",
    "SyncSummary",
    "TimeFrame",
    "UploadError",
    "UploadOutcome",
    "UploadStatus",
    "get_settings",
    "window_for",
]
