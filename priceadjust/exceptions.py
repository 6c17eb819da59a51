"""Error taxonomy for the receipt core."""

from dataclasses import dataclass, field


class PriceAdjustError(Exception):
    """Base class for all errors raised by the receipt core."""


# Local store


class StoreError(PriceAdjustError):
    """Local store operation failed."""


class PersistenceFailedError(StoreError):
    """A local write failed after one rollback-and-retry."""


class StoreInitializationError(StoreError):
    """The local store could not be opened, even after recreating it."""


class ReceiptNotFoundError(StoreError):
    """No local receipt with the requested id."""

    def __init__(self, receipt_id: str):
        super().__init__(f"Receipt {receipt_id} not found")
        self.receipt_id = receipt_id


# Remote service


class RemoteServiceError(PriceAdjustError):
    """Transport-level wrapper for any failed call to the remote receipt service."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_success_status(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class PayloadDecodeError(PriceAdjustError):
    """A response body was empty or did not contain a receipt."""


class UploadError(PriceAdjustError):
    """The upload was rejected or never reached the server. Retryable by the caller."""

    @classmethod
    def transport_failure(cls, cause: Exception) -> "UploadError":
        error = cls(f"Upload failed: {cause}")
        error.__cause__ = cause
        return error


# Sync


@dataclass(frozen=True)
class RecordFailure:
    """One remote record that could not be reconciled."""

    remote_id: str | None
    reason: str


class SyncError(PriceAdjustError):
    """Sync cycle problem."""


class SyncAbortedError(SyncError):
    """The remote receipt list could not be fetched; nothing was reconciled."""


class PartialSyncError(SyncError):
    """Some records in a cycle failed; the rest of the cycle is still valid."""

    def __init__(self, failures: list[RecordFailure]):
        super().__init__(f"{len(failures)} record(s) failed to reconcile")
        self.failures = failures


class AmbiguousMatchError(SyncError):
    """A remote receipt matched more than one local placeholder."""


# Data quality


@dataclass(frozen=True)
class DataQualityWarning:
    """An invariant violation in untrusted receipt data. Reported, never raised."""

    code: str
    message: str
    receipt_id: str | None = None
    line_item: str | None = None
    details: dict = field(default_factory=dict, compare=False)
