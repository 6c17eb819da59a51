"""Enums for model fields."""

from enum import StrEnum


class ProcessingStatus(StrEnum):
    """Server-side processing state of a receipt."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def is_final(self) -> bool:
        """Check if the server is done with this receipt."""
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)
