"""Sync cycle result schemas."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from priceadjust.exceptions import DataQualityWarning, PartialSyncError, RecordFailure


class RecordOutcome(StrEnum):
    """What one sync cycle did with one remote record."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"  # local edit protected
    UNCHANGED = "unchanged"
    FAILED = "failed"


class SyncSummary(BaseModel):
    """Counts and per-record problems from one sync cycle."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    started_at: datetime
    finished_at: datetime | None = None
    created: int = 0
    updated: int = 0
    skipped: int = 0
    unchanged: int = 0
    failed: int = 0
    orphaned: int = 0
    failures: list[RecordFailure] = Field(default_factory=list)
    warnings: list[DataQualityWarning] = Field(default_factory=list)

    @property
    def mutations(self) -> int:
        return self.created + self.updated

    @property
    def ok(self) -> bool:
        return not self.failures

    def record(self, outcome: RecordOutcome) -> None:
        """Count one record outcome."""
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def add_failure(self, remote_id: str | None, reason: str) -> None:
        self.failures.append(RecordFailure(remote_id=remote_id, reason=reason))
        self.record(RecordOutcome.FAILED)

    def raise_for_failures(self) -> None:
        """Raise PartialSyncError if any record failed."""
        if self.failures:
            raise PartialSyncError(list(self.failures))
