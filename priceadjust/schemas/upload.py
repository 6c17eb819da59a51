"""Upload result schemas."""

from enum import StrEnum

from pydantic import BaseModel

from priceadjust.schemas.remote import RemoteReceipt


class UploadStatus(StrEnum):
    """How the server acknowledged an upload."""

    ACCEPTED = "accepted"  # parsed receipt came back with the response
    ACCEPTED_NO_DATA = "accepted_no_data"  # stored; parsing finishes asynchronously


class UploadOutcome(BaseModel):
    """Successful upload. Failures raise UploadError instead."""

    status: UploadStatus
    file_name: str
    receipt: RemoteReceipt | None = None
    local_receipt_id: str | None = None

    @property
    def has_data(self) -> bool:
        return self.status == UploadStatus.ACCEPTED
