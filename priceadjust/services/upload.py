"""Receipt upload pipeline."""

import logging
import mimetypes

from priceadjust.exceptions import PayloadDecodeError, RemoteServiceError, UploadError
from priceadjust.schemas.upload import UploadOutcome, UploadStatus
from priceadjust.services.remote import RemoteReceiptClient

logger = logging.getLogger(__name__)


def guess_media_type(file_name: str) -> str:
    media_type, _ = mimetypes.guess_type(file_name)
    return media_type or "application/octet-stream"


def is_accepted_without_data(error: RemoteServiceError) -> bool:
    """Check whether a client error is really a 2xx with nothing to parse.

    Only the direct cause is inspected. The server accepted the file and
    will parse it later, so this is a success.
    """
    return error.is_success_status and isinstance(error.__cause__, PayloadDecodeError)


class UploadPipeline:
    """Sends raw receipt files to the server and classifies the answer.

    Writes nothing locally and never retries; the caller decides both.
    """

    def __init__(self, client: RemoteReceiptClient) -> None:
        self.client = client

    async def upload(self, blob: bytes, file_name: str) -> UploadOutcome:
        """Upload one receipt file.

        Args:
            blob: Raw image or PDF bytes
            file_name: Client-chosen file name

        Returns:
            ACCEPTED with the parsed receipt, or ACCEPTED_NO_DATA

        Raises:
            UploadError: the server rejected the file or could not be reached
        """
        if not blob:
            raise ValueError("Cannot upload an empty file")

        try:
            receipt = await self.client.upload_receipt(blob, file_name, guess_media_type(file_name))
        except RemoteServiceError as e:
            if is_accepted_without_data(e):
                logger.info(f"Upload of {file_name!r} accepted; parsing continues on the server")
                return UploadOutcome(status=UploadStatus.ACCEPTED_NO_DATA, file_name=file_name)
            logger.warning(f"Upload of {file_name!r} failed: {e}")
            raise UploadError.transport_failure(e) from e

        logger.info(f"Upload of {file_name!r} accepted as receipt {receipt.id}")
        return UploadOutcome(status=UploadStatus.ACCEPTED, file_name=file_name, receipt=receipt)
