"""Client for the remote receipt service."""

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from priceadjust.config import Settings
from priceadjust.exceptions import PayloadDecodeError, RemoteServiceError
from priceadjust.schemas.adjustments import OnSaleList, PriceAdjustmentList
from priceadjust.schemas.remote import ReceiptUpdateRequest, RemoteReceipt

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class RemoteReceiptClient:
    """Thin async client for the receipt, price adjustment and sale endpoints.

    Every call has a bounded timeout and is attempted once. All failures,
    including a 2xx body that is not a receipt, surface as
    RemoteServiceError with the original error chained as ``__cause__``.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.base_url = self.settings.remote_base_url.rstrip("/")
        self.timeout = self.settings.remote_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            logger.error(f"{method} {url} returned {e.response.status_code}")
            raise RemoteServiceError(
                f"Server error {e.response.status_code} for {method} {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            logger.error(f"{method} {url} timed out after {self.timeout}s")
            raise RemoteServiceError(f"Timed out after {self.timeout}s: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling {method} {url}: {e}")
            raise RemoteServiceError(f"Network error for {method} {path}: {e}") from e

    @staticmethod
    def _decode_receipt(response: httpx.Response) -> RemoteReceipt:
        try:
            if not response.content.strip():
                raise PayloadDecodeError("empty response body")
            data = response.json()
            if not data:
                raise PayloadDecodeError(f"no receipt in response body: {data!r}")
            if isinstance(data, dict) and isinstance(data.get("receipt"), dict):
                data = data["receipt"]
            return RemoteReceipt.model_validate(data)
        except (PayloadDecodeError, ValidationError, ValueError) as e:
            cause = e if isinstance(e, PayloadDecodeError) else PayloadDecodeError(str(e))
            raise RemoteServiceError(
                f"Could not decode receipt: {cause}", status_code=response.status_code
            ) from cause

    async def upload_receipt(
        self, blob: bytes, file_name: str, media_type: str = "application/octet-stream"
    ) -> RemoteReceipt:
        """Upload a raw receipt file for server-side parsing.

        Returns:
            The parsed receipt from the response body

        Raises:
            RemoteServiceError: on any failure, including a 2xx body without a receipt
        """
        files = {self.settings.upload_field_name: (file_name, blob, media_type)}
        logger.info(f"POST receipt upload: file={file_name!r}, bytes={len(blob)}")
        response = await self._request("POST", "/receipts/upload/", files=files)
        return self._decode_receipt(response)

    async def list_receipts(self) -> list[dict[str, Any]]:
        """Fetch every receipt the server has, as raw records.

        Records are validated one at a time by the caller so that one bad
        record cannot hide the rest.
        """
        response = await self._request("GET", "/receipts/")
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteServiceError(
                f"Receipt list is not JSON: {e}", status_code=response.status_code
            ) from e

        if isinstance(data, dict):
            data = data.get("receipts")
        if not isinstance(data, list):
            raise RemoteServiceError(
                "Receipt list response has no receipts array", status_code=response.status_code
            )
        logger.debug(f"Fetched {len(data)} remote receipt(s)")
        return data

    async def get_receipt(self, remote_id: str) -> RemoteReceipt:
        response = await self._request("GET", f"/receipts/{remote_id}/")
        return self._decode_receipt(response)

    async def update_receipt(
        self, receipt_number: str, update: ReceiptUpdateRequest
    ) -> RemoteReceipt:
        """Push local edits; the server echoes the receipt it stored."""
        response = await self._request(
            "PUT",
            f"/receipts/{receipt_number}/update/",
            json=update.model_dump(mode="json"),
        )
        return self._decode_receipt(response)

    async def delete_receipt(self, remote_id: str) -> None:
        """Delete a receipt on the server. The local copy is not touched."""
        await self._request("DELETE", f"/receipts/{remote_id}/")
        logger.info(f"Deleted remote receipt {remote_id}")

    @staticmethod
    def _decode_model(response: httpx.Response, model: type[T], what: str) -> T:
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            raise RemoteServiceError(
                f"Could not decode {what}: {e}", status_code=response.status_code
            ) from e

    async def get_price_adjustments(self) -> PriceAdjustmentList:
        """Items the user paid more for than their current price."""
        response = await self._request("GET", "/price-adjustments/")
        return self._decode_model(response, PriceAdjustmentList, "price adjustments")

    async def dismiss_price_adjustment(self, item_code: str) -> None:
        """Hide every adjustment for an item code on the server."""
        await self._request("POST", f"/price-adjustments/dismiss/{item_code}/")
        logger.info(f"Dismissed price adjustment for item {item_code}")

    async def get_on_sale_items(self) -> OnSaleList:
        """Items in the retailer's current promotions."""
        response = await self._request("GET", "/on-sale/")
        return self._decode_model(response, OnSaleList, "sale items")
