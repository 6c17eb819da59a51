"""Entry point consumed by the presentation layer."""

import asyncio
import logging
from datetime import datetime

import httpx

from priceadjust.config import Settings, get_settings
from priceadjust.exceptions import RemoteServiceError
from priceadjust.schemas.adjustments import OnSaleList, PriceAdjustmentList
from priceadjust.schemas.analytics import AnalyticsSnapshot
from priceadjust.schemas.sync import SyncSummary
from priceadjust.schemas.upload import UploadOutcome, UploadStatus
from priceadjust.services import analytics
from priceadjust.services.analytics import DateWindow
from priceadjust.services.events import EventBus
from priceadjust.services.remote import RemoteReceiptClient
from priceadjust.services.store import ReceiptStore
from priceadjust.services.sync import SyncCoordinator
from priceadjust.services.upload import UploadPipeline

logger = logging.getLogger(__name__)


class ReceiptTracker:
    """Upload, sync and analytics over one explicitly owned local store.

    The process entry point builds the tracker and owns its lifetime;
    nothing here is a global.
    """

    def __init__(
        self,
        store: ReceiptStore,
        client: RemoteReceiptClient,
        settings: Settings,
    ) -> None:
        self.settings = settings
        self.store = store
        self.client = client
        self.uploads = UploadPipeline(client)
        self.sync = SyncCoordinator(store, client, self.settings)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ReceiptTracker":
        """Build the default wiring: SQLite store plus httpx client."""
        settings = settings or get_settings()
        store = ReceiptStore(settings.database_url, events=EventBus())
        client = RemoteReceiptClient(settings, transport=transport)
        return cls(store, client, settings)

    @property
    def events(self) -> EventBus:
        return self.store.events

    async def upload_receipt(self, blob: bytes, file_name: str) -> UploadOutcome:
        """Upload a captured receipt file.

        When the server answers with a parsed receipt it is stored locally
        right away. ACCEPTED_NO_DATA stores nothing; the receipt arrives with
        a later sync.
        """
        outcome = await self.uploads.upload(blob, file_name)
        if outcome.status == UploadStatus.ACCEPTED and outcome.receipt is not None:
            _, receipt_id = await self.sync.apply_remote(
                outcome.receipt, raw_blob=blob, file_name=file_name, from_upload=True
            )
            outcome.local_receipt_id = receipt_id
        return outcome

    async def sync_now(self) -> SyncSummary:
        return await self.sync.sync_now()

    async def delete_receipt(self, receipt_id: str, *, remote: bool = False) -> None:
        """Delete a receipt locally, and on the server too when ``remote`` is set.

        The server copy goes first so that a failed remote delete leaves the
        local receipt in place. A 404 from the server means it is already gone.
        """
        receipt = await asyncio.to_thread(self.store.require, receipt_id)
        if remote and receipt.remote_id:
            try:
                await self.client.delete_receipt(receipt.remote_id)
            except RemoteServiceError as e:
                if e.status_code != 404:
                    raise
                logger.info(f"Remote receipt {receipt.remote_id} was already deleted")
        await asyncio.to_thread(self.store.delete, receipt_id)

    async def price_adjustments(self) -> PriceAdjustmentList:
        return await self.client.get_price_adjustments()

    async def dismiss_price_adjustment(
        self, item_code: str, current: PriceAdjustmentList | None = None
    ) -> PriceAdjustmentList | None:
        """Dismiss an item's adjustments on the server.

        When the caller passes the list it is showing, the updated list is
        returned with that item removed and the total reduced.
        """
        await self.client.dismiss_price_adjustment(item_code)
        return current.without(item_code) if current is not None else None

    async def on_sale_items(self) -> OnSaleList:
        return await self.client.get_on_sale_items()

    def analytics(
        self, window: DateWindow | None = None, now: datetime | None = None
    ) -> AnalyticsSnapshot:
        """Analytics for a window (None means all time) over the local collection."""
        receipts = self.store.query()
        return analytics.build_snapshot(receipts, self.settings, window=window, now=now)

    async def analytics_async(
        self, window: DateWindow | None = None, now: datetime | None = None
    ) -> AnalyticsSnapshot:
        """Same as analytics(), with the store read moved off the event loop."""
        return await asyncio.to_thread(self.analytics, window, now)

    async def aclose(self) -> None:
        self.store.close()

    async def __aenter__(self) -> "ReceiptTracker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
