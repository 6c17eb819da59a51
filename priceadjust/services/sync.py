"""Reconciliation of the local store with the remote receipt service.

The server is the source of truth, with one exception: a receipt the user
edited locally since the last pull keeps its local values until the edit has
been pushed. Each cycle is a full pass over the remote list; each remote
record is applied in its own store transaction.

Per-record rules:

- unseen remotely known receipt -> created locally
- known and clean               -> overwritten, line items replaced wholesale
- known with local edits        -> skipped
- local receipt missing remotely -> left alone (counted as orphaned)
"""

import asyncio
import logging
from decimal import Decimal
from functools import partial
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from priceadjust.config import Settings
from priceadjust.exceptions import (
    AmbiguousMatchError,
    PriceAdjustError,
    RemoteServiceError,
    SyncAbortedError,
)
from priceadjust.models.enums import ProcessingStatus
from priceadjust.models.line_item import LineItem
from priceadjust.models.mixins import utcnow
from priceadjust.models.receipt import Receipt
from priceadjust.schemas.remote import (
    ReceiptUpdateLineItem,
    ReceiptUpdateRequest,
    RemoteLineItem,
    RemoteReceipt,
)
from priceadjust.schemas.sync import RecordOutcome, SyncSummary
from priceadjust.services import pricing
from priceadjust.services.events import StoreEventType
from priceadjust.services.remote import RemoteReceiptClient
from priceadjust.services.store import (
    ReceiptStore,
    find_by_remote_id,
    find_placeholders,
    replace_line_items_in,
)

logger = logging.getLogger(__name__)


def _record_id(record: Any) -> str | None:
    if not isinstance(record, dict):
        return None
    for key in ("id", "receiptNumber", "receipt_number", "transaction_number"):
        if record.get(key) not in (None, ""):
            return str(record[key])
    return None


def line_item_from_remote(item: RemoteLineItem) -> LineItem:
    return LineItem(
        remote_id=item.id,
        name=item.name,
        price=item.price,
        quantity=item.quantity,
        item_code=item.item_code,
        category=item.category,
        order_index=item.order_index,
        on_sale=item.on_sale,
        instant_savings=item.instant_savings,
        original_price=item.original_price,
    )


def apply_remote_fields(
    session: Session,
    receipt: Receipt,
    remote: RemoteReceipt,
    fingerprint: str | None,
    raw_blob: bytes | None = None,
    file_name: str | None = None,
) -> None:
    """Overwrite a local receipt and its line items with the server's copy."""
    if remote.receipt_number:
        receipt.receipt_number = remote.receipt_number
    receipt.store_name = remote.store_name or remote.store_location or receipt.store_name
    receipt.store_location = remote.store_location
    receipt.purchase_date = remote.date
    receipt.subtotal = remote.subtotal
    receipt.tax = remote.tax
    receipt.total = remote.total
    if remote.notes is not None:
        receipt.notes = remote.notes
    receipt.status = remote.status.value

    if remote.status == ProcessingStatus.COMPLETED:
        receipt.raw_blob = None
        receipt.raw_blob_name = None
    elif raw_blob is not None:
        receipt.raw_blob = raw_blob
        receipt.raw_blob_name = file_name

    replace_line_items_in(session, receipt, [line_item_from_remote(i) for i in remote.line_items])

    now = utcnow()
    receipt.has_local_edits = False
    receipt.remote_fingerprint = fingerprint
    receipt.last_synced_at = now
    receipt.sync_version = (receipt.sync_version or 0) + 1
    receipt.updated_at = now


def build_update_request(receipt: Receipt) -> ReceiptUpdateRequest:
    """Body that pushes a locally edited receipt to the server."""
    return ReceiptUpdateRequest(
        accept_manual_edits=True,
        store_location=receipt.store_location,
        transaction_date=receipt.purchase_date.isoformat() if receipt.purchase_date else None,
        subtotal=str(pricing.to_money(receipt.subtotal)),
        tax=str(pricing.to_money(receipt.tax)),
        total=str(pricing.to_money(receipt.total)),
        notes=receipt.notes,
        items=[
            ReceiptUpdateLineItem(
                item_code=item.item_code or "",
                description=item.name,
                price=str(pricing.to_money(item.price)),
                quantity=item.quantity,
                total_price=str(pricing.to_money(item.price) * item.quantity),
            )
            for item in receipt.line_items
        ],
    )


class SyncCoordinator:
    """Brings the local store in line with the remote receipt service.

    Safe to run concurrently with itself: cycles share nothing but the
    store, whose writer lock serializes the per-record transactions.
    """

    def __init__(
        self,
        store: ReceiptStore,
        client: RemoteReceiptClient,
        settings: Settings,
    ) -> None:
        self.store = store
        self.client = client
        self.settings = settings

    async def sync_now(self) -> SyncSummary:
        """Run one full sync cycle.

        Returns:
            Summary of what happened to every remote record

        Raises:
            SyncAbortedError: the remote list could not be fetched
        """
        summary = SyncSummary(started_at=utcnow())
        try:
            records = await self.client.list_receipts()
        except RemoteServiceError as e:
            logger.error(f"Sync aborted, could not fetch remote receipts: {e}")
            raise SyncAbortedError(f"Could not fetch remote receipts: {e}") from e

        seen: set[str] = set()
        for record in records:
            record_id = _record_id(record)
            if record_id:
                seen.add(record_id)
            try:
                remote = RemoteReceipt.model_validate(record)
            except ValidationError as e:
                logger.warning(f"Skipping malformed remote receipt {record_id}: {e}")
                summary.add_failure(record_id, f"malformed payload ({e.error_count()} error(s))")
                continue
            seen.add(remote.id)
            await self._reconcile_into(summary, remote)

        local_remote_ids = await asyncio.to_thread(self.store.remote_ids)
        summary.orphaned = len(local_remote_ids - seen)
        summary.finished_at = utcnow()

        logger.info(
            f"Sync finished: {summary.created} created, {summary.updated} updated, "
            f"{summary.skipped} skipped, {summary.unchanged} unchanged, "
            f"{summary.failed} failed, {summary.orphaned} orphaned"
        )
        self.store.events.publish(
            StoreEventType.SYNC_COMPLETED,
            summary.model_dump(include={"created", "updated", "skipped", "failed", "orphaned"}),
        )
        return summary

    async def apply_remote(
        self,
        remote: RemoteReceipt,
        raw_blob: bytes | None = None,
        file_name: str | None = None,
        from_upload: bool = False,
    ) -> tuple[RecordOutcome, str]:
        """Reconcile a single parsed remote receipt outside a full cycle.

        An upload answer without a server id becomes a pending placeholder
        holding the raw file; a later cycle binds it by receipt number,
        purchase day and total.

        Returns:
            The outcome and the local receipt id
        """
        reconcile = partial(
            self._reconcile,
            remote,
            raw_blob=raw_blob,
            file_name=file_name,
            placeholder=from_upload and remote.id_is_fallback,
        )
        return await asyncio.to_thread(self.store.write, reconcile)

    async def _reconcile_into(self, summary: SyncSummary, remote: RemoteReceipt) -> None:
        warnings = pricing.receipt_warnings(
            remote, self.settings.total_tolerance, receipt_id=remote.id
        )
        for warning in warnings:
            logger.warning(f"Data quality: {warning.message} (receipt {remote.id})")
        summary.warnings.extend(warnings)

        try:
            outcome, _ = await self.apply_remote(remote)
        except (PriceAdjustError, ValueError, ArithmeticError) as e:
            logger.warning(f"Failed to reconcile remote receipt {remote.id}: {e}")
            summary.add_failure(remote.id, str(e))
            return
        logger.debug(f"Remote receipt {remote.id}: {outcome}")
        summary.record(outcome)

    def _reconcile(
        self,
        remote: RemoteReceipt,
        session: Session,
        raw_blob: bytes | None = None,
        file_name: str | None = None,
        placeholder: bool = False,
    ) -> tuple[RecordOutcome, str]:
        """Apply one remote record. Runs inside a store transaction."""
        fingerprint = None if placeholder else remote.fingerprint()

        receipt = None if placeholder else find_by_remote_id(session, remote.id)
        if receipt is None:
            receipt = self._match_placeholder(session, remote, bind=not placeholder)

        if receipt is None:
            receipt = Receipt(remote_id=None if placeholder else remote.id)
            session.add(receipt)
            outcome = RecordOutcome.CREATED
        elif receipt.has_local_edits:
            logger.info(f"Keeping local edits to receipt {receipt.id}; server copy not applied")
            return RecordOutcome.SKIPPED, receipt.id
        elif fingerprint is not None and receipt.remote_fingerprint == fingerprint:
            return RecordOutcome.UNCHANGED, receipt.id
        else:
            outcome = RecordOutcome.UPDATED

        apply_remote_fields(session, receipt, remote, fingerprint, raw_blob, file_name)
        if placeholder:
            receipt.status = ProcessingStatus.PENDING.value
            receipt.raw_blob = raw_blob
            receipt.raw_blob_name = file_name
        return outcome, receipt.id

    @staticmethod
    def _match_placeholder(session: Session, remote: RemoteReceipt, bind: bool) -> Receipt | None:
        candidates = find_placeholders(
            session, remote.receipt_number, remote.date.date(), remote.total
        )
        if len(candidates) > 1:
            raise AmbiguousMatchError(
                f"Remote receipt {remote.id} matches {len(candidates)} local placeholders"
            )
        if not candidates:
            return None
        receipt = candidates[0]
        if bind:
            receipt.remote_id = remote.id
            logger.info(f"Bound local placeholder {receipt.id} to remote receipt {remote.id}")
        return receipt

    async def push_local_edits(self, receipt_id: str) -> Receipt:
        """Send a locally edited receipt to the server.

        The server copy replaces the local one only if the server really
        applied the edit (its subtotal agrees with ours). Otherwise the local
        edit stays and remains protected from the next sync.
        """
        receipt = await asyncio.to_thread(self.store.require, receipt_id)
        if not receipt.receipt_number:
            raise ValueError("Receipt number is required to push edits to the server")

        echoed = await self.client.update_receipt(
            receipt.receipt_number, build_update_request(receipt)
        )
        drift = abs(echoed.subtotal - pricing.to_money(receipt.subtotal))
        if drift > Decimal(self.settings.total_tolerance):
            logger.warning(
                f"Server ignored edits to receipt {receipt_id} (subtotal drift {drift}); "
                f"keeping local changes"
            )
            return receipt

        edited_at = receipt.locally_modified_at

        def _accept(session: Session) -> Receipt:
            current = session.get(Receipt, receipt_id)
            if current is None:
                return receipt
            if current.locally_modified_at != edited_at:
                logger.info(f"Receipt {receipt_id} was edited again during push; keeping it dirty")
                return current
            if current.remote_id is None:
                current.remote_id = echoed.id
            apply_remote_fields(session, current, echoed, echoed.fingerprint())
            return current

        return await asyncio.to_thread(self.store.write, _accept)
