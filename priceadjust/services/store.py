"""Local receipt store.

Every read and write of the local database goes through one ReceiptStore
instance. Writes are serialized behind a single writer lock, so callers on
any thread or asyncio worker never need their own locking.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import StrEnum
from pathlib import Path
from threading import Lock
from typing import TypeVar

from sqlalchemy import func, or_, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from priceadjust.database import create_session_factory, create_store_engine, init_db
from priceadjust.exceptions import (
    PersistenceFailedError,
    ReceiptNotFoundError,
    StoreInitializationError,
)
from priceadjust.models.line_item import LineItem
from priceadjust.models.mixins import as_utc
from priceadjust.models.receipt import Receipt
from priceadjust.services import pricing
from priceadjust.services.analytics import DateWindow
from priceadjust.services.events import EventBus, StoreEventType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SortOrder(StrEnum):
    """Receipt list orderings."""

    DATE_NEWEST = "date_newest"
    DATE_OLDEST = "date_oldest"
    TOTAL_HIGHEST = "total_highest"
    TOTAL_LOWEST = "total_lowest"
    STORE_NAME = "store_name"


_ORDERINGS = {
    SortOrder.DATE_NEWEST: (Receipt.purchase_date.desc(),),
    SortOrder.DATE_OLDEST: (Receipt.purchase_date.asc(),),
    SortOrder.TOTAL_HIGHEST: (Receipt.total.desc(), Receipt.purchase_date.desc()),
    SortOrder.TOTAL_LOWEST: (Receipt.total.asc(), Receipt.purchase_date.desc()),
    SortOrder.STORE_NAME: (func.lower(Receipt.store_name).asc(), Receipt.purchase_date.desc()),
}


@dataclass(frozen=True)
class ReceiptFilter:
    """Criteria for ReceiptStore.query."""

    window: DateWindow | None = None
    search: str | None = None  # store name, receipt number or notes
    status: str | None = None
    store_name: str | None = None
    sort: SortOrder = SortOrder.DATE_NEWEST


class _CorruptStore(Exception):
    """Integrity check reported damage."""


def replace_line_items_in(session: Session, receipt: Receipt, items: Sequence[LineItem]) -> None:
    """Swap a receipt's whole line item collection for new copies of ``items``.

    The list order becomes the order index. Runs inside the caller's
    transaction so the receipt-level change and the items commit together.
    """
    receipt.line_items.clear()
    session.flush()
    for index, item in enumerate(items):
        receipt.line_items.append(item.copy_for(receipt.id, order_index=index))
    session.flush()


def find_by_remote_id(session: Session, remote_id: str) -> Receipt | None:
    return session.scalars(select(Receipt).where(Receipt.remote_id == remote_id)).first()


def find_placeholders(
    session: Session, receipt_number: str | None, purchased_on: date, total: Decimal
) -> list[Receipt]:
    """Local receipts without a server id that look like the given remote receipt.

    All three of receipt number, purchase day and total must agree; a shared
    date and total alone never count as a match.
    """
    if not receipt_number:
        return []
    candidates = session.scalars(
        select(Receipt).where(
            Receipt.remote_id.is_(None),
            Receipt.receipt_number == receipt_number,
        )
    ).all()
    total = pricing.to_money(total)
    return [
        receipt
        for receipt in candidates
        if as_utc(receipt.purchase_date).date() == purchased_on
        and pricing.to_money(receipt.total) == total
    ]


class ReceiptStore:
    """Transactional store for receipts and their line items."""

    def __init__(self, database_url: str, events: EventBus | None = None) -> None:
        self.database_url = database_url
        self.events = events or EventBus()
        self._write_lock = Lock()
        self.engine = self._open()
        self._session_factory = create_session_factory(self.engine)

    # ---------- lifecycle ----------

    def _database_path(self) -> Path | None:
        url = make_url(self.database_url)
        if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
            return None
        return Path(url.database)

    @staticmethod
    def _initialize(engine: Engine) -> None:
        init_db(engine)
        with engine.connect() as conn:
            if engine.dialect.name == "sqlite":
                result = conn.execute(text("PRAGMA quick_check")).scalar()
                if result != "ok":
                    raise _CorruptStore(result)
            conn.execute(select(func.count()).select_from(Receipt.__table__))

    def _open(self) -> Engine:
        engine = create_store_engine(self.database_url)
        try:
            self._initialize(engine)
            return engine
        except (SQLAlchemyError, _CorruptStore) as e:
            engine.dispose()
            path = self._database_path()
            if path is None:
                raise StoreInitializationError(f"Local store could not be opened: {e}") from e
            logger.error(
                f"Local store at {path} is unreadable ({e}); deleting it and starting "
                f"with an empty store. All local receipts are lost."
            )
            self._remove_files(path)

        engine = create_store_engine(self.database_url)
        try:
            self._initialize(engine)
        except (SQLAlchemyError, _CorruptStore) as e:
            engine.dispose()
            raise StoreInitializationError(f"Recreated local store is unusable: {e}") from e
        logger.warning(f"Recreated empty local store at {path}")
        self.events.publish(StoreEventType.STORE_RECREATED, {"path": str(path)})
        return engine

    @staticmethod
    def _remove_files(path: Path) -> None:
        for candidate in (path, *(path.with_name(path.name + s) for s in ("-wal", "-shm", "-journal"))):
            try:
                candidate.unlink(missing_ok=True)
            except OSError as e:
                raise StoreInitializationError(f"Could not delete corrupted store {candidate}: {e}") from e

    def close(self) -> None:
        self.engine.dispose()

    # ---------- transactions ----------

    def write(self, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` in one transaction under the writer lock.

        A database failure rolls the transaction back and runs ``fn`` once
        more on a fresh session. If that fails too, a PERSISTENCE_FAILED
        event is published and PersistenceFailedError raised. Other
        exceptions from ``fn`` roll back and propagate unchanged.
        """
        with self._write_lock:
            try:
                return self._run_once(fn)
            except SQLAlchemyError as e:
                logger.warning(f"Local store write failed, rolled back and retrying: {e}")

            try:
                return self._run_once(fn)
            except SQLAlchemyError as e:
                logger.error(f"Local store write failed after retry: {e}")
                self.events.publish(StoreEventType.PERSISTENCE_FAILED, {"error": str(e)})
                raise PersistenceFailedError(f"Local write failed after retry: {e}") from e

    def _run_once(self, fn: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            result = fn(session)
            session.commit()
            return result
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # ---------- writes ----------

    def save(self, receipt: Receipt, *, mark_edited: bool = True) -> Receipt:
        """Insert or update a receipt with its line items.

        User saves set the dirty flag so the next sync leaves the edit
        alone. Returns the stored copy.
        """

        def _save(session: Session) -> Receipt:
            merged = session.merge(receipt)
            if mark_edited:
                merged.mark_edited()
            else:
                merged.touch()
            session.flush()
            return merged

        return self.write(_save)

    def replace_line_items(
        self, receipt_id: str, items: Sequence[LineItem], *, mark_edited: bool = True
    ) -> Receipt:
        """Replace every line item of a receipt in one transaction."""

        def _replace(session: Session) -> Receipt:
            receipt = session.get(Receipt, receipt_id)
            if receipt is None:
                raise ReceiptNotFoundError(receipt_id)
            replace_line_items_in(session, receipt, items)
            if mark_edited:
                receipt.mark_edited()
            else:
                receipt.touch()
            return receipt

        return self.write(_replace)

    def delete(self, receipt_id: str) -> None:
        """Delete a receipt locally. The remote copy is not touched."""

        def _delete(session: Session) -> None:
            receipt = session.get(Receipt, receipt_id)
            if receipt is None:
                raise ReceiptNotFoundError(receipt_id)
            session.delete(receipt)

        self.write(_delete)
        logger.info(f"Deleted local receipt {receipt_id}")

    def clear(self) -> int:
        """Delete every local receipt. Returns how many were removed."""

        def _clear(session: Session) -> int:
            receipts = session.scalars(select(Receipt)).all()
            for receipt in receipts:
                session.delete(receipt)
            return len(receipts)

        count = self.write(_clear)
        logger.info(f"Cleared {count} local receipt(s)")
        return count

    # ---------- reads ----------

    def get(self, receipt_id: str) -> Receipt | None:
        with self._session_factory() as session:
            return session.get(Receipt, receipt_id)

    def require(self, receipt_id: str) -> Receipt:
        receipt = self.get(receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(receipt_id)
        return receipt

    def query(self, receipt_filter: ReceiptFilter | None = None) -> list[Receipt]:
        """List receipts matching the filter, newest first by default."""
        receipt_filter = receipt_filter or ReceiptFilter()
        stmt = select(Receipt)

        window = receipt_filter.window
        if window is not None:
            stmt = stmt.where(
                Receipt.purchase_date >= window.start, Receipt.purchase_date <= window.end
            )
        if receipt_filter.search:
            pattern = f"%{receipt_filter.search.strip()}%"
            stmt = stmt.where(
                or_(
                    Receipt.store_name.ilike(pattern),
                    Receipt.receipt_number.ilike(pattern),
                    Receipt.notes.ilike(pattern),
                )
            )
        if receipt_filter.status:
            stmt = stmt.where(Receipt.status == receipt_filter.status)
        if receipt_filter.store_name:
            stmt = stmt.where(func.lower(Receipt.store_name) == receipt_filter.store_name.lower())

        stmt = stmt.order_by(*_ORDERINGS[receipt_filter.sort], Receipt.id)
        with self._session_factory() as session:
            return list(session.scalars(stmt).all())

    def remote_ids(self) -> set[str]:
        """Server ids of every local receipt bound to a server record."""
        with self._session_factory() as session:
            return set(
                session.scalars(select(Receipt.remote_id).where(Receipt.remote_id.is_not(None)))
            )

    def count(self) -> int:
        with self._session_factory() as session:
            return session.scalar(select(func.count()).select_from(Receipt)) or 0
