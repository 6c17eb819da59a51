"""Tests for the local receipt store."""

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from priceadjust.exceptions import PersistenceFailedError, ReceiptNotFoundError
from priceadjust.models import LineItem, Receipt
from priceadjust.services.analytics import DateWindow
from priceadjust.services.events import EventBus, StoreEventType
from priceadjust.services.store import ReceiptFilter, ReceiptStore, SortOrder
from tests.conftest import make_receipt


def line_item_count(store: ReceiptStore) -> int:
    with Session(store.engine) as session:
        return session.scalar(select(func.count()).select_from(LineItem))


class TestSaveAndGet:
    """Tests for inserting and reading receipts."""

    def test_round_trip_with_line_items(self, store):
        """Test that a saved receipt comes back with ordered items and exact money."""
        receipt = make_receipt(
            total="108.22",
            subtotal=Decimal("99.97"),
            tax=Decimal("8.25"),
            receipt_number="21134300501862",
            items=[
                LineItem(name="Paper Towels", price=Decimal("24.99")),
                LineItem(name="Headphones", price=Decimal("79.99"), on_sale=True, instant_savings="5.00"),
            ],
        )

        store.save(receipt)
        loaded = store.get(receipt.id)

        assert loaded.total == Decimal("108.22")
        assert [item.name for item in loaded.line_items] == ["Paper Towels", "Headphones"]
        assert loaded.line_items[1].effective_price == Decimal("74.99")
        assert loaded.purchase_date.tzinfo is not None

    def test_save_marks_edit_by_default(self, store):
        """Test that a user save protects the receipt from the next sync."""
        receipt = store.save(make_receipt())

        assert receipt.has_local_edits is True
        assert store.get(receipt.id).locally_modified_at is not None

    def test_save_without_marking(self, store):
        """Test that an internal save leaves the dirty flag alone."""
        receipt = store.save(make_receipt(), mark_edited=False)

        assert store.get(receipt.id).has_local_edits is False

    def test_update_existing(self, store):
        """Test that saving a loaded receipt updates it in place."""
        receipt = store.save(make_receipt(notes=None), mark_edited=False)

        loaded = store.get(receipt.id)
        loaded.notes = "Price adjustment requested"
        store.save(loaded)

        assert store.count() == 1
        assert store.get(receipt.id).notes == "Price adjustment requested"

    def test_require_missing_raises(self, store):
        """Test that require() raises for an unknown id."""
        with pytest.raises(ReceiptNotFoundError):
            store.require("no-such-receipt")

        assert store.get("no-such-receipt") is None

    def test_in_memory_store(self):
        """Test that an in-memory store keeps data across sessions."""
        memory_store = ReceiptStore("sqlite:///:memory:")
        try:
            memory_store.save(make_receipt())
            assert memory_store.count() == 1
        finally:
            memory_store.close()


class TestLineItems:
    """Tests for wholesale line item replacement."""

    def test_replace_swaps_every_item(self, store):
        """Test that replacement leaves exactly the new items in the new order."""
        receipt = store.save(
            make_receipt(items=[LineItem(name="Old 1", price="1.00"), LineItem(name="Old 2", price="2.00")])
        )

        updated = store.replace_line_items(
            receipt.id,
            [LineItem(name="New B", price="5.00", order_index=9), LineItem(name="New A", price="4.00")],
        )

        assert [item.name for item in updated.line_items] == ["New B", "New A"]
        assert [item.order_index for item in updated.line_items] == [0, 1]
        assert line_item_count(store) == 2
        assert updated.has_local_edits is True

    def test_replace_with_existing_items_keeps_ids(self, store):
        """Test that reordering a receipt's own items keeps their ids."""
        receipt = store.save(
            make_receipt(items=[LineItem(name="First", price="1.00"), LineItem(name="Second", price="2.00")])
        )
        first, second = store.get(receipt.id).line_items

        updated = store.replace_line_items(receipt.id, [second, first])

        assert [item.id for item in updated.line_items] == [second.id, first.id]

    def test_replace_unknown_receipt(self, store):
        """Test that replacing items of a missing receipt fails cleanly."""
        with pytest.raises(ReceiptNotFoundError):
            store.replace_line_items("missing", [LineItem(name="X", price="1.00")])


class TestDelete:
    """Tests for deletion."""

    def test_delete_cascades_to_items(self, store):
        """Test that deleting a receipt removes its line items."""
        receipt = store.save(make_receipt(items=[LineItem(name="Milk", price="4.99")]))

        store.delete(receipt.id)

        assert store.get(receipt.id) is None
        assert line_item_count(store) == 0

    def test_delete_missing_raises(self, store):
        """Test that deleting an unknown receipt raises."""
        with pytest.raises(ReceiptNotFoundError):
            store.delete("missing")

    def test_clear(self, store):
        """Test that clear() empties the store."""
        store.save(make_receipt())
        store.save(make_receipt())

        assert store.clear() == 2
        assert store.count() == 0


class TestQuery:
    """Tests for filtered and sorted listing."""

    @pytest.fixture
    def populated(self, store):
        store.save(
            make_receipt(
                total="50.00",
                store_name="Costco Wholesale",
                purchase_date=datetime(2026, 9, 1, 10, 0, tzinfo=UTC),
            )
        )
        store.save(
            make_receipt(
                total="120.00",
                store_name="Trader Joe's",
                purchase_date=datetime(2026, 9, 15, 10, 0, tzinfo=UTC),
                notes="birthday party",
            )
        )
        store.save(
            make_receipt(
                total="75.00",
                store_name="costco business center",
                purchase_date=datetime(2026, 10, 1, 10, 0, tzinfo=UTC),
            )
        )
        return store

    def test_default_sort_newest_first(self, populated):
        """Test the default ordering."""
        totals = [r.total for r in populated.query()]

        assert totals == [Decimal("75.00"), Decimal("120.00"), Decimal("50.00")]

    def test_sort_by_total(self, populated):
        """Test highest-total ordering."""
        receipts = populated.query(ReceiptFilter(sort=SortOrder.TOTAL_HIGHEST))

        assert [r.total for r in receipts] == [Decimal("120.00"), Decimal("75.00"), Decimal("50.00")]

    def test_search_is_case_insensitive(self, populated):
        """Test that search matches store names regardless of case."""
        receipts = populated.query(ReceiptFilter(search="COSTCO"))

        assert len(receipts) == 2

    def test_search_matches_notes(self, populated):
        """Test that notes are searched too."""
        receipts = populated.query(ReceiptFilter(search="birthday"))

        assert [r.store_name for r in receipts] == ["Trader Joe's"]

    def test_window_is_inclusive(self, populated):
        """Test that receipts exactly on the window edges are included."""
        window = DateWindow(
            datetime(2026, 9, 1, 10, 0, tzinfo=UTC), datetime(2026, 9, 15, 10, 0, tzinfo=UTC)
        )

        receipts = populated.query(ReceiptFilter(window=window))

        assert len(receipts) == 2

    def test_store_name_filter(self, populated):
        """Test exact, case-insensitive store filtering."""
        receipts = populated.query(ReceiptFilter(store_name="trader joe's"))

        assert len(receipts) == 1


class TestWriteFailures:
    """Tests for rollback, retry and persistence failure reporting."""

    def test_retry_once_then_succeed(self, store):
        """Test that a transient failure is retried on a fresh transaction."""
        calls = []

        def flaky(session):
            calls.append(1)
            session.add(Receipt(id="receipt-1", total="10.00"))
            if len(calls) == 1:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return "ok"

        assert store.write(flaky) == "ok"
        assert len(calls) == 2
        assert store.count() == 1

    def test_second_failure_raises_and_publishes(self, store, events):
        """Test that a write failing twice surfaces PersistenceFailedError and an event."""
        received = []
        events.subscribe(received.append)

        def broken(session):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        with pytest.raises(PersistenceFailedError):
            store.write(broken)

        assert [event.type for event in received] == [StoreEventType.PERSISTENCE_FAILED]
        assert "disk I/O error" in received[0].data["error"]

    def test_constraint_violation_rolls_back(self, store):
        """Test that a rejected write leaves nothing behind."""
        receipt = make_receipt(items=[LineItem(name="Nothing", price="1.00", quantity=0)])

        with pytest.raises(PersistenceFailedError):
            store.save(receipt)

        assert store.count() == 0
        assert line_item_count(store) == 0

    def test_other_errors_are_not_retried(self, store):
        """Test that non-database errors propagate after one attempt."""
        calls = []

        def failing(session):
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            store.write(failing)

        assert len(calls) == 1

    def test_concurrent_writers(self, store):
        """Test that writes from many threads are serialized without loss."""
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: store.save(make_receipt()), range(20)))

        assert store.count() == 20


class TestRecovery:
    """Tests for corrupted store recovery."""

    def test_corrupted_file_is_recreated(self, tmp_path):
        """Test that an unreadable database is replaced by an empty one."""
        path = tmp_path / "corrupt.db"
        path.write_bytes(b"this is definitely not a sqlite database " * 64)
        events = EventBus()
        received = []
        events.subscribe(received.append)

        store = ReceiptStore(f"sqlite:///{path}", events=events)
        try:
            assert store.count() == 0
            store.save(make_receipt())
            assert store.count() == 1
        finally:
            store.close()

        assert [event.type for event in received] == [StoreEventType.STORE_RECREATED]
        assert received[0].data["path"] == str(path)

    def test_healthy_file_is_kept(self, settings):
        """Test that reopening a good store keeps its data and publishes nothing."""
        first = ReceiptStore(settings.database_url)
        first.save(make_receipt())
        first.close()

        events = EventBus()
        received = []
        events.subscribe(received.append)
        second = ReceiptStore(settings.database_url, events=events)
        try:
            assert second.count() == 1
        finally:
            second.close()

        assert received == []
