"""Pytest configuration and fixtures."""

from datetime import UTC, datetime
from decimal import Decimal

import httpx
import pytest
from fastapi import Body, FastAPI, File, UploadFile
from fastapi.responses import JSONResponse, Response

from priceadjust.config import Settings
from priceadjust.models import LineItem, Receipt
from priceadjust.services.events import EventBus
from priceadjust.services.remote import RemoteReceiptClient
from priceadjust.services.store import ReceiptStore
from priceadjust.services.sync import SyncCoordinator
from priceadjust.tracker import ReceiptTracker

REMOTE_BASE_URL = "http://remote.test/api"


class FakeReceiptService:
    """In-process stand-in for the remote receipt service."""

    def __init__(self) -> None:
        self.receipts: list[dict] = []
        self.uploads: list[tuple[str, bytes]] = []
        self.updates: list[dict] = []
        self.upload_status = 201
        self.upload_body: dict | None = None  # None -> empty body
        self.list_status = 200
        self.list_wrapped = True
        self.apply_updates = True
        self.adjustments: list[dict] = []
        self.sales: list[dict] = []
        self.dismissed: list[str] = []
        self.deleted: list[str] = []
        self.delete_status = 204
        self.app = self._build_app()

    def _build_app(self) -> FastAPI:
        app = FastAPI()

        @app.post("/api/receipts/upload/")
        async def upload(receipt_file: UploadFile = File(...)):
            self.uploads.append((receipt_file.filename, await receipt_file.read()))
            if self.upload_status >= 400:
                return JSONResponse({"detail": "rejected"}, status_code=self.upload_status)
            if self.upload_body is None:
                return Response(status_code=self.upload_status)
            return JSONResponse(self.upload_body, status_code=self.upload_status)

        @app.get("/api/receipts/")
        async def list_receipts():
            if self.list_status != 200:
                return JSONResponse({"detail": "unavailable"}, status_code=self.list_status)
            if self.list_wrapped:
                return {"receipts": self.receipts, "count": len(self.receipts)}
            return self.receipts

        @app.get("/api/receipts/{remote_id}/")
        async def get_receipt(remote_id: str):
            for record in self.receipts:
                if str(record.get("id")) == remote_id:
                    return record
            return JSONResponse({"detail": "not found"}, status_code=404)

        @app.put("/api/receipts/{receipt_number}/update/")
        async def update_receipt(receipt_number: str, body: dict = Body(...)):
            self.updates.append(body)
            record = next(r for r in self.receipts if r.get("receiptNumber") == receipt_number)
            if self.apply_updates:
                for key in ("subtotal", "tax", "total", "notes"):
                    if body.get(key) is not None:
                        record[key] = body[key]
            return record

        @app.delete("/api/receipts/{remote_id}/")
        async def delete_receipt(remote_id: str):
            if self.delete_status >= 400:
                return JSONResponse({"detail": "rejected"}, status_code=self.delete_status)
            record = next((r for r in self.receipts if str(r.get("id")) == remote_id), None)
            if record is None:
                return JSONResponse({"detail": "not found"}, status_code=404)
            self.receipts.remove(record)
            self.deleted.append(remote_id)
            return Response(status_code=204)

        @app.get("/api/price-adjustments/")
        async def price_adjustments():
            visible = [a for a in self.adjustments if str(a["item_code"]) not in self.dismissed]
            total = sum(float(a["price_difference"]) for a in visible)
            return {"adjustments": visible, "total_potential_savings": round(total, 2)}

        @app.post("/api/price-adjustments/dismiss/{item_code}/")
        async def dismiss(item_code: str):
            self.dismissed.append(item_code)
            return {"message": f"Dismissed {item_code}"}

        @app.get("/api/on-sale/")
        async def on_sale():
            return {
                "sales": self.sales,
                "total_count": len(self.sales),
                "active_promotions": [],
                "current_date": "2026-10-18",
                "last_updated": None,
            }

        return app

    def transport(self) -> httpx.AsyncBaseTransport:
        return httpx.ASGITransport(app=self.app)


def remote_receipt(**overrides) -> dict:
    """A remote receipt payload in the service's camelCase shape."""
    record = {
        "id": "r-1001",
        "receiptNumber": "21134300501862",
        "storeName": "Costco Wholesale",
        "storeLocation": "Mountain View, CA",
        "date": "2026-09-14T17:32:00Z",
        "subtotal": "99.97",
        "tax": "8.25",
        "total": "108.22",
        "notes": None,
        "lineItems": [
            {
                "id": 1,
                "name": "Kirkland Paper Towels",
                "price": "24.99",
                "quantity": 1,
                "itemCode": "1234567",
                "category": "Household",
                "orderIndex": 0,
                "onSale": False,
                "instantSavings": "0",
            },
            {
                "id": 2,
                "name": "Noise Cancelling Headphones",
                "price": "79.99",
                "quantity": 1,
                "itemCode": "7654321",
                "category": "Electronics",
                "orderIndex": 1,
                "onSale": True,
                "instantSavings": "5.00",
                "originalPrice": "79.99",
            },
        ],
    }
    record.update(overrides)
    return record


def price_adjustment(**overrides) -> dict:
    """A price adjustment record as the service reports it."""
    record = {
        "item_code": 7654321,
        "description": "Noise Cancelling Headphones",
        "current_price": "79.99",
        "lower_price": "64.99",
        "price_difference": "15.00",
        "store_location": "Mountain View, CA",
        "store_number": "143",
        "purchase_date": "2026-09-14",
        "days_remaining": 26,
        "original_store": "Mountain View",
        "data_source": "official_promo",
        "is_official": True,
        "promotion_title": "October Savings",
        "sale_type": "instant_rebate",
        "location_context": {
            "type": "nationwide",
            "description": "Valid at all warehouses",
            "store_specific": False,
        },
    }
    record.update(overrides)
    return record


def make_receipt(
    total: str = "10.00",
    purchase_date: datetime | None = None,
    store_name: str | None = "Costco Wholesale",
    items: list[LineItem] | None = None,
    **kwargs,
) -> Receipt:
    """A transient receipt for pure-function tests."""
    total = Decimal(total)
    receipt = Receipt(
        store_name=store_name,
        purchase_date=purchase_date or datetime(2026, 10, 1, 12, 0, tzinfo=UTC),
        subtotal=kwargs.pop("subtotal", total),
        tax=kwargs.pop("tax", Decimal("0")),
        total=total,
        **kwargs,
    )
    for index, item in enumerate(items or []):
        item.order_index = index
        receipt.line_items.append(item)
    return receipt


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway database and the fake service."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'receipts.db'}",
        remote_base_url=REMOTE_BASE_URL,
        remote_timeout_seconds=5.0,
        environment="test",
        _env_file=None,
    )


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def store(settings, events):
    """A fresh local store per test."""
    receipt_store = ReceiptStore(settings.database_url, events=events)
    yield receipt_store
    receipt_store.close()


@pytest.fixture
def fake_service():
    return FakeReceiptService()


@pytest.fixture
def client(settings, fake_service):
    return RemoteReceiptClient(settings, transport=fake_service.transport())


@pytest.fixture
def coordinator(store, client, settings):
    return SyncCoordinator(store, client, settings)


@pytest.fixture
def tracker(store, client, settings):
    return ReceiptTracker(store, client, settings)
