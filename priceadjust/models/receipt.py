"""Receipt model."""

from decimal import Decimal

from sqlalchemy import Boolean, Column, Integer, LargeBinary, Numeric, String, Text
from sqlalchemy.orm import relationship, validates

from priceadjust.database import Base
from priceadjust.models.enums import ProcessingStatus
from priceadjust.models.line_item import LineItem, new_id
from priceadjust.models.mixins import TimestampMixin, UTCDateTime, utcnow
from priceadjust.services import pricing


class Receipt(Base, TimestampMixin):
    """One purchase transaction with totals and ordered line items."""

    __tablename__ = "receipts"

    id = Column(String(36), primary_key=True, default=new_id)
    remote_id = Column(String(64), nullable=True, unique=True, index=True)  # server-assigned
    receipt_number = Column(String(64), nullable=True, index=True)  # server-issued, immutable
    store_name = Column(String(255), nullable=True)
    store_location = Column(String(255), nullable=True)
    purchase_date = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    subtotal = Column(Numeric(12, 2, asdecimal=True), nullable=False, default=Decimal("0"))
    tax = Column(Numeric(12, 2, asdecimal=True), nullable=False, default=Decimal("0"))
    total = Column(Numeric(12, 2, asdecimal=True), nullable=False, default=Decimal("0"))
    notes = Column(Text, nullable=True)
    status = Column(
        String(20), nullable=False, default=ProcessingStatus.PENDING.value
    )  # pending, processing, completed, failed

    # Uploaded file, kept only until the server has processed it
    raw_blob = Column(LargeBinary, nullable=True)
    raw_blob_name = Column(String(255), nullable=True)

    # Sync bookkeeping
    has_local_edits = Column(Boolean, nullable=False, default=False)
    locally_modified_at = Column(UTCDateTime, nullable=True)
    last_synced_at = Column(UTCDateTime, nullable=True)
    remote_fingerprint = Column(String(64), nullable=True)
    sync_version = Column(Integer, nullable=False, default=0)

    # Relationships
    line_items = relationship(
        "LineItem",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="LineItem.order_index",
        lazy="selectin",
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("id", new_id())
        kwargs.setdefault("status", ProcessingStatus.PENDING.value)
        kwargs.setdefault("has_local_edits", False)
        kwargs.setdefault("sync_version", 0)
        kwargs.setdefault("purchase_date", utcnow())
        now = utcnow()
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", now)
        for field in ("subtotal", "tax", "total"):
            kwargs[field] = pricing.to_money(kwargs.get(field) or 0)
        super().__init__(**kwargs)

    @validates("receipt_number")
    def validate_receipt_number(self, key: str, value: str | None) -> str | None:
        """Receipt numbers are issued by the server and never change once set."""
        current = self.receipt_number
        if current and value != current:
            raise ValueError(f"receipt_number is immutable (have {current!r}, got {value!r})")
        return value

    @property
    def processing_status(self) -> ProcessingStatus:
        return ProcessingStatus(self.status)

    @property
    def is_placeholder(self) -> bool:
        """Created locally and not yet bound to a server record."""
        return self.remote_id is None

    @property
    def computed_total(self) -> Decimal:
        return pricing.to_money(self.subtotal) + pricing.to_money(self.tax)

    def totals_consistent(self, tolerance: Decimal = pricing.DEFAULT_TOLERANCE) -> bool:
        """Check total against subtotal + tax within tolerance."""
        return abs(pricing.to_money(self.total) - self.computed_total) <= tolerance

    @property
    def total_savings(self) -> Decimal:
        return pricing.total_savings(self.line_items)

    def mark_edited(self) -> None:
        """Flag a user edit the server does not know about yet."""
        now = utcnow()
        self.has_local_edits = True
        self.locally_modified_at = now
        self.updated_at = now

    def __repr__(self) -> str:
        return f"<Receipt {self.id} {self.store_name!r} total={self.total}>"
