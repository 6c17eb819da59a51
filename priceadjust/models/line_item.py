"""LineItem model."""

import uuid
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from priceadjust.database import Base
from priceadjust.services import pricing

# Namespace for line item ids derived from server ids
LINE_ITEM_NAMESPACE = uuid.UUID("6f1c3b1e-8a2d-4f5e-9b7a-2c4d6e8f0a1b")


def new_id() -> str:
    return str(uuid.uuid4())


def line_item_id(receipt_id: str, remote_id: str | None) -> str:
    """Id for a line item, stable across sync cycles when the server id is known."""
    if remote_id is None:
        return new_id()
    return str(uuid.uuid5(LINE_ITEM_NAMESPACE, f"{receipt_id}/{remote_id}"))


class LineItem(Base):
    """One purchased product line within a receipt."""

    __tablename__ = "line_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_line_items_quantity_positive"),)

    id = Column(String(36), primary_key=True, default=new_id)
    receipt_id = Column(
        String(36), ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    remote_id = Column(String(64), nullable=True)
    name = Column(String(500), nullable=False)
    # Receipt-printed price, always the pre-discount amount
    price = Column(Numeric(12, 2, asdecimal=True), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    item_code = Column(String(64), nullable=True)
    category = Column(String(100), nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    on_sale = Column(Boolean, nullable=False, default=False)
    instant_savings = Column(Numeric(12, 2, asdecimal=True), nullable=False, default=Decimal("0"))
    original_price = Column(Numeric(12, 2, asdecimal=True), nullable=True)

    # Relationships
    receipt = relationship("Receipt", back_populates="line_items")

    def __init__(self, **kwargs):
        kwargs.setdefault("id", new_id())
        kwargs.setdefault("quantity", 1)
        kwargs.setdefault("order_index", 0)
        kwargs.setdefault("on_sale", False)
        kwargs["instant_savings"] = pricing.to_money(kwargs.get("instant_savings") or 0)
        if "price" in kwargs:
            kwargs["price"] = pricing.to_money(kwargs["price"])
        if kwargs.get("original_price") is None and "price" in kwargs:
            kwargs["original_price"] = kwargs["price"]
        super().__init__(**kwargs)

    @property
    def is_on_sale(self) -> bool:
        return pricing.is_on_sale(self.on_sale, self.instant_savings)

    @property
    def effective_price(self) -> Decimal:
        """Price actually paid per unit after instant savings."""
        return pricing.effective_price(self.price, self.on_sale, self.instant_savings)

    @property
    def line_total(self) -> Decimal:
        return pricing.line_total(self.price, self.quantity, self.on_sale, self.instant_savings)

    def copy_for(self, receipt_id: str, order_index: int | None = None) -> "LineItem":
        """Fresh copy of this item owned by the given receipt.

        Items never move between receipts: a copy for another receipt gets a
        new id unless the server id pins it.
        """
        if self.remote_id is not None:
            item_id = line_item_id(receipt_id, self.remote_id)
        elif self.id and self.receipt_id in (None, receipt_id):
            item_id = self.id
        else:
            item_id = new_id()
        return LineItem(
            id=item_id,
            receipt_id=receipt_id,
            remote_id=self.remote_id,
            name=self.name,
            price=self.price,
            quantity=self.quantity,
            item_code=self.item_code,
            category=self.category,
            order_index=self.order_index if order_index is None else order_index,
            on_sale=self.on_sale,
            instant_savings=self.instant_savings,
            original_price=self.original_price,
        )

    def __repr__(self) -> str:
        return f"<LineItem {self.name!r} x{self.quantity} @ {self.price}>"
