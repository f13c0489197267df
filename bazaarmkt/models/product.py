import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from bazaarmkt.database import Base
from bazaarmkt.db_types import UUIDType, Money, TZDateTime, utcnow


class ProductType(str, Enum):
    """Fulfillment model; decides which quantity field is authoritative."""
    READY_TO_SHIP = "ready_to_ship"
    MADE_TO_ORDER = "made_to_order"
    SCHEDULED_ORDER = "scheduled_order"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"
    OUT_OF_STOCK = "out_of_stock"


# Quantity columns restored for each product type. The first entry is the
# one whose value decides whether the product is back in stock.
INVENTORY_FIELDS = {
    ProductType.READY_TO_SHIP.value: ("stock", "available_quantity"),
    ProductType.MADE_TO_ORDER.value: ("remaining_capacity",),
    ProductType.SCHEDULED_ORDER.value: ("available_quantity",),
}


class Product(Base):
    """Inventory-bearing catalog entry listed by an artisan."""
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_artisan_status", "artisan_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    artisan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=True,
        index=True
    )
    price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    product_type: Mapped[str] = mapped_column(
        String(30),
        default=ProductType.READY_TO_SHIP.value,
        nullable=False,
        comment="ready_to_ship, made_to_order, scheduled_order"
    )

    # Inventory
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    available_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_capacity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sold_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        default=ProductStatus.ACTIVE.value,
        nullable=False,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}', type='{self.product_type}', status='{self.status}')>"
