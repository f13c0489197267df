import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import String, Boolean, ForeignKey, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bazaarmkt.database import Base
from bazaarmkt.db_types import UUIDType, Money, TZDateTime, utcnow


class OrderStatus(str, Enum):
    """Fulfillment status."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    READY_FOR_DELIVERY = "ready_for_delivery"
    OUT_FOR_DELIVERY = "out_for_delivery"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"


class PaymentStatus(str, Enum):
    """Payment status, moves pending -> captured|failed|canceled -> refunded."""
    PENDING = "pending"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


# Source states from which each target payment status may be entered.
# Re-entering the current state is allowed so replays converge.
PAYMENT_TRANSITIONS = {
    PaymentStatus.CAPTURED: (PaymentStatus.PENDING, PaymentStatus.CAPTURED),
    PaymentStatus.FAILED: (PaymentStatus.PENDING, PaymentStatus.FAILED),
    PaymentStatus.CANCELED: (
        PaymentStatus.PENDING,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    ),
    PaymentStatus.REFUNDED: (
        PaymentStatus.CAPTURED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
        PaymentStatus.REFUNDED,
    ),
}


def allowed_sources(target: PaymentStatus) -> list[str]:
    return [status.value for status in PAYMENT_TRANSITIONS[target]]


class Order(Base):
    """
    One purchase transaction.
    Created at checkout; afterwards only webhook handlers and admin tooling
    move it between states. Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_payment_status', 'payment_status', 'created_at'),
        Index('ix_order_artisan_created', 'artisan_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_number: Mapped[Optional[str]] = mapped_column(
        String(30),
        unique=True,
        nullable=True,
        index=True
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    artisan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("artisans.id", ondelete="SET NULL"),
        nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)

    # Payment provider reference
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        index=True,
        comment="Stripe PaymentIntent id (pi_...)"
    )

    # Payment details
    captured_at: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
    amount_captured: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    # Set in the same statement that moves the order to failed/canceled
    inventory_restored: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="True once line-item quantities were returned to the catalog"
    )

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status='{self.status}', payment_status='{self.payment_status}')>"


class OrderItem(Base):
    """Order line item."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # No FK: products may be deleted while historical orders remain
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    product_type: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="Product fulfillment type at time of order"
    )
    unit_price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
