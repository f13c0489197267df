import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, Boolean, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bazaarmkt.database import Base
from bazaarmkt.db_types import UUIDType, TZDateTime, utcnow


class User(Base):
    """Marketplace account, linked to a Stripe customer for saved cards."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    payment_methods: Mapped[List["UserPaymentMethod"]] = relationship(
        "UserPaymentMethod",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<User(email='{self.email}')>"


class UserPaymentMethod(Base):
    """Card summary mirrored from a Stripe PaymentMethod."""
    __tablename__ = "user_payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    stripe_payment_method_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(30), default="credit_card", nullable=False)
    brand: Mapped[str] = mapped_column(String(30), default="unknown", nullable=False)
    last4: Mapped[str] = mapped_column(String(4), default="0000", nullable=False)
    expiry_month: Mapped[int] = mapped_column(Integer, default=12, nullable=False)
    expiry_year: Mapped[int] = mapped_column(Integer, default=2030, nullable=False)
    cardholder_name: Mapped[str] = mapped_column(String(200), default="Cardholder", nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="payment_methods")


class Artisan(Base):
    """Seller profile. Payouts go to its Stripe Connect account."""
    __tablename__ = "artisans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    artisan_name: Mapped[str] = mapped_column(String(200), nullable=False)
    stripe_connect_account_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="acct_... used as the payout destination"
    )

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Artisan(name='{self.artisan_name}')>"
