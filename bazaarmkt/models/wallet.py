import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, Date, ForeignKey, Text, Index, CheckConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from bazaarmkt.config import settings
from bazaarmkt.database import Base
from bazaarmkt.db_types import UUIDType, JSONType, Money, TZDateTime, utcnow


class PayoutSchedule(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TransactionType(str, Enum):
    CREDIT = "credit"
    PAYOUT = "payout"
    PAYOUT_REVERSAL = "payout_reversal"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Wallet(Base):
    """
    Payout-eligible balance of one artisan.
    Credited by revenue allocation, drained to zero by the payout sweep.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        Index("ix_wallets_payout_due", "payout_enabled", "next_payout_date"),
        CheckConstraint(
            "payout_schedule IN ('weekly', 'monthly')",
            name="ck_wallets_payout_schedule"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    artisan_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("artisans.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3),
        default=lambda: settings.PAYOUT_CURRENCY,
        nullable=False
    )

    # Payout settings
    payout_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    payout_schedule: Mapped[str] = mapped_column(
        String(20),
        default=PayoutSchedule.WEEKLY.value,
        nullable=False
    )
    next_payout_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_payout_date: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
    minimum_payout: Mapped[Optional[Decimal]] = mapped_column(
        Money,
        nullable=True,
        comment="Overrides the platform minimum when set"
    )

    # Metadata
    total_payouts: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    last_payout_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Wallet(artisan_id={self.artisan_id}, balance={self.balance})>"


class WalletTransaction(Base):
    """
    Immutable ledger entry. Rows are inserted once and never changed;
    corrections are new entries (e.g. payout_reversal).
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        Index("ix_wallet_transactions_artisan_created", "artisan_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("wallets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    artisan_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        comment="Negative for outgoing"
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=TransactionStatus.COMPLETED.value,
        nullable=False
    )
    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    balance_after: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    stripe_payout_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    details: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<WalletTransaction(reference='{self.reference}', amount={self.amount})>"


class LedgerImmutableError(Exception):
    """Raised when code tries to change or remove a ledger entry."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@event.listens_for(WalletTransaction, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(
        "Wallet transactions are append-only",
        {"reference": target.reference}
    )


@event.listens_for(WalletTransaction, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(
        "Wallet transactions cannot be deleted",
        {"reference": target.reference}
    )
