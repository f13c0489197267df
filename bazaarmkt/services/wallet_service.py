"""
Wallet ledger.

Balances live on ``wallets``; every change is also written to the
append-only ``wallet_transactions`` log. Balance changes are single SQL
statements so a concurrent credit can never be lost.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bazaarmkt.db_types import to_money, utcnow
from bazaarmkt.models.wallet import (
    Wallet,
    WalletTransaction,
    PayoutSchedule,
    TransactionType,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Invalid ledger operation."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class WalletConfigurationError(Exception):
    """Rejected payout settings."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class PayoutError(Exception):
    """A single wallet could not be paid out."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


VALID_SCHEDULES = tuple(s.value for s in PayoutSchedule)


@dataclass(frozen=True)
class WalletSnapshot:
    """Plain copy of the wallet columns a payout needs.

    Survives session rollbacks, unlike the ORM instance it was read from.
    """
    id: uuid.UUID
    artisan_id: uuid.UUID
    user_id: Optional[uuid.UUID]
    balance: Decimal
    currency: str
    payout_schedule: str
    next_payout_date: Optional[date]
    minimum_payout: Optional[Decimal]
    total_payouts: Decimal

    @classmethod
    def from_wallet(cls, wallet: Wallet) -> "WalletSnapshot":
        return cls(
            id=wallet.id,
            artisan_id=wallet.artisan_id,
            user_id=wallet.user_id,
            balance=to_money(wallet.balance),
            currency=wallet.currency,
            payout_schedule=wallet.payout_schedule,
            next_payout_date=wallet.next_payout_date,
            minimum_payout=(
                to_money(wallet.minimum_payout) if wallet.minimum_payout is not None else None
            ),
            total_payouts=to_money(wallet.total_payouts),
        )


def generate_reference(prefix: str, now: Optional[datetime] = None) -> str:
    """
    Build a human-auditable ledger reference: PREFIX-YYYYMMDD-<12 hex>.

    The random part keeps references unique for payouts created in the
    same instant.
    """
    now = now or utcnow()
    return f"{prefix}-{now:%Y%m%d}-{uuid.uuid4().hex[:12].upper()}"


def compute_next_payout_date(schedule: str, today: date) -> date:
    """
    Next payout date after a payout made on ``today``.

    weekly: seven days later. monthly: first day of the next month.
    """
    if schedule == PayoutSchedule.WEEKLY.value:
        return today + timedelta(days=7)
    if schedule == PayoutSchedule.MONTHLY.value:
        if today.month == 12:
            return date(today.year + 1, 1, 1)
        return date(today.year, today.month + 1, 1)
    raise WalletConfigurationError(
        f"Unknown payout schedule '{schedule}'",
        {"schedule": schedule, "allowed": list(VALID_SCHEDULES)}
    )


class WalletLedger:
    """Reads and writes wallet balances and their ledger entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_wallet(self, artisan_id: uuid.UUID) -> Optional[Wallet]:
        result = await self.db.execute(
            select(Wallet).where(Wallet.artisan_id == artisan_id)
        )
        return result.scalar_one_or_none()

    async def list_transactions(
        self,
        artisan_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[str] = None,
    ) -> List[WalletTransaction]:
        """Newest first."""
        query = select(WalletTransaction).where(WalletTransaction.artisan_id == artisan_id)
        if transaction_type:
            query = query.where(WalletTransaction.type == transaction_type)
        query = query.order_by(WalletTransaction.created_at.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def find_by_reference(self, reference: str) -> Optional[WalletTransaction]:
        result = await self.db.execute(
            select(WalletTransaction).where(WalletTransaction.reference == reference)
        )
        return result.scalar_one_or_none()

    async def find_by_stripe_payout(self, stripe_payout_id: str) -> Optional[WalletTransaction]:
        result = await self.db.execute(
            select(WalletTransaction).where(
                WalletTransaction.stripe_payout_id == stripe_payout_id,
                WalletTransaction.type == TransactionType.PAYOUT.value,
            )
        )
        return result.scalars().first()

    async def record(
        self,
        wallet_id: uuid.UUID,
        artisan_id: uuid.UUID,
        transaction_type: str,
        amount: Decimal,
        description: str,
        reference: str,
        balance_after: Optional[Decimal] = None,
        user_id: Optional[uuid.UUID] = None,
        status: str = TransactionStatus.COMPLETED.value,
        stripe_payout_id: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> WalletTransaction:
        """Append one ledger entry."""
        entry = WalletTransaction(
            wallet_id=wallet_id,
            artisan_id=artisan_id,
            user_id=user_id,
            type=transaction_type,
            amount=to_money(amount),
            description=description,
            status=status,
            reference=reference,
            balance_after=to_money(balance_after) if balance_after is not None else None,
            stripe_payout_id=stripe_payout_id,
            order_id=order_id,
            details=details or {},
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            f"Ledger {transaction_type} {entry.reference}: {entry.amount} "
            f"(artisan {artisan_id}, balance after {entry.balance_after})"
        )
        return entry

    async def attach_stripe_payout(self, entry: WalletTransaction, stripe_payout_id: str) -> None:
        """
        Link a payout entry to the Stripe payout that settled it.

        The only change a ledger row accepts: ``stripe_payout_id`` goes from
        empty to set, once.

        Raises:
            LedgerError: the entry already carries a Stripe payout
        """
        result = await self.db.execute(
            update(WalletTransaction)
            .where(
                WalletTransaction.id == entry.id,
                WalletTransaction.stripe_payout_id.is_(None),
            )
            .values(stripe_payout_id=stripe_payout_id)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise LedgerError(
                "Ledger entry already linked to a Stripe payout",
                {"reference": entry.reference, "stripe_payout_id": stripe_payout_id}
            )

    async def credit(
        self,
        artisan_id: uuid.UUID,
        amount: Decimal,
        description: str,
        reference: Optional[str] = None,
        transaction_type: str = TransactionType.CREDIT.value,
        order_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> WalletTransaction:
        """
        Add ``amount`` to an artisan's balance and log it.

        Raises:
            LedgerError: non-positive amount or no wallet for the artisan
        """
        amount = to_money(amount)
        if amount <= 0:
            raise LedgerError("Credit amount must be positive", {"amount": str(amount)})

        result = await self.db.execute(
            update(Wallet)
            .where(Wallet.artisan_id == artisan_id)
            .values(balance=Wallet.balance + amount, updated_at=utcnow())
            .returning(Wallet.id, Wallet.user_id, Wallet.balance)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            raise LedgerError("Wallet not found", {"artisan_id": str(artisan_id)})

        wallet_id, user_id, new_balance = row
        return await self.record(
            wallet_id=wallet_id,
            artisan_id=artisan_id,
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            reference=reference or generate_reference("CREDIT"),
            balance_after=new_balance,
            order_id=order_id,
            details=details,
        )

    async def drain_for_payout(
        self,
        snapshot: WalletSnapshot,
        next_payout_date: date,
        now: datetime,
        reference: Optional[str] = None,
    ) -> None:
        """
        Zero the balance, but only if it still equals the observed balance.

        Raises:
            PayoutError: the balance changed since it was read
        """
        result = await self.db.execute(
            update(Wallet)
            .where(Wallet.id == snapshot.id, Wallet.balance == snapshot.balance)
            .values(
                balance=Decimal("0"),
                last_payout_date=now,
                next_payout_date=next_payout_date,
                total_payouts=Wallet.total_payouts + snapshot.balance,
                last_payout_id=reference,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PayoutError(
                "Wallet balance changed during payout",
                {"wallet_id": str(snapshot.id), "observed_balance": str(snapshot.balance)}
            )

    async def configure_payouts(
        self,
        wallet: Wallet,
        schedule: Optional[str] = None,
        enabled: Optional[bool] = None,
        minimum_payout: Optional[Decimal] = None,
        next_payout_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> Wallet:
        """
        Change payout settings.

        A schedule change without an explicit date schedules the next payout
        from ``today``.

        Raises:
            WalletConfigurationError: unknown schedule or negative minimum
        """
        if schedule is not None:
            if schedule not in VALID_SCHEDULES:
                raise WalletConfigurationError(
                    f"Unknown payout schedule '{schedule}'",
                    {"schedule": schedule, "allowed": list(VALID_SCHEDULES)}
                )
            if schedule != wallet.payout_schedule and next_payout_date is None:
                next_payout_date = compute_next_payout_date(schedule, today or utcnow().date())
            wallet.payout_schedule = schedule

        if minimum_payout is not None:
            if minimum_payout < 0:
                raise WalletConfigurationError(
                    "Minimum payout cannot be negative",
                    {"minimum_payout": str(minimum_payout)}
                )
            wallet.minimum_payout = to_money(minimum_payout)

        if enabled is not None:
            wallet.payout_enabled = enabled
        if next_payout_date is not None:
            wallet.next_payout_date = next_payout_date

        await self.db.flush()
        logger.info(
            f"Payout settings for artisan {wallet.artisan_id}: "
            f"schedule={wallet.payout_schedule}, enabled={wallet.payout_enabled}, "
            f"minimum={wallet.minimum_payout}, next={wallet.next_payout_date}"
        )
        return wallet
