"""
Payout Scheduler - sweeps wallets that are due and pays them out.

Per wallet:
1. Re-check the effective minimum (wallet override, else platform minimum)
2. Compute the next payout date from the schedule
3. Zero the balance with a compare-and-swap update
4. Append a ``payout`` ledger entry
5. Optionally send the money through Stripe Connect, keyed on the wallet
   and the payout date being settled so a retried run reuses the payout

Each wallet commits or rolls back on its own; one failure never aborts the
batch. A lease row in ``scheduler_locks`` keeps two runs from overlapping.
"""
import logging
import socket
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bazaarmkt.config import settings
from bazaarmkt.db_types import utcnow
from bazaarmkt.models.scheduler_lock import SchedulerLock
from bazaarmkt.models.user import Artisan
from bazaarmkt.models.wallet import Wallet, TransactionType, TransactionStatus
from bazaarmkt.services.cache_service import CacheBackend
from bazaarmkt.services.platform_settings_service import PlatformSettingsService
from bazaarmkt.services.stripe_service import StripeService
from bazaarmkt.services.wallet_service import (
    PayoutError,
    WalletLedger,
    WalletSnapshot,
    compute_next_payout_date,
    generate_reference,
)

logger = logging.getLogger(__name__)

PAYOUT_LOCK_NAME = "payout_run"


class PayoutRunInProgressError(Exception):
    """Another payout run holds the lock."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class PayoutGateway(Protocol):
    """Moves money to an artisan's bank account."""

    async def get_account_status(self, account_id: str) -> Dict[str, Any]:
        ...

    async def create_payout(
        self,
        account_id: str,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


def payout_idempotency_key(wallet: WalletSnapshot) -> str:
    """Same key for every attempt at paying one wallet for one payout date."""
    return f"payout-{wallet.id}-{wallet.next_payout_date.isoformat()}"


class RunLock:
    """
    Lease on a ``scheduler_locks`` row.

    The lease expires on its own after ``ttl_seconds`` so a crashed run
    cannot block payouts forever.
    """

    def __init__(self, db: AsyncSession, name: str, ttl_seconds: int, owner: Optional[str] = None):
        self.db = db
        self.name = name
        self.ttl = timedelta(seconds=ttl_seconds)
        self.owner = owner or f"{socket.gethostname()}:{uuid.uuid4().hex[:8]}"

    async def acquire(self, now: datetime) -> bool:
        result = await self.db.execute(
            update(SchedulerLock)
            .where(
                SchedulerLock.name == self.name,
                or_(SchedulerLock.locked_until.is_(None), SchedulerLock.locked_until < now),
            )
            .values(owner=self.owner, locked_until=now + self.ttl)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await self.db.commit()
            logger.info(f"Lock {self.name} acquired by {self.owner}")
            return True

        exists = await self.db.scalar(
            select(SchedulerLock.name).where(SchedulerLock.name == self.name)
        )
        if exists is not None:
            await self.db.rollback()
            return False

        self.db.add(SchedulerLock(name=self.name, owner=self.owner, locked_until=now + self.ttl))
        try:
            await self.db.commit()
        except IntegrityError:
            # Another process created the row first
            await self.db.rollback()
            return False
        logger.info(f"Lock {self.name} created and acquired by {self.owner}")
        return True

    async def release(self) -> None:
        await self.db.rollback()
        await self.db.execute(
            update(SchedulerLock)
            .where(SchedulerLock.name == self.name, SchedulerLock.owner == self.owner)
            .values(owner=None, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(f"Lock {self.name} released by {self.owner}")


class PayoutScheduler:
    """Pays out every wallet that is due."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheBackend] = None,
        gateway: Optional[PayoutGateway] = None,
        app_settings=None,
    ):
        self.db = db
        self.app_settings = app_settings or settings
        self.ledger = WalletLedger(db)
        self.platform_settings = PlatformSettingsService(db, cache, self.app_settings)
        if gateway is None and self.app_settings.PAYOUTS_VIA_STRIPE:
            gateway = StripeService()
        self.gateway = gateway
        self.tz = ZoneInfo(self.app_settings.TIMEZONE)

    async def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Run one payout sweep.

        Args:
            now: Run timestamp (timezone-aware). Defaults to the current time.

        Returns:
            Summary dict: success, processed, skipped, errors, total, results

        Raises:
            PayoutRunInProgressError: another run holds the lock
        """
        now = now or utcnow()
        lock = RunLock(self.db, PAYOUT_LOCK_NAME, self.app_settings.PAYOUT_LOCK_TTL_SECONDS)
        if not await lock.acquire(now):
            logger.warning("Payout run skipped: another run is in progress")
            raise PayoutRunInProgressError("Payout run already in progress")

        try:
            return await self._run(now)
        finally:
            await lock.release()

    async def _run(self, now: datetime) -> Dict[str, Any]:
        today = now.astimezone(self.tz).date()
        global_minimum = await self.platform_settings.get_minimum_payout()

        logger.info(f"Payout run for {today}: platform minimum {global_minimum}")

        result = await self.db.execute(
            select(Wallet)
            .where(
                Wallet.payout_enabled.is_(True),
                Wallet.next_payout_date <= today,
                Wallet.balance > 0,
                Wallet.balance >= global_minimum,
            )
            .order_by(Wallet.next_payout_date, Wallet.id)
        )
        candidates = [WalletSnapshot.from_wallet(w) for w in result.scalars().all()]
        await self.db.rollback()

        processed = 0
        skipped = 0
        errors = 0
        results: List[Dict[str, Any]] = []

        for wallet in candidates:
            minimum = wallet.minimum_payout if wallet.minimum_payout is not None else global_minimum
            if wallet.balance < minimum:
                logger.info(
                    f"Skipping wallet {wallet.id}: balance {wallet.balance} below minimum {minimum}"
                )
                skipped += 1
                results.append({
                    "wallet_id": str(wallet.id),
                    "artisan_id": str(wallet.artisan_id),
                    "amount": str(wallet.balance),
                    "status": "skipped",
                    "reason": f"Balance below minimum payout of {minimum}",
                })
                continue

            try:
                outcome = await self._pay_wallet(wallet, now, today)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.exception(f"Payout failed for wallet {wallet.id}")
                errors += 1
                results.append({
                    "wallet_id": str(wallet.id),
                    "artisan_id": str(wallet.artisan_id),
                    "amount": str(wallet.balance),
                    "status": "error",
                    "error": getattr(e, "message", str(e)),
                })
                continue

            processed += 1
            results.append(outcome)

        logger.info(
            f"Payout run finished: {processed} processed, {skipped} skipped, "
            f"{errors} errors, {len(candidates)} candidates"
        )
        return {
            "success": True,
            "processed": processed,
            "skipped": skipped,
            "errors": errors,
            "total": len(candidates),
            "results": results,
        }

    async def _connect_account(self, wallet: WalletSnapshot) -> str:
        account_id = await self.db.scalar(
            select(Artisan.stripe_connect_account_id).where(Artisan.id == wallet.artisan_id)
        )
        if not account_id:
            raise PayoutError(
                "No Stripe Connect account. Please set up bank information.",
                {"artisan_id": str(wallet.artisan_id)}
            )

        status = await self.gateway.get_account_status(account_id)
        if not status.get("payouts_enabled"):
            raise PayoutError(
                "Stripe account requires verification before payouts can be enabled.",
                {"artisan_id": str(wallet.artisan_id), "account_id": account_id}
            )
        return account_id

    async def _pay_wallet(self, wallet: WalletSnapshot, now: datetime, today) -> Dict[str, Any]:
        next_date = compute_next_payout_date(wallet.payout_schedule, today)
        account_id = await self._connect_account(wallet) if self.gateway is not None else None
        reference = generate_reference("PAYOUT", now)

        details = {
            "payout_date": now.isoformat(),
            "schedule": wallet.payout_schedule,
            "original_balance": str(wallet.balance),
            "next_payout_date": next_date.isoformat(),
        }
        if account_id is not None:
            details["stripe_account"] = account_id

        # Drain and ledger entry are flushed before any money moves
        await self.ledger.drain_for_payout(wallet, next_date, now, reference)
        entry = await self.ledger.record(
            wallet_id=wallet.id,
            artisan_id=wallet.artisan_id,
            user_id=wallet.user_id,
            transaction_type=TransactionType.PAYOUT.value,
            amount=-wallet.balance,
            description=f"{wallet.payout_schedule.capitalize()} payout to bank account",
            reference=reference,
            balance_after=Decimal("0"),
            status=TransactionStatus.COMPLETED.value,
            details=details,
        )

        stripe_payout = None
        if account_id is not None:
            stripe_payout = await self.gateway.create_payout(
                account_id,
                wallet.balance,
                wallet.currency,
                reference,
                {
                    "artisan_id": str(wallet.artisan_id),
                    "wallet_id": str(wallet.id),
                    "schedule": wallet.payout_schedule,
                },
                idempotency_key=payout_idempotency_key(wallet),
            )
            await self.ledger.attach_stripe_payout(entry, stripe_payout["id"])

        logger.info(
            f"Paid out {wallet.balance} {wallet.currency} for artisan {wallet.artisan_id} "
            f"({reference}), next payout {next_date}"
        )
        return {
            "wallet_id": str(wallet.id),
            "artisan_id": str(wallet.artisan_id),
            "amount": str(wallet.balance),
            "status": "paid",
            "reference": reference,
            "stripe_payout_id": stripe_payout["id"] if stripe_payout else None,
            "next_payout_date": next_date.isoformat(),
        }
