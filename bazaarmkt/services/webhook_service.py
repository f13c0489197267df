"""
Stripe webhook processing.

Applies verified Stripe events to orders, users and wallets. Handlers only
ever *set* status fields and keep the first recorded timestamp, so a
replayed event converges to the same state. Inventory restoration is the
one effect that is not naturally repeatable; it is guarded by the
``inventory_restored`` flag, which is flipped in the same UPDATE that moves
the order to failed/canceled.

The caller owns the transaction: it commits after ``process`` returns and
rolls back if it raises.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from bazaarmkt.db_types import from_minor_units, utcnow
from bazaarmkt.models.notification import NotificationType, NotificationPriority
from bazaarmkt.models.order import Order, OrderStatus, PaymentStatus, allowed_sources
from bazaarmkt.models.user import User, UserPaymentMethod
from bazaarmkt.models.wallet import TransactionType
from bazaarmkt.services.inventory_service import InventoryService
from bazaarmkt.services.notification_service import NotificationService
from bazaarmkt.services.stripe_service import StripeEvent
from bazaarmkt.services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)


class WebhookOutcome:
    """What a handler did with an event."""
    APPLIED = "applied"
    RESTORED = "restored"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    LINKED = "linked"
    SYNCED = "synced"
    ATTACHED = "attached"
    DETACHED = "detached"
    NOTIFIED = "notified"
    REVERSED = "reversed"
    UNHANDLED = "unhandled"


class StripeWebhookService:
    """Dispatches Stripe events to per-type handlers."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory = InventoryService(db)
        self.ledger = WalletLedger(db)
        self.notifications = NotificationService(db)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[str]]] = {
            StripeEvent.PAYMENT_INTENT_SUCCEEDED: self._handle_payment_succeeded,
            StripeEvent.PAYMENT_INTENT_FAILED: self._handle_payment_failed,
            StripeEvent.PAYMENT_INTENT_CANCELED: self._handle_payment_canceled,
            StripeEvent.CHARGE_REFUNDED: self._handle_charge_refunded,
            StripeEvent.CUSTOMER_CREATED: self._handle_customer_created,
            StripeEvent.CUSTOMER_UPDATED: self._handle_customer_updated,
            StripeEvent.PAYMENT_METHOD_ATTACHED: self._handle_payment_method_attached,
            StripeEvent.PAYMENT_METHOD_DETACHED: self._handle_payment_method_detached,
            StripeEvent.PAYOUT_PAID: self._handle_payout_paid,
            StripeEvent.PAYOUT_FAILED: self._handle_payout_failed,
            StripeEvent.PAYOUT_CANCELED: self._handle_payout_canceled,
        }

    def handles(self, event_type: Optional[str]) -> bool:
        return event_type in self._handlers

    async def process(self, event: Dict[str, Any]) -> str:
        """
        Apply one verified event.

        Returns:
            A ``WebhookOutcome`` value
        """
        event_type = event.get("type")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled webhook event: {event_type}")
            return WebhookOutcome.UNHANDLED

        obj = (event.get("data") or {}).get("object") or {}
        logger.info(f"Processing webhook {event.get('id')} ({event_type}) for {obj.get('id')}")

        return await handler(obj)

    # ==================== Orders ====================

    async def _load_order(self, order_id) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _transition(
        self,
        payment_intent_id: Optional[str],
        target: PaymentStatus,
        values: Dict[str, Any],
        restore_inventory: bool = False,
    ) -> str:
        """
        Move the order for a payment intent to ``target`` if the current
        payment status allows it.
        """
        if not payment_intent_id:
            logger.warning(f"{target.value} event without payment intent id")
            return WebhookOutcome.NOT_FOUND

        sources = allowed_sources(target)
        values = {"payment_status": target.value, "updated_at": utcnow(), **values}

        if restore_inventory:
            result = await self.db.execute(
                update(Order)
                .where(
                    Order.payment_intent_id == payment_intent_id,
                    Order.payment_status.in_(sources),
                    Order.inventory_restored.is_(False),
                )
                .values(inventory_restored=True, **values)
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            )
            order_id = result.scalar_one_or_none()
            if order_id is not None:
                logger.info(f"Order {order_id} payment_status -> {target.value}, restoring inventory")
                order = await self._load_order(order_id)
                await self.inventory.restore_order_items(order)
                return WebhookOutcome.RESTORED

        result = await self.db.execute(
            update(Order)
            .where(
                Order.payment_intent_id == payment_intent_id,
                Order.payment_status.in_(sources),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Order for {payment_intent_id} payment_status -> {target.value}")
            return WebhookOutcome.APPLIED

        current = await self.db.scalar(
            select(Order.payment_status).where(Order.payment_intent_id == payment_intent_id)
        )
        if current is None:
            logger.warning(f"No order found for payment intent {payment_intent_id}")
            return WebhookOutcome.NOT_FOUND

        logger.warning(
            f"Ignoring payment_status {current} -> {target.value} "
            f"for payment intent {payment_intent_id}"
        )
        return WebhookOutcome.IGNORED

    async def _handle_payment_succeeded(self, payment_intent: Dict[str, Any]) -> str:
        now = utcnow()
        return await self._transition(
            payment_intent.get("id"),
            PaymentStatus.CAPTURED,
            {
                "captured_at": func.coalesce(Order.captured_at, now),
                "amount_captured": from_minor_units(payment_intent.get("amount_received")),
            },
        )

    async def _handle_payment_failed(self, payment_intent: Dict[str, Any]) -> str:
        now = utcnow()
        error = payment_intent.get("last_payment_error") or {}
        return await self._transition(
            payment_intent.get("id"),
            PaymentStatus.FAILED,
            {
                "failure_reason": error.get("message") or "Payment failed",
                "failed_at": func.coalesce(Order.failed_at, now),
            },
            restore_inventory=True,
        )

    async def _handle_payment_canceled(self, payment_intent: Dict[str, Any]) -> str:
        now = utcnow()
        return await self._transition(
            payment_intent.get("id"),
            PaymentStatus.CANCELED,
            {
                "status": OrderStatus.CANCELLED.value,
                "canceled_at": func.coalesce(Order.canceled_at, now),
            },
            restore_inventory=True,
        )

    async def _handle_charge_refunded(self, charge: Dict[str, Any]) -> str:
        # Refunds leave inventory alone; restocking after fulfillment is a
        # separate business decision.
        now = utcnow()
        return await self._transition(
            charge.get("payment_intent"),
            PaymentStatus.REFUNDED,
            {
                "refunded_at": func.coalesce(Order.refunded_at, now),
                "refund_amount": from_minor_units(charge.get("amount_refunded")),
            },
        )

    # ==================== Customers ====================

    async def _handle_customer_created(self, customer: Dict[str, Any]) -> str:
        customer_id = customer.get("id")
        email = (customer.get("email") or "").strip().lower()
        if not email or not customer_id:
            logger.info(f"Customer {customer_id} has no email, nothing to link")
            return WebhookOutcome.IGNORED

        linked = await self.db.scalar(
            select(User.id).where(User.stripe_customer_id == customer_id)
        )
        if linked is not None:
            return WebhookOutcome.DUPLICATE

        result = await self.db.execute(
            update(User)
            .where(func.lower(User.email) == email, User.stripe_customer_id.is_(None))
            .values(stripe_customer_id=customer_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Linked Stripe customer {customer_id} to user {email}")
            return WebhookOutcome.LINKED

        logger.warning(f"No unlinked user with email {email} for Stripe customer {customer_id}")
        return WebhookOutcome.NOT_FOUND

    async def _handle_customer_updated(self, customer: Dict[str, Any]) -> str:
        customer_id = customer.get("id")
        result = await self.db.execute(
            select(User).where(User.stripe_customer_id == customer_id)
        )
        user = result.scalar_one_or_none()
        if user is None:
            logger.warning(f"No user linked to Stripe customer {customer_id}")
            return WebhookOutcome.NOT_FOUND

        email = (customer.get("email") or "").strip().lower()
        if email and email != user.email:
            taken = await self.db.scalar(
                select(User.id).where(func.lower(User.email) == email, User.id != user.id)
            )
            if taken is not None:
                logger.warning(f"Email {email} from customer {customer_id} belongs to another user")
                return WebhookOutcome.IGNORED
            user.email = email
            await self.db.flush()
            logger.info(f"Synced email of user {user.id} from Stripe customer {customer_id}")

        return WebhookOutcome.SYNCED

    # ==================== Payment methods ====================

    async def _handle_payment_method_attached(self, payment_method: Dict[str, Any]) -> str:
        payment_method_id = payment_method.get("id")
        customer_id = payment_method.get("customer")
        if not payment_method_id or not customer_id:
            return WebhookOutcome.IGNORED

        user_id = await self.db.scalar(
            select(User.id).where(User.stripe_customer_id == customer_id)
        )
        if user_id is None:
            logger.warning(f"No user linked to Stripe customer {customer_id}")
            return WebhookOutcome.NOT_FOUND

        existing = await self.db.scalar(
            select(UserPaymentMethod.id).where(
                UserPaymentMethod.stripe_payment_method_id == payment_method_id
            )
        )
        if existing is not None:
            return WebhookOutcome.DUPLICATE

        card = payment_method.get("card") or {}
        billing = payment_method.get("billing_details") or {}
        self.db.add(UserPaymentMethod(
            user_id=user_id,
            stripe_payment_method_id=payment_method_id,
            type="credit_card",
            brand=card.get("brand") or "unknown",
            last4=card.get("last4") or "0000",
            expiry_month=card.get("exp_month") or 12,
            expiry_year=card.get("exp_year") or 2030,
            cardholder_name=billing.get("name") or "Cardholder",
            is_default=False,
        ))
        await self.db.flush()
        logger.info(f"Payment method {payment_method_id} attached to user {user_id}")
        return WebhookOutcome.ATTACHED

    async def _handle_payment_method_detached(self, payment_method: Dict[str, Any]) -> str:
        payment_method_id = payment_method.get("id")
        if not payment_method_id:
            return WebhookOutcome.IGNORED

        # Stripe clears ``customer`` on detach, so match on the method id
        result = await self.db.execute(
            delete(UserPaymentMethod)
            .where(UserPaymentMethod.stripe_payment_method_id == payment_method_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Payment method {payment_method_id} detached")
            return WebhookOutcome.DETACHED

        logger.warning(f"Payment method {payment_method_id} not found for detach")
        return WebhookOutcome.NOT_FOUND

    # ==================== Payouts ====================

    async def _handle_payout_paid(self, payout: Dict[str, Any]) -> str:
        entry = await self.ledger.find_by_stripe_payout(payout.get("id"))
        if entry is None:
            logger.warning(f"No payout transaction for Stripe payout {payout.get('id')}")
            return WebhookOutcome.NOT_FOUND

        amount = -entry.amount
        notification = await self.notifications.notify(
            entry.user_id,
            NotificationType.PAYOUT_COMPLETED.value,
            "Payout Completed",
            f"Your payout of ${amount} has been deposited to your bank account.",
            priority=NotificationPriority.MEDIUM.value,
            data={
                "amount": str(amount),
                "stripe_payout_id": payout.get("id"),
                "reference": entry.reference,
                "arrival_date": payout.get("arrival_date"),
            },
            dedupe_key=f"{StripeEvent.PAYOUT_PAID}:{payout.get('id')}",
        )
        return WebhookOutcome.NOTIFIED if notification else WebhookOutcome.DUPLICATE

    async def _handle_payout_failed(self, payout: Dict[str, Any]) -> str:
        return await self._reverse_payout(payout, StripeEvent.PAYOUT_FAILED)

    async def _handle_payout_canceled(self, payout: Dict[str, Any]) -> str:
        return await self._reverse_payout(payout, StripeEvent.PAYOUT_CANCELED)

    async def _reverse_payout(self, payout: Dict[str, Any], event_type: str) -> str:
        """Failed or canceled payout: put the money back in the wallet, once."""
        entry = await self.ledger.find_by_stripe_payout(payout.get("id"))
        if entry is None:
            logger.warning(f"No payout transaction for Stripe payout {payout.get('id')}")
            return WebhookOutcome.NOT_FOUND

        reversal_reference = f"REVERSAL-{entry.reference}"
        if await self.ledger.find_by_reference(reversal_reference) is not None:
            logger.info(f"Payout {entry.reference} already reversed")
            return WebhookOutcome.DUPLICATE

        failed = event_type == StripeEvent.PAYOUT_FAILED
        amount = -entry.amount
        reason = payout.get("failure_message") or ("Payout failed" if failed else "Payout canceled")

        await self.ledger.credit(
            entry.artisan_id,
            amount,
            f"Payout {'failed' if failed else 'canceled'} - funds returned to wallet",
            reference=reversal_reference,
            transaction_type=TransactionType.PAYOUT_REVERSAL.value,
            details={
                "original_reference": entry.reference,
                "stripe_payout_id": payout.get("id"),
                "failure_code": payout.get("failure_code"),
                "failure_message": payout.get("failure_message"),
            },
        )

        await self.notifications.notify(
            entry.user_id,
            (NotificationType.PAYOUT_FAILED if failed else NotificationType.PAYOUT_CANCELED).value,
            "Payout Failed" if failed else "Payout Canceled",
            f"Your payout of ${amount} could not be completed: {reason}. "
            f"The funds have been returned to your wallet.",
            priority=NotificationPriority.HIGH.value,
            data={
                "amount": str(amount),
                "stripe_payout_id": payout.get("id"),
                "reference": entry.reference,
                "failure_code": payout.get("failure_code"),
            },
            dedupe_key=f"{event_type}:{payout.get('id')}",
        )

        logger.info(f"Reversed payout {entry.reference}: {amount} returned to artisan {entry.artisan_id}")
        return WebhookOutcome.REVERSED
