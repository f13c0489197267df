"""
Tests for the Stripe webhook endpoint.

Tests cover:
- Signature verification (bad, missing, stale, unconfigured)
- Handler errors and processing timeouts roll back with a 500
- Payment intent succeeded / failed / canceled and charge refunds
- Exactly-once inventory restoration under replays
- Customer and payment method sync
- Payout paid / failed / canceled handling
"""
import asyncio
import json
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select, func

from bazaarmkt.config import settings
from bazaarmkt.models import (
    Notification,
    Order,
    Product,
    User,
    UserPaymentMethod,
    Wallet,
    WalletTransaction,
)
from bazaarmkt.services.inventory_service import InventoryService
from bazaarmkt.services.payout_service import PayoutScheduler
from bazaarmkt.services.webhook_service import StripeWebhookService, WebhookOutcome
from tests.factories import (
    WEBHOOK_PATH,
    create_artisan,
    create_order,
    create_product,
    create_user,
    create_wallet,
    make_event,
    post_event,
    reload,
    sign_payload,
)


def payment_intent(pi_id="pi_123", **fields):
    return {"id": pi_id, "object": "payment_intent", **fields}


@pytest.fixture
async def sold_out_order(db):
    """Order pi_123 holding the last 3 units of a ready-to-ship product."""
    product = await create_product(
        db,
        product_type="ready_to_ship",
        status="out_of_stock",
        stock=0,
        available_quantity=0,
        sold_count=3,
    )
    order = await create_order(db, "pi_123", [(product, 3)])
    await db.commit()
    return order, product


class TestSignatureVerification:
    """Tests for webhook authentication."""

    async def test_invalid_signature_rejected(self, client, db, sold_out_order):
        """Test a wrong secret returns 400 and changes nothing."""
        order, product = sold_out_order
        event = make_event("payment_intent.payment_failed", payment_intent())

        response = await post_event(client, event, secret="whsec_wrong")

        assert response.status_code == 400
        order = await reload(db, Order, order.id)
        product = await reload(db, Product, product.id)
        assert order.payment_status == "pending"
        assert order.inventory_restored is False
        assert product.stock == 0
        assert product.status == "out_of_stock"

    async def test_missing_signature_header(self, client):
        """Test a request without Stripe-Signature is rejected."""
        event = make_event("payment_intent.succeeded", payment_intent())

        response = await client.post(WEBHOOK_PATH, content=json.dumps(event).encode())

        assert response.status_code == 400
        assert "Stripe-Signature" in response.json()["detail"]

    async def test_tampered_body_rejected(self, client):
        """Test the signature must cover the exact bytes received."""
        body = json.dumps(make_event("payment_intent.succeeded", payment_intent())).encode()
        header = sign_payload(body)

        response = await client.post(
            WEBHOOK_PATH,
            content=body.replace(b"pi_123", b"pi_999"),
            headers={"Stripe-Signature": header},
        )

        assert response.status_code == 400

    async def test_stale_timestamp_rejected(self, client):
        """Test signatures older than the tolerance are rejected."""
        body = json.dumps(make_event("payment_intent.succeeded", payment_intent())).encode()
        header = sign_payload(body, timestamp=int(time.time()) - 3600)

        response = await client.post(WEBHOOK_PATH, content=body, headers={"Stripe-Signature": header})

        assert response.status_code == 400

    async def test_unconfigured_secret_rejects(self, client, monkeypatch):
        """Test nothing is accepted without a webhook secret."""
        monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
        event = make_event("payment_intent.succeeded", payment_intent())

        response = await post_event(client, event)

        assert response.status_code == 400

    async def test_non_event_body_rejected(self, client):
        """Test a signed body that is not an event envelope."""
        body = json.dumps({"hello": "world"}).encode()

        response = await client.post(
            WEBHOOK_PATH,
            content=body,
            headers={"Stripe-Signature": sign_payload(body)},
        )

        assert response.status_code == 400


class TestPaymentIntentEvents:
    """Tests for payment intent status transitions."""

    async def test_payment_failed_restores_inventory(self, client, db, sold_out_order):
        """Test a failed payment returns the units and reactivates the product."""
        order, product = sold_out_order
        event = make_event(
            "payment_intent.payment_failed",
            payment_intent(last_payment_error={"message": "Your card was declined."}),
        )

        response = await post_event(client, event)

        assert response.status_code == 200
        assert response.json() == {"received": True, "type": "payment_intent.payment_failed"}

        order = await reload(db, Order, order.id)
        assert order.payment_status == "failed"
        assert order.failure_reason == "Your card was declined."
        assert order.failed_at is not None
        assert order.inventory_restored is True

        product = await reload(db, Product, product.id)
        assert product.stock == 3
        assert product.available_quantity == 3
        assert product.sold_count == 0
        assert product.status == "active"

    async def test_failed_replay_restores_once(self, client, db, sold_out_order):
        """Test replaying the same failure does not add stock twice."""
        order, product = sold_out_order
        event = make_event("payment_intent.payment_failed", payment_intent())

        first = await post_event(client, event)
        second = await post_event(client, event)

        assert first.status_code == 200
        assert second.status_code == 200
        product = await reload(db, Product, product.id)
        assert product.stock == 3

    async def test_default_failure_reason(self, client, db, sold_out_order):
        """Test a failure without last_payment_error gets a generic reason."""
        order, _ = sold_out_order

        await post_event(client, make_event("payment_intent.payment_failed", payment_intent()))

        order = await reload(db, Order, order.id)
        assert order.failure_reason == "Payment failed"

    async def test_failed_then_canceled_restores_once(self, client, db, sold_out_order):
        """Test cancel after failure moves status but does not restore again."""
        order, product = sold_out_order

        await post_event(client, make_event("payment_intent.payment_failed", payment_intent()))
        response = await post_event(client, make_event("payment_intent.canceled", payment_intent()))

        assert response.status_code == 200
        order = await reload(db, Order, order.id)
        assert order.payment_status == "canceled"
        assert order.status == "cancelled"
        assert order.canceled_at is not None
        product = await reload(db, Product, product.id)
        assert product.stock == 3

    async def test_canceled_restores_inventory(self, client, db, sold_out_order):
        """Test a canceled payment intent restores inventory."""
        order, product = sold_out_order

        response = await post_event(client, make_event("payment_intent.canceled", payment_intent()))

        assert response.status_code == 200
        order = await reload(db, Order, order.id)
        assert order.payment_status == "canceled"
        assert order.inventory_restored is True
        product = await reload(db, Product, product.id)
        assert product.stock == 3
        assert product.status == "active"

    async def test_succeeded_captures_amount(self, client, db, sold_out_order):
        """Test success records captured amount and keeps the first capture time."""
        order, product = sold_out_order
        event = make_event("payment_intent.succeeded", payment_intent(amount_received=3000))

        await post_event(client, event)
        order = await reload(db, Order, order.id)
        first_captured_at = order.captured_at

        await post_event(client, event)
        order = await reload(db, Order, order.id)

        assert order.payment_status == "captured"
        assert order.amount_captured == Decimal("30.00")
        assert order.captured_at == first_captured_at
        product = await reload(db, Product, product.id)
        assert product.stock == 0

    async def test_failure_after_capture_ignored(self, client, db, sold_out_order):
        """Test a late failure event cannot move a captured order back."""
        order, product = sold_out_order

        await post_event(client, make_event("payment_intent.succeeded", payment_intent(amount_received=3000)))
        response = await post_event(client, make_event("payment_intent.payment_failed", payment_intent()))

        assert response.status_code == 200
        order = await reload(db, Order, order.id)
        assert order.payment_status == "captured"
        product = await reload(db, Product, product.id)
        assert product.stock == 0

    async def test_unknown_payment_intent_acknowledged(self, client):
        """Test events for orders we do not have still return 200."""
        event = make_event("payment_intent.payment_failed", payment_intent("pi_missing"))

        response = await post_event(client, event)

        assert response.status_code == 200

    async def test_handler_error_rolls_back(self, client, db, sold_out_order, monkeypatch):
        """Test a failing handler returns 500 and leaves the order untouched."""
        order, product = sold_out_order

        async def broken_restore(self, order):
            raise RuntimeError("database went away")

        monkeypatch.setattr(InventoryService, "restore_order_items", broken_restore)

        response = await post_event(client, make_event("payment_intent.payment_failed", payment_intent()))

        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Error processing webhook"}
        order = await reload(db, Order, order.id)
        assert order.payment_status == "pending"
        assert order.inventory_restored is False

    async def test_retry_after_error_restores(self, client, db, sold_out_order, monkeypatch):
        """Test Stripe's retry succeeds once the handler works again."""
        order, product = sold_out_order
        event = make_event("payment_intent.payment_failed", payment_intent())

        async def broken_restore(self, order):
            raise RuntimeError("database went away")

        with monkeypatch.context() as m:
            m.setattr(InventoryService, "restore_order_items", broken_restore)
            assert (await post_event(client, event)).status_code == 500

        assert (await post_event(client, event)).status_code == 200
        product = await reload(db, Product, product.id)
        assert product.stock == 3

    async def test_slow_handler_times_out(self, client, db, sold_out_order, monkeypatch):
        """Test a handler running past the processing timeout fails fast and rolls back."""
        order, product = sold_out_order
        monkeypatch.setattr(settings, "WEBHOOK_PROCESSING_TIMEOUT", 0.05)

        async def slow_restore(self, order):
            await asyncio.sleep(5)

        monkeypatch.setattr(InventoryService, "restore_order_items", slow_restore)

        response = await post_event(client, make_event("payment_intent.payment_failed", payment_intent()))

        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Error processing webhook"}
        order = await reload(db, Order, order.id)
        assert order.payment_status == "pending"
        assert order.inventory_restored is False
        product = await reload(db, Product, product.id)
        assert product.stock == 0


class TestChargeRefunded:
    """Tests for charge.refunded."""

    async def test_refund_does_not_restore_inventory(self, client, db, sold_out_order):
        """Test refunds record the amount but leave stock alone."""
        order, product = sold_out_order
        await post_event(client, make_event("payment_intent.succeeded", payment_intent(amount_received=3000)))

        charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_123", "amount_refunded": 1500}
        response = await post_event(client, make_event("charge.refunded", charge))

        assert response.status_code == 200
        order = await reload(db, Order, order.id)
        assert order.payment_status == "refunded"
        assert order.refund_amount == Decimal("15.00")
        assert order.refunded_at is not None
        assert order.inventory_restored is False
        product = await reload(db, Product, product.id)
        assert product.stock == 0

    async def test_refund_of_pending_order_ignored(self, client, db, sold_out_order):
        """Test a refund cannot apply to an order that was never paid."""
        order, _ = sold_out_order
        charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_123", "amount_refunded": 1500}

        response = await post_event(client, make_event("charge.refunded", charge))

        assert response.status_code == 200
        order = await reload(db, Order, order.id)
        assert order.payment_status == "pending"


class TestUnhandledEvents:
    """Tests for event types we do not process."""

    async def test_unknown_event_acknowledged(self, client):
        """Test unknown types get a 200 so Stripe stops retrying."""
        event = make_event("invoice.finalized", {"id": "in_1", "object": "invoice"})

        response = await post_event(client, event)

        assert response.status_code == 200
        assert response.json()["type"] == "invoice.finalized"


class TestCustomerEvents:
    """Tests for customer.created and customer.updated."""

    async def test_customer_created_links_user(self, client, db):
        """Test a new customer is linked to the user with the same email."""
        user = await create_user(db, email="buyer@example.com")
        await db.commit()
        customer = {"id": "cus_1", "object": "customer", "email": "Buyer@Example.com"}

        response = await post_event(client, make_event("customer.created", customer))

        assert response.status_code == 200
        user = await reload(db, User, user.id)
        assert user.stripe_customer_id == "cus_1"

    async def test_customer_created_does_not_relink(self, client, db):
        """Test a user already linked to another customer keeps it."""
        user = await create_user(db, email="buyer@example.com", stripe_customer_id="cus_old")
        await db.commit()
        customer = {"id": "cus_new", "object": "customer", "email": "buyer@example.com"}

        response = await post_event(client, make_event("customer.created", customer))

        assert response.status_code == 200
        user = await reload(db, User, user.id)
        assert user.stripe_customer_id == "cus_old"

    async def test_customer_updated_syncs_email(self, client, db):
        """Test email changes at Stripe flow back to the user."""
        user = await create_user(db, email="old@example.com", stripe_customer_id="cus_1")
        await db.commit()
        customer = {"id": "cus_1", "object": "customer", "email": "new@example.com"}

        response = await post_event(client, make_event("customer.updated", customer))

        assert response.status_code == 200
        user = await reload(db, User, user.id)
        assert user.email == "new@example.com"

    async def test_customer_updated_email_taken(self, client, db):
        """Test an email owned by another user is not copied."""
        user = await create_user(db, email="old@example.com", stripe_customer_id="cus_1")
        await create_user(db, email="taken@example.com")
        await db.commit()
        customer = {"id": "cus_1", "object": "customer", "email": "taken@example.com"}

        response = await post_event(client, make_event("customer.updated", customer))

        assert response.status_code == 200
        user = await reload(db, User, user.id)
        assert user.email == "old@example.com"


class TestPaymentMethodEvents:
    """Tests for payment_method.attached and payment_method.detached."""

    @staticmethod
    def card(pm_id="pm_1", customer="cus_1"):
        return {
            "id": pm_id,
            "object": "payment_method",
            "customer": customer,
            "card": {"brand": "visa", "last4": "4242", "exp_month": 4, "exp_year": 2031},
            "billing_details": {"name": "Ada Lovelace"},
        }

    async def count_methods(self, db, user_id):
        return await db.scalar(
            select(func.count()).select_from(UserPaymentMethod).where(UserPaymentMethod.user_id == user_id)
        )

    async def test_attached_creates_card(self, client, db):
        """Test an attached card is mirrored onto the user."""
        user = await create_user(db, stripe_customer_id="cus_1")
        await db.commit()

        response = await post_event(client, make_event("payment_method.attached", self.card()))

        assert response.status_code == 200
        method = await db.scalar(
            select(UserPaymentMethod).where(UserPaymentMethod.stripe_payment_method_id == "pm_1")
        )
        assert method.user_id == user.id
        assert method.brand == "visa"
        assert method.last4 == "4242"
        assert method.expiry_month == 4
        assert method.expiry_year == 2031
        assert method.cardholder_name == "Ada Lovelace"
        assert method.is_default is False

    async def test_attached_replay_no_duplicate(self, client, db):
        """Test replaying an attach keeps a single row."""
        user = await create_user(db, stripe_customer_id="cus_1")
        await db.commit()
        event = make_event("payment_method.attached", self.card())

        await post_event(client, event)
        response = await post_event(client, event)

        assert response.status_code == 200
        assert await self.count_methods(db, user.id) == 1

    async def test_attached_defaults(self, client, db):
        """Test missing card details fall back to placeholders."""
        await create_user(db, stripe_customer_id="cus_1")
        await db.commit()
        event = make_event(
            "payment_method.attached",
            {"id": "pm_2", "object": "payment_method", "customer": "cus_1"},
        )

        await post_event(client, event)

        method = await db.scalar(
            select(UserPaymentMethod).where(UserPaymentMethod.stripe_payment_method_id == "pm_2")
        )
        assert method.brand == "unknown"
        assert method.last4 == "0000"
        assert method.cardholder_name == "Cardholder"

    async def test_detached_removes_card(self, client, db):
        """Test a detach removes the card even though Stripe cleared customer."""
        user = await create_user(db, stripe_customer_id="cus_1")
        await db.commit()
        await post_event(client, make_event("payment_method.attached", self.card()))

        response = await post_event(client, make_event("payment_method.detached", self.card(customer=None)))

        assert response.status_code == 200
        assert await self.count_methods(db, user.id) == 0

    @pytest.mark.parametrize("event_type", ["payment_method.attached", "payment_method.detached"])
    async def test_missing_id_ignored(self, client, db, event_type):
        """Test a payment method without an id is acknowledged and skipped."""
        user = await create_user(db, stripe_customer_id="cus_1")
        await db.commit()
        card = self.card()
        del card["id"]

        outcome = await StripeWebhookService(db).process(make_event(event_type, card))
        response = await post_event(client, make_event(event_type, card))

        assert outcome == WebhookOutcome.IGNORED
        assert response.status_code == 200
        assert await self.count_methods(db, user.id) == 0


class TestPayoutEvents:
    """Tests for payout.paid, payout.failed and payout.canceled."""

    RUN_AT = datetime(2026, 3, 6, 14, 0, tzinfo=timezone.utc)

    @pytest.fixture
    async def paid_wallet(self, db, cache, payout_gateway):
        """Wallet of 40.00 already paid out through Stripe as po_1."""
        artisan = await create_artisan(db, stripe_connect_account_id="acct_1")
        wallet = await create_wallet(db, Decimal("40.00"), date(2026, 3, 6), artisan=artisan)
        await db.commit()

        # The run rolls the session back, so keep plain ids
        paid = SimpleNamespace(id=wallet.id, user_id=wallet.user_id)
        summary = await PayoutScheduler(db, cache, gateway=payout_gateway).run(self.RUN_AT)
        assert summary["processed"] == 1
        return paid

    async def notifications(self, db, user_id):
        result = await db.execute(select(Notification).where(Notification.user_id == user_id))
        return list(result.scalars().all())

    async def test_payout_failed_returns_funds(self, client, db, paid_wallet):
        """Test a failed payout credits the wallet back and notifies the artisan."""
        payout = {
            "id": "po_1",
            "object": "payout",
            "failure_code": "account_closed",
            "failure_message": "The bank account has been closed",
        }

        response = await post_event(client, make_event("payout.failed", payout))

        assert response.status_code == 200
        wallet = await reload(db, Wallet, paid_wallet.id)
        assert wallet.balance == Decimal("40.00")

        reversal = await db.scalar(
            select(WalletTransaction).where(WalletTransaction.type == "payout_reversal")
        )
        assert reversal.amount == Decimal("40.00")
        assert reversal.reference.startswith("REVERSAL-PAYOUT-")
        assert reversal.balance_after == Decimal("40.00")
        assert reversal.details["failure_code"] == "account_closed"

        notes = await self.notifications(db, paid_wallet.user_id)
        assert len(notes) == 1
        assert notes[0].type == "payout_failed"
        assert notes[0].priority == "high"
        assert "The bank account has been closed" in notes[0].message

    async def test_payout_failed_replay_reverses_once(self, client, db, paid_wallet):
        """Test a replayed failure does not credit twice."""
        event = make_event("payout.failed", {"id": "po_1", "object": "payout"})

        await post_event(client, event)
        response = await post_event(client, event)

        assert response.status_code == 200
        wallet = await reload(db, Wallet, paid_wallet.id)
        assert wallet.balance == Decimal("40.00")
        reversals = await db.scalar(
            select(func.count()).select_from(WalletTransaction)
            .where(WalletTransaction.type == "payout_reversal")
        )
        assert reversals == 1
        assert len(await self.notifications(db, paid_wallet.user_id)) == 1

    async def test_payout_canceled_after_failed(self, client, db, paid_wallet):
        """Test failed then canceled for the same payout reverses once."""
        await post_event(client, make_event("payout.failed", {"id": "po_1", "object": "payout"}))
        response = await post_event(client, make_event("payout.canceled", {"id": "po_1", "object": "payout"}))

        assert response.status_code == 200
        wallet = await reload(db, Wallet, paid_wallet.id)
        assert wallet.balance == Decimal("40.00")

    async def test_payout_canceled_returns_funds(self, client, db, paid_wallet):
        """Test a canceled payout uses its own notification type."""
        response = await post_event(client, make_event("payout.canceled", {"id": "po_1", "object": "payout"}))

        assert response.status_code == 200
        notes = await self.notifications(db, paid_wallet.user_id)
        assert [n.type for n in notes] == ["payout_canceled"]

    async def test_payout_paid_notifies_once(self, client, db, paid_wallet):
        """Test payout.paid notifies the artisan and leaves the ledger alone."""
        event = make_event("payout.paid", {"id": "po_1", "object": "payout", "arrival_date": 1773000000})

        await post_event(client, event)
        response = await post_event(client, event)

        assert response.status_code == 200
        notes = await self.notifications(db, paid_wallet.user_id)
        assert len(notes) == 1
        assert notes[0].type == "payout_completed"
        assert notes[0].data["stripe_payout_id"] == "po_1"
        wallet = await reload(db, Wallet, paid_wallet.id)
        assert wallet.balance == Decimal("0.00")

    async def test_unknown_payout_acknowledged(self, client):
        """Test payouts we never created are acknowledged."""
        response = await post_event(client, make_event("payout.failed", {"id": "po_unknown", "object": "payout"}))

        assert response.status_code == 200
