"""
Stripe Service - webhook authentication and Connect payouts.

Handles:
- Verify webhook signatures over the raw request body
- Look up Connect account payout capability
- Create payouts from a Connect account balance to the artisan's bank
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from bazaarmkt.config import settings
from bazaarmkt.db_types import to_money

logger = logging.getLogger(__name__)


class WebhookVerificationError(Exception):
    """Webhook could not be authenticated. Never retried on our side."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# Webhook event types
class StripeEvent:
    """Stripe webhook event types handled by the settlement service."""
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
    CHARGE_REFUNDED = "charge.refunded"
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    PAYMENT_METHOD_ATTACHED = "payment_method.attached"
    PAYMENT_METHOD_DETACHED = "payment_method.detached"
    PAYOUT_PAID = "payout.paid"
    PAYOUT_FAILED = "payout.failed"
    PAYOUT_CANCELED = "payout.canceled"


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to integer cents."""
    return int(to_money(amount) * 100)


class StripeService:
    """
    Service for talking to Stripe.

    Signature verification is local and needs no API key; the API client
    is created on first use.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE
        self._client: Optional[stripe.StripeClient] = None

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            self._client = stripe.StripeClient(
                self.api_key,
                max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
            )
        return self._client

    def verify_webhook_event(self, body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Authenticate a webhook delivery and parse its envelope.

        Args:
            body: Raw request body bytes, exactly as received
            signature: Stripe-Signature header value

        Returns:
            The event as a plain dict

        Raises:
            WebhookVerificationError: secret missing, header missing,
                signature mismatch, stale timestamp or malformed body
        """
        if not self.webhook_secret:
            logger.error("Stripe webhook secret not configured")
            raise WebhookVerificationError("Webhook secret not configured")

        if not signature:
            logger.warning("Webhook received without Stripe-Signature header")
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            raise WebhookVerificationError("Webhook body is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.webhook_secret,
                self.tolerance,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Invalid webhook signature: {e}")
            raise WebhookVerificationError("Invalid webhook signature")

        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            raise WebhookVerificationError("Webhook body is not valid JSON")

        if not isinstance(event, dict) or "type" not in event:
            raise WebhookVerificationError(
                "Webhook body is not an event envelope",
                {"keys": sorted(event) if isinstance(event, dict) else None}
            )

        return event

    async def get_account_status(self, account_id: str) -> Dict[str, Any]:
        """
        Get payout capability of a Connect account.

        Args:
            account_id: Stripe Connect account ID (acct_...)
        """
        try:
            account = await asyncio.to_thread(self.client.accounts.retrieve, account_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to fetch Stripe account {account_id}: {e}")
            raise

        return {
            "id": account["id"],
            "charges_enabled": account.get("charges_enabled", False),
            "payouts_enabled": account.get("payouts_enabled", False),
            "details_submitted": account.get("details_submitted", False),
        }

    async def create_payout(
        self,
        account_id: str,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Pay out from a Connect account balance to its bank account.

        Calls repeated with the same ``idempotency_key`` return the payout
        Stripe already created instead of sending money twice. Without a key
        the ledger reference is used.

        Returns:
            Payout summary with id, status, method and arrival_date
        """
        params = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "method": "standard",
            "statement_descriptor": "BAZAAR Earnings",
            "metadata": {"reference": reference, **(metadata or {})},
        }
        options = {"stripe_account": account_id, "idempotency_key": idempotency_key or reference}

        try:
            payout = await asyncio.to_thread(self.client.payouts.create, params, options)
        except stripe.StripeError as e:
            logger.error(f"Stripe payout {reference} to {account_id} failed: {e}")
            raise

        logger.info(f"Stripe payout created: {payout['id']} for {account_id} ({amount} {currency})")

        return {
            "id": payout["id"],
            "status": payout.get("status"),
            "method": payout.get("method"),
            "arrival_date": payout.get("arrival_date"),
        }
