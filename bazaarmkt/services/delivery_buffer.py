"""
Delivery cost buffer policy.

Courier quotes can rise between checkout and dispatch (surge pricing). The
customer is charged the estimated fee plus a buffer up front; when the real
cost still exceeds what was charged, these rules decide who absorbs the
difference. When the real cost is lower, they decide whether the
difference is worth refunding.

Everything here is a pure function of (amount, BufferConfig).
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bazaarmkt.db_types import CENTS

ZERO = Decimal("0")


class BufferConfig(BaseModel):
    """Tunables of the buffer policy. Amounts are in major currency units."""
    model_config = ConfigDict(frozen=True)

    buffer_percentage: Decimal = Field(default=Decimal("20"), ge=0)
    min_buffer: Decimal = Field(default=Decimal("2.00"), ge=0)
    max_buffer: Decimal = Field(default=Decimal("10.00"), ge=0)
    artisan_absorption_limit: Decimal = Field(default=Decimal("5.00"), ge=0)
    auto_approve_threshold: Decimal = Field(default=Decimal("0.50"), ge=0)
    refund_threshold: Decimal = Field(default=Decimal("0.25"), ge=0)
    artisan_response_timeout: int = Field(default=7200, ge=0)  # seconds
    quote_validity_period: int = Field(default=900, ge=0)  # seconds

    @model_validator(mode="after")
    def check_ranges(self):
        if self.min_buffer > self.max_buffer:
            raise ValueError("min_buffer cannot exceed max_buffer")
        if self.auto_approve_threshold > self.artisan_absorption_limit:
            raise ValueError("auto_approve_threshold cannot exceed artisan_absorption_limit")
        return self

    @classmethod
    def from_settings(cls, app_settings) -> "BufferConfig":
        return cls(
            buffer_percentage=app_settings.DELIVERY_BUFFER_PERCENTAGE,
            min_buffer=app_settings.DELIVERY_MIN_BUFFER,
            max_buffer=app_settings.DELIVERY_MAX_BUFFER,
            artisan_absorption_limit=app_settings.ARTISAN_ABSORPTION_LIMIT,
            auto_approve_threshold=app_settings.AUTO_APPROVE_THRESHOLD,
            refund_threshold=app_settings.REFUND_THRESHOLD,
            artisan_response_timeout=app_settings.ARTISAN_RESPONSE_TIMEOUT,
            quote_validity_period=app_settings.QUOTE_VALIDITY_PERIOD,
        )


class BufferQuote(BaseModel):
    """Buffered delivery price quoted to the customer."""
    estimated_fee: Decimal
    buffer_amount: Decimal
    buffer_percentage: Decimal  # effective percentage after clamping
    charged_amount: Decimal
    min_buffer: Decimal
    max_buffer: Decimal


class ExcessDecision(str, Enum):
    """What to do when the real delivery cost exceeds the charged amount."""
    AUTO_APPROVE = "auto_approve"
    ASK = "ask"
    AUTO_DECLINE = "auto_decline"


class ArtisanResponse(str, Enum):
    APPROVED = "approved"
    DECLINED = "declined"
    AWAITING = "awaiting"


class DeliveryReconciliation(BaseModel):
    """Outcome of comparing the charged delivery price with the real cost."""
    charged_amount: Decimal
    actual_cost: Decimal
    excess_amount: Decimal = ZERO
    refund_amount: Decimal = ZERO
    decision: Optional[ExcessDecision] = None
    refund_due: bool = False


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _cents(value) -> Decimal:
    return _dec(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_buffer(estimated_fee: Decimal, config: BufferConfig) -> BufferQuote:
    """
    Pad an estimated delivery fee with the configured buffer.

    buffer = fee * percentage / 100, clamped to [min_buffer, max_buffer].

    Raises:
        ValueError: negative fee
    """
    fee = _dec(estimated_fee)
    if fee < 0:
        raise ValueError("estimated_fee cannot be negative")

    buffer = fee * config.buffer_percentage / 100
    buffer = max(config.min_buffer, min(buffer, config.max_buffer))
    buffer = _cents(buffer)

    if fee > 0:
        percentage = _cents(buffer / fee * 100)
    else:
        percentage = _cents(ZERO)

    return BufferQuote(
        estimated_fee=_cents(fee),
        buffer_amount=buffer,
        buffer_percentage=percentage,
        charged_amount=_cents(fee + buffer),
        min_buffer=config.min_buffer,
        max_buffer=config.max_buffer,
    )


def decide_on_excess(excess_amount: Decimal, config: BufferConfig) -> ExcessDecision:
    """Small increases are absorbed, large ones cancel the delivery, the rest go to the artisan."""
    excess = _dec(excess_amount)
    if excess <= config.auto_approve_threshold:
        return ExcessDecision.AUTO_APPROVE
    if excess > config.artisan_absorption_limit:
        return ExcessDecision.AUTO_DECLINE
    return ExcessDecision.ASK


def should_refund(refund_amount: Decimal, config: BufferConfig) -> bool:
    return _dec(refund_amount) >= config.refund_threshold


def reconcile_delivery_cost(
    charged_amount: Decimal,
    actual_cost: Decimal,
    config: BufferConfig,
) -> DeliveryReconciliation:
    """Compare what the customer paid for delivery with what it really cost."""
    charged = _cents(charged_amount)
    actual = _cents(actual_cost)
    if charged < 0 or actual < 0:
        raise ValueError("amounts cannot be negative")

    outcome = DeliveryReconciliation(charged_amount=charged, actual_cost=actual)
    if actual > charged:
        outcome.excess_amount = actual - charged
        outcome.decision = decide_on_excess(outcome.excess_amount, config)
    elif actual < charged:
        outcome.refund_amount = charged - actual
        outcome.refund_due = should_refund(outcome.refund_amount, config)
    return outcome


def resolve_artisan_response(
    approved: Optional[bool],
    asked_at: datetime,
    now: datetime,
    config: BufferConfig,
) -> ArtisanResponse:
    """
    Settle an artisan's answer to an ``ask`` decision.

    No answer within ``artisan_response_timeout`` counts as a decline, and
    so does an answer that arrives after the window closed.
    """
    deadline = asked_at + timedelta(seconds=config.artisan_response_timeout)
    if now > deadline:
        return ArtisanResponse.DECLINED
    if approved is None:
        return ArtisanResponse.AWAITING
    return ArtisanResponse.APPROVED if approved else ArtisanResponse.DECLINED


def quote_expires_at(quoted_at: datetime, config: BufferConfig) -> datetime:
    return quoted_at + timedelta(seconds=config.quote_validity_period)


def is_quote_valid(quoted_at: datetime, now: datetime, config: BufferConfig) -> bool:
    return now <= quote_expires_at(quoted_at, config)
