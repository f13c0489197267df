"""Column types and helpers shared by the settlement models.

Everything here works on both PostgreSQL (production) and SQLite (tests).
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import JSON, Numeric, DateTime, Uuid

# JSONB is PostgreSQL-specific, JSON works with both backends
JSONType = JSON

# Renders as native UUID on PostgreSQL and CHAR(32) elsewhere
UUIDType = Uuid

# All balances and order amounts are stored in major currency units
Money = Numeric(14, 2)

TZDateTime = DateTime(timezone=True)

CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    """Quantize any numeric value to cents."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def from_minor_units(amount) -> Decimal:
    """Convert a provider amount in cents to major units."""
    return to_money(Decimal(int(amount or 0)) / 100)
