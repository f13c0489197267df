"""Wallet and ledger schemas for the earnings API."""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from pydantic import AliasChoices, BaseModel, Field

from bazaarmkt.schemas.base import BaseResponseSchema, BaseUpdateSchema


class WalletResponse(BaseResponseSchema):
    """Wallet balance and payout settings."""
    id: uuid.UUID
    artisan_id: uuid.UUID
    balance: Decimal
    currency: str
    payout_enabled: bool
    payout_schedule: str
    next_payout_date: Optional[date] = None
    last_payout_date: Optional[datetime] = None
    minimum_payout: Optional[Decimal] = None
    total_payouts: Decimal
    last_payout_id: Optional[str] = None
    updated_at: datetime


class WalletTransactionResponse(BaseResponseSchema):
    """One ledger entry."""
    id: uuid.UUID
    type: str
    amount: Decimal
    description: str
    status: str
    reference: str
    balance_after: Optional[Decimal] = None
    stripe_payout_id: Optional[str] = None
    order_id: Optional[uuid.UUID] = None
    details: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("details", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime


class WalletTransactionList(BaseModel):
    items: List[WalletTransactionResponse]
    limit: int
    offset: int


class PayoutSettingsUpdate(BaseUpdateSchema):
    """Payout settings change. Unknown schedules are rejected by the ledger."""
    schedule: Optional[str] = Field(None, description="weekly or monthly")
    enabled: Optional[bool] = None
    minimum_payout: Optional[Decimal] = Field(None, ge=0)
    next_payout_date: Optional[date] = None
