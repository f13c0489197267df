"""Payout run summary schemas."""
from typing import List, Optional

from pydantic import BaseModel


class PayoutResult(BaseModel):
    """Outcome for one wallet in a payout run."""
    wallet_id: str
    artisan_id: str
    amount: str
    status: str  # paid, skipped, error
    reference: Optional[str] = None
    stripe_payout_id: Optional[str] = None
    next_payout_date: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None


class PayoutRunSummary(BaseModel):
    success: bool
    processed: int
    skipped: int
    errors: int
    total: int
    results: List[PayoutResult]
