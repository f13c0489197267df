"""Delivery buffer request schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from bazaarmkt.services.delivery_buffer import BufferQuote, DeliveryReconciliation


class BufferQuoteRequest(BaseModel):
    estimated_fee: Decimal = Field(..., ge=0, description="Courier estimate before buffer")


class BufferQuoteResponse(BufferQuote):
    quoted_at: datetime
    expires_at: datetime


class ReconcileRequest(BaseModel):
    charged_amount: Decimal = Field(..., ge=0, description="Delivery amount the customer paid")
    actual_cost: Decimal = Field(..., ge=0, description="Final courier cost")


class ReconcileResponse(DeliveryReconciliation):
    requires_artisan_response: bool = False
    artisan_response_deadline: Optional[datetime] = None
