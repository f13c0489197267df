"""Platform settings schemas."""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from bazaarmkt.schemas.base import BaseUpdateSchema


class PlatformSettingsResponse(BaseModel):
    """Effective settings: database overrides merged over defaults."""
    minimum_payout_amount: Decimal
    buffer_percentage: Decimal
    min_buffer: Decimal
    max_buffer: Decimal
    artisan_absorption_limit: Decimal
    auto_approve_threshold: Decimal
    refund_threshold: Decimal
    artisan_response_timeout: int
    quote_validity_period: int


class PlatformSettingsUpdate(BaseUpdateSchema):
    """Send null to drop an override and fall back to the default."""
    minimum_payout_amount: Optional[Decimal] = Field(None, ge=0)
    buffer_percentage: Optional[Decimal] = Field(None, ge=0)
    min_buffer: Optional[Decimal] = Field(None, ge=0)
    max_buffer: Optional[Decimal] = Field(None, ge=0)
    artisan_absorption_limit: Optional[Decimal] = Field(None, ge=0)
    auto_approve_threshold: Optional[Decimal] = Field(None, ge=0)
    refund_threshold: Optional[Decimal] = Field(None, ge=0)
    artisan_response_timeout: Optional[int] = Field(None, ge=0)
    quote_validity_period: Optional[int] = Field(None, ge=0)
