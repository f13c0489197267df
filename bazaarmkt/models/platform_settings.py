from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Integer
from sqlalchemy.orm import Mapped, mapped_column

from bazaarmkt.database import Base
from bazaarmkt.db_types import Money, TZDateTime, utcnow


PLATFORM_SETTINGS_ID = 1


class PlatformSettings(Base):
    """
    Singleton row of runtime-tunable platform configuration.
    NULL columns fall back to the environment defaults in Settings.
    """
    __tablename__ = "platform_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=PLATFORM_SETTINGS_ID)

    # Payouts
    minimum_payout_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    # Delivery buffer
    buffer_percentage: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    min_buffer: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    max_buffer: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    artisan_absorption_limit: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    auto_approve_threshold: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    refund_threshold: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    artisan_response_timeout: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quote_validity_period: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )
