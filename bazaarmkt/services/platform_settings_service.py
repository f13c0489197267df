"""
Platform settings service.

The ``platform_settings`` singleton overrides the environment defaults for
the minimum payout and the delivery buffer tunables. The merged view is
cached; every update invalidates it.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from bazaarmkt.config import settings
from bazaarmkt.db_types import to_money
from bazaarmkt.models.platform_settings import PlatformSettings, PLATFORM_SETTINGS_ID
from bazaarmkt.services.cache_service import CacheBackend
from bazaarmkt.services.delivery_buffer import BufferConfig

logger = logging.getLogger(__name__)

SETTINGS_CACHE_KEY = "platform_settings:effective"

DECIMAL_FIELDS = (
    "minimum_payout_amount",
    "buffer_percentage",
    "min_buffer",
    "max_buffer",
    "artisan_absorption_limit",
    "auto_approve_threshold",
    "refund_threshold",
)
INTEGER_FIELDS = ("artisan_response_timeout", "quote_validity_period")


class PlatformSettingsError(Exception):
    """Rejected platform settings update."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def environment_defaults(app_settings) -> Dict[str, Any]:
    return {
        "minimum_payout_amount": app_settings.DEFAULT_MINIMUM_PAYOUT,
        "buffer_percentage": app_settings.DELIVERY_BUFFER_PERCENTAGE,
        "min_buffer": app_settings.DELIVERY_MIN_BUFFER,
        "max_buffer": app_settings.DELIVERY_MAX_BUFFER,
        "artisan_absorption_limit": app_settings.ARTISAN_ABSORPTION_LIMIT,
        "auto_approve_threshold": app_settings.AUTO_APPROVE_THRESHOLD,
        "refund_threshold": app_settings.REFUND_THRESHOLD,
        "artisan_response_timeout": app_settings.ARTISAN_RESPONSE_TIMEOUT,
        "quote_validity_period": app_settings.QUOTE_VALIDITY_PERIOD,
    }


def _decode(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Cached values are JSON; restore Decimal and int types."""
    values = {name: Decimal(str(raw[name])) for name in DECIMAL_FIELDS}
    values.update({name: int(raw[name]) for name in INTEGER_FIELDS})
    return values


def _buffer_config(values: Dict[str, Any]) -> BufferConfig:
    return BufferConfig(**{k: v for k, v in values.items() if k != "minimum_payout_amount"})


class PlatformSettingsService:
    """Reads and updates the runtime platform configuration."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheBackend] = None,
        app_settings=None,
    ):
        self.db = db
        self.cache = cache
        self.app_settings = app_settings or settings

    def _merge(self, row: Optional[PlatformSettings]) -> Dict[str, Any]:
        values = environment_defaults(self.app_settings)
        if row is not None:
            for name in DECIMAL_FIELDS + INTEGER_FIELDS:
                override = getattr(row, name)
                if override is not None:
                    values[name] = override
        return values

    async def get_row(self) -> Optional[PlatformSettings]:
        return await self.db.get(PlatformSettings, PLATFORM_SETTINGS_ID)

    async def get_effective(self) -> Dict[str, Any]:
        """Database overrides merged over environment defaults."""
        if self.cache is not None:
            cached = await self.cache.get(SETTINGS_CACHE_KEY)
            if cached is not None:
                return _decode(cached)

        values = self._merge(await self.get_row())

        if self.cache is not None:
            await self.cache.set(
                SETTINGS_CACHE_KEY,
                {name: str(value) for name, value in values.items()},
                ttl=self.app_settings.PLATFORM_SETTINGS_CACHE_TTL,
            )
        return values

    async def get_minimum_payout(self) -> Decimal:
        values = await self.get_effective()
        return to_money(values["minimum_payout_amount"])

    async def get_buffer_config(self) -> BufferConfig:
        return _buffer_config(await self.get_effective())

    async def update(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply overrides. A ``None`` value clears an override so the
        environment default applies again.

        Raises:
            PlatformSettingsError: unknown field, negative minimum, or a
                combination the buffer policy rejects
        """
        unknown = set(changes) - set(DECIMAL_FIELDS + INTEGER_FIELDS)
        if unknown:
            raise PlatformSettingsError("Unknown settings", {"fields": sorted(unknown)})

        minimum = changes.get("minimum_payout_amount")
        if minimum is not None and minimum < 0:
            raise PlatformSettingsError(
                "Minimum payout amount cannot be negative",
                {"minimum_payout_amount": str(minimum)}
            )

        row = await self.get_row()
        if row is None:
            row = PlatformSettings(id=PLATFORM_SETTINGS_ID)
            self.db.add(row)

        for name, value in changes.items():
            setattr(row, name, value)
        await self.db.flush()

        await self.invalidate()

        # Validate the merged result before the caller commits
        values = self._merge(row)
        try:
            _buffer_config(values)
        except ValidationError as e:
            raise PlatformSettingsError(
                "Invalid delivery buffer settings",
                {"errors": [err["msg"] for err in e.errors()]}
            )

        logger.info(f"Platform settings updated: {sorted(changes)}")
        return values

    async def invalidate(self) -> None:
        if self.cache is not None:
            await self.cache.delete(SETTINGS_CACHE_KEY)
