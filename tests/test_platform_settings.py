"""Tests for PlatformSettingsService."""
from decimal import Decimal
from types import SimpleNamespace

import pytest

from bazaarmkt.config import settings
from bazaarmkt.services.platform_settings_service import (
    SETTINGS_CACHE_KEY,
    PlatformSettingsError,
    PlatformSettingsService,
)


class TestEffectiveSettings:
    """Tests for reading merged settings."""

    async def test_environment_defaults(self, db):
        values = await PlatformSettingsService(db).get_effective()

        assert values["minimum_payout_amount"] == settings.DEFAULT_MINIMUM_PAYOUT
        assert values["buffer_percentage"] == settings.DELIVERY_BUFFER_PERCENTAGE

    async def test_override_wins(self, db):
        service = PlatformSettingsService(db)
        await service.update({"minimum_payout_amount": Decimal("40.00")})

        assert await service.get_minimum_payout() == Decimal("40.00")

    async def test_cached_values_keep_types(self, db, cache):
        service = PlatformSettingsService(db, cache)
        await service.get_effective()

        values = await service.get_effective()

        assert await cache.get(SETTINGS_CACHE_KEY) is not None
        assert isinstance(values["min_buffer"], Decimal)
        assert isinstance(values["quote_validity_period"], int)

    async def test_update_invalidates_cache(self, db, cache):
        service = PlatformSettingsService(db, cache)
        await service.get_effective()

        await service.update({"max_buffer": Decimal("8.00")})
        config = await service.get_buffer_config()

        assert config.max_buffer == Decimal("8.00")

    async def test_custom_environment(self, db):
        app_settings = SimpleNamespace(
            DEFAULT_MINIMUM_PAYOUT=Decimal("10.00"),
            DELIVERY_BUFFER_PERCENTAGE=Decimal("10"),
            DELIVERY_MIN_BUFFER=Decimal("1.00"),
            DELIVERY_MAX_BUFFER=Decimal("5.00"),
            ARTISAN_ABSORPTION_LIMIT=Decimal("3.00"),
            AUTO_APPROVE_THRESHOLD=Decimal("0.25"),
            REFUND_THRESHOLD=Decimal("0.10"),
            ARTISAN_RESPONSE_TIMEOUT=600,
            QUOTE_VALIDITY_PERIOD=300,
            PLATFORM_SETTINGS_CACHE_TTL=60,
        )

        service = PlatformSettingsService(db, app_settings=app_settings)

        assert await service.get_minimum_payout() == Decimal("10.00")
        assert (await service.get_buffer_config()).max_buffer == Decimal("5.00")


class TestUpdateValidation:
    """Tests for rejected updates."""

    async def test_unknown_field(self, db):
        with pytest.raises(PlatformSettingsError):
            await PlatformSettingsService(db).update({"commission_rate": Decimal("0.1")})

    async def test_negative_minimum(self, db):
        with pytest.raises(PlatformSettingsError):
            await PlatformSettingsService(db).update({"minimum_payout_amount": Decimal("-5")})

    async def test_min_buffer_above_max(self, db):
        with pytest.raises(PlatformSettingsError) as exc_info:
            await PlatformSettingsService(db).update({"min_buffer": Decimal("11.00")})

        assert exc_info.value.details["errors"]
