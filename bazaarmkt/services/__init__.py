# Services module
from bazaarmkt.services.cache_service import CacheBackend, InMemoryCache, RedisCache, create_cache
from bazaarmkt.services.stripe_service import StripeService, StripeEvent, WebhookVerificationError
from bazaarmkt.services.inventory_service import InventoryService
from bazaarmkt.services.notification_service import NotificationService
from bazaarmkt.services.wallet_service import (
    WalletLedger,
    LedgerError,
    PayoutError,
    WalletConfigurationError,
)
from bazaarmkt.services.platform_settings_service import PlatformSettingsService, PlatformSettingsError
from bazaarmkt.services.payout_service import PayoutScheduler, PayoutRunInProgressError
from bazaarmkt.services.webhook_service import StripeWebhookService, WebhookOutcome

__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "RedisCache",
    "create_cache",
    "StripeService",
    "StripeEvent",
    "WebhookVerificationError",
    "InventoryService",
    "NotificationService",
    "WalletLedger",
    "LedgerError",
    "PayoutError",
    "WalletConfigurationError",
    "PlatformSettingsService",
    "PlatformSettingsError",
    # Payouts
    "PayoutScheduler",
    "PayoutRunInProgressError",
    # Webhooks
    "StripeWebhookService",
    "WebhookOutcome",
]
