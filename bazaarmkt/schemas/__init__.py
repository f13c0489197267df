# Schemas module
from bazaarmkt.schemas.webhook import WebhookAck, WebhookError
from bazaarmkt.schemas.wallet import (
    WalletResponse,
    WalletTransactionResponse,
    WalletTransactionList,
    PayoutSettingsUpdate,
)
from bazaarmkt.schemas.payout import PayoutResult, PayoutRunSummary
from bazaarmkt.schemas.delivery import (
    BufferQuoteRequest,
    BufferQuoteResponse,
    ReconcileRequest,
    ReconcileResponse,
)
from bazaarmkt.schemas.platform_settings import PlatformSettingsResponse, PlatformSettingsUpdate

__all__ = [
    "WebhookAck",
    "WebhookError",
    "WalletResponse",
    "WalletTransactionResponse",
    "WalletTransactionList",
    "PayoutSettingsUpdate",
    "PayoutResult",
    "PayoutRunSummary",
    "BufferQuoteRequest",
    "BufferQuoteResponse",
    "ReconcileRequest",
    "ReconcileResponse",
    "PlatformSettingsResponse",
    "PlatformSettingsUpdate",
]
