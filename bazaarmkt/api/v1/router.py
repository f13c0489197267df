from fastapi import APIRouter

from bazaarmkt.api.v1.endpoints import (
    # Payment provider
    webhooks,
    # Batch triggers
    cron,
    # Earnings
    wallets,
    # Delivery pricing
    delivery,
    # Admin
    platform_settings,
)

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Webhooks ====================
api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["Webhooks"]
)

# ==================== Cron ====================
api_router.include_router(
    cron.router,
    prefix="/cron",
    tags=["Cron"]
)

# ==================== Wallets & Payouts ====================
api_router.include_router(
    wallets.router,
    prefix="/wallets",
    tags=["Wallets"]
)

# ==================== Delivery Buffer ====================
api_router.include_router(
    delivery.router,
    prefix="/delivery",
    tags=["Delivery"]
)

# ==================== Platform Settings ====================
api_router.include_router(
    platform_settings.router,
    prefix="/platform-settings",
    tags=["Platform Settings"]
)
