# Models module
from bazaarmkt.models.user import User, UserPaymentMethod, Artisan
from bazaarmkt.models.product import Product, ProductType, ProductStatus, INVENTORY_FIELDS
from bazaarmkt.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    PAYMENT_TRANSITIONS,
)
from bazaarmkt.models.wallet import (
    Wallet,
    WalletTransaction,
    PayoutSchedule,
    TransactionType,
    TransactionStatus,
    LedgerImmutableError,
)
from bazaarmkt.models.platform_settings import PlatformSettings, PLATFORM_SETTINGS_ID
from bazaarmkt.models.notification import Notification, NotificationType, NotificationPriority
from bazaarmkt.models.scheduler_lock import SchedulerLock

__all__ = [
    "User",
    "UserPaymentMethod",
    "Artisan",
    "Product",
    "ProductType",
    "ProductStatus",
    "INVENTORY_FIELDS",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "PAYMENT_TRANSITIONS",
    "Wallet",
    "WalletTransaction",
    "PayoutSchedule",
    "TransactionType",
    "TransactionStatus",
    "LedgerImmutableError",
    "PlatformSettings",
    "PLATFORM_SETTINGS_ID",
    "Notification",
    "NotificationType",
    "NotificationPriority",
    "SchedulerLock",
]
