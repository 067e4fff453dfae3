from app.models.billing import BillingEvent, BillingEventRead, BillingEventType
from app.models.order import Order, OrderStatus, PaymentStatus
from app.models.product import BillingInterval, BillingType, Product, ProductRead
from app.models.subscription import (
    ENTITLED_STATUSES,
    SubscriptionRecord,
    SubscriptionRecordRead,
    SubscriptionStatus,
)
from app.models.user import User

__all__ = [
    "User",
    "SubscriptionRecord",
    "SubscriptionRecordRead",
    "SubscriptionStatus",
    "ENTITLED_STATUSES",
    "Product",
    "ProductRead",
    "BillingType",
    "BillingInterval",
    "Order",
    "OrderStatus",
    "PaymentStatus",
    "BillingEvent",
    "BillingEventRead",
    "BillingEventType",
]
