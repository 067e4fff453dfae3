from app.api.v1 import (
    payments,
    products,
    subscriptions,
    webhooks,
)

__all__ = [
    "subscriptions",
    "payments",
    "products",
    "webhooks",
]
