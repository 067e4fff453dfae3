from app.domain.order_operations import order_ops
from app.domain.product_operations import product_ops
from app.domain.subscription_operations import subscription_ops
from app.domain.user_operations import user_ops

__all__ = [
    "user_ops",
    "product_ops",
    "order_ops",
    "subscription_ops",
]
