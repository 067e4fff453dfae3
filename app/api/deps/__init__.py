"""API dependencies - re-exports from submodules."""

from .auth import (
    AdminUser,
    CurrentUser,
    DbSession,
    decode_access_token,
    get_current_user,
    require_admin,
    security,
)
from .billing import (
    BillingGateway,
    Processor,
    get_billing_gateway,
    get_webhook_processor,
)

__all__ = [
    # Auth
    "security",
    "decode_access_token",
    "get_current_user",
    "require_admin",
    "DbSession",
    "CurrentUser",
    "AdminUser",
    # Billing
    "get_billing_gateway",
    "get_webhook_processor",
    "BillingGateway",
    "Processor",
]
