from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


class ForbiddenError(HTTPException):
    """Raised when user lacks permission to access a resource."""

    def __init__(self, message: str = "Not authorized to access this resource"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=message,
        )


class ValidationError(HTTPException):
    """Raised when request validation fails."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Billing errors
# ─────────────────────────────────────────────────────────────────────────────


class SignatureError(Exception):
    """Inbound webhook payload failed signature verification."""

    def __init__(self, message: str = "Invalid webhook signature"):
        self.message = message
        super().__init__(message)


class GatewayError(Exception):
    """Outbound call to the billing provider failed.

    `user_message` is the provider's customer-facing explanation (card declined,
    invalid price, ...) when it supplied one.
    """

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        code: str | None = None,
        http_status: int | None = None,
    ):
        self.message = message
        self.user_message = user_message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class UserResolutionWarning(UserWarning):
    """A webhook event referenced a user that could not be located."""


class TimestampValidationWarning(UserWarning):
    """A provider period-end timestamp was unusable and replaced by a fallback."""
