from typing import Any, Dict, Optional


class LoyaltyError(Exception):
    """
    Base error for the loyalty core.

    message is always user-safe; routes may send it to the caller as-is.
    """

    code = "loyalty_error"

    def __init__(self, message: str, status_code: int = 400, data: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.data = data or {}
        super().__init__(message)


class ValidationError(LoyaltyError):
    code = "validation_error"


class Conflict(LoyaltyError):
    code = "conflict"

    def __init__(self, message: str, *, existing_code: str, expires_at: str):
        super().__init__(
            message,
            409,
            {"existingCode": existing_code, "expiresAt": expires_at},
        )
        self.existing_code = existing_code
        self.expires_at = expires_at


class NoPointsAccount(LoyaltyError):
    code = "no_points_account"

    def __init__(self, message: str = "No loyalty points found for your account"):
        super().__init__(message, 404)


class InsufficientPoints(LoyaltyError):
    code = "insufficient_points"

    def __init__(self, available: int):
        super().__init__(f"You only have {available} points available", 400, {"available": available})
        self.available = available


class PolicyViolation(LoyaltyError):
    code = "policy_violation"

    def __init__(self, message: str, *, max_redeemable: Optional[int] = None):
        data = {} if max_redeemable is None else {"maxRedeemable": max_redeemable}
        super().__init__(message, 400, data)
        self.max_redeemable = max_redeemable


class LedgerUnavailable(LoyaltyError):
    code = "ledger_unavailable"

    def __init__(self, message: str = "Could not load your points balance. Please try again."):
        super().__init__(message, 503)


class ExternalProvisioningError(LoyaltyError):
    code = "provisioning_failed"

    def __init__(self, message: str = "Failed to create discount code. Please try again."):
        super().__init__(message, 502)


class RecordingError(LoyaltyError):
    code = "recording_failed"

    def __init__(self, message: str = "Failed to create discount code. Please try again."):
        super().__init__(message, 500)


class LedgerUpdateError(LoyaltyError):
    code = "ledger_update_failed"

    def __init__(self, discount_code: str, expires_at: str):
        super().__init__(
            "Your discount code was created but your points balance could not be updated. "
            "Please retry later or contact support.",
            500,
            {"discountCode": discount_code, "expiresAt": expires_at},
        )
        self.discount_code = discount_code


class ShopifyAPIError(Exception):
    """Raised by ShopifyClient once retries are exhausted. Never shown to callers."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
