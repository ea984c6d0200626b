"""Shared error classes for billing reconciliation."""

from __future__ import annotations


class BillingError(RuntimeError):
    """Base exception raised by the billing services."""

    def __init__(self, message: str, code: str = "BILLING_ERROR") -> None:
        super().__init__(message)
        self.code = code


class SubscriptionPersistenceError(BillingError):
    """Raised when the repository fails to write subscription state."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="SUBSCRIPTION_PERSIST_FAILED")


class PayPalError(BillingError):
    """Raised when the PayPal REST API fails or answers unexpectedly."""

    def __init__(self, message: str, code: str = "PAYPAL_ERROR") -> None:
        super().__init__(message, code=code)


class PayPalVerificationError(PayPalError):
    """Raised when a PayPal webhook cannot be verified."""

    def __init__(self, message: str = "PayPal webhook verification failed") -> None:
        super().__init__(message, code="PAYPAL_VERIFICATION_FAILED")
