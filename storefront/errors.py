"""
Checkout error taxonomy.

Every error carries the HTTP status it maps to at the request boundary and a
short message that is safe to show to shoppers. Provider response bodies are
kept on the exception for logging only.
"""
from __future__ import annotations


class CheckoutError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(CheckoutError):
    """A required secret or credential is not configured."""
    status_code = 500


class ValidationError(CheckoutError):
    """Bad client input."""
    status_code = 400


class NotFoundError(CheckoutError):
    status_code = 404


class UpstreamError(CheckoutError):
    """The payment provider rejected the call."""

    def __init__(self, provider: str, status: int | None, body: str = "") -> None:
        super().__init__(f"{provider} request failed (status {status})")
        self.provider = provider
        self.status = status
        self.body = body
        # Surface provider client errors as-is, everything else as a bad gateway.
        self.status_code = status if status and 400 <= status < 500 else 502


class PaymentNotCompletedError(CheckoutError):
    """Payment exists but is not in a paid state."""
    status_code = 400

    def __init__(self, status: str | None) -> None:
        super().__init__(f"Payment not completed. Status: {status}")
        self.payment_status = status


class PersistenceError(CheckoutError):
    status_code = 500


class MissingUserError(CheckoutError):
    """A paid session carries no user reference."""
    status_code = 500


class InvalidStatusTransitionError(CheckoutError):
    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot change order status from {current} to {requested}")
        self.current = current
        self.requested = requested
