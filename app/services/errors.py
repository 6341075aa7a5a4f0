"""
Domain Errors

Errors raised by the promotion and payment services. Each carries a
human-readable message and the HTTP status the API layer translates it to.
"""

from typing import Optional


class DomainError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """Promo code or payment not found."""

    status_code = 404


class InvalidStateError(DomainError):
    """Expired, inactive or usage-exhausted promo code, or a disallowed operation."""

    status_code = 400


class IneligibleError(DomainError):
    """Promo code does not apply to the selected course(s)."""

    status_code = 400


class BelowMinimumError(DomainError):
    """Subtotal below the promo code's minimum purchase amount."""

    status_code = 400


class UnauthorizedError(DomainError):
    """Missing or insufficient role."""

    status_code = 403


class GatewayError(DomainError):
    """A payment provider rejected the request or could not be reached."""

    status_code = 502

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retryable: bool = False,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable or timed_out
        self.timed_out = timed_out


class SignatureInvalidError(DomainError):
    """Webhook payload could not be authenticated."""

    status_code = 400


class InconsistentStateError(DomainError):
    """Conflicting terminal-state transition; requires manual reconciliation."""

    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.target = target
