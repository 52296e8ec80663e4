"""
Application exceptions.

Services raise these; `main.py` maps them to HTTP status codes.
"""


class RewindException(Exception):
    """Base exception for all Rewind application exceptions."""
    pass


class BadRequestError(RewindException):
    """Raised on malformed input or a violated precondition."""
    pass


class NotFoundError(RewindException):
    """Raised when a requested resource is not found."""
    pass


class AuthenticationError(RewindException):
    """Raised when the bearer token is missing or invalid."""
    pass


class AuthorizationError(RewindException):
    """Raised when the caller does not own the addressed entity."""
    pass


class SignatureInvalidError(RewindException):
    """Raised when a payment or webhook signature does not match."""
    pass


class PaymentRequiredError(RewindException):
    """Raised when a premium route is hit without an active subscription."""

    code = "SUBSCRIPTION_REQUIRED"

    def __init__(self, message: str = "An active subscription is required to access this feature"):
        super().__init__(message)
        self.message = message


class ServiceUnavailableError(RewindException):
    """Raised when a feature is disabled by configuration."""
    pass


class ExternalServiceError(RewindException):
    """Raised when an upstream service fails."""
    pass
