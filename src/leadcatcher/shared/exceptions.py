"""
Custom exceptions for the application.
"""


class AppError(Exception):
    """Base exception for application errors."""

    status_code: int = 500

    def __init__(self, message: str, code: str = "APP_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(AppError):
    """Malformed input rejected at the boundary."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, "VALIDATION_ERROR")
        self.field = field


class AuthenticationError(AppError):
    """Missing or wrong bearer credentials."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, "AUTHENTICATION_ERROR")


class SignatureVerificationError(AppError):
    """A provider callback carried a missing or invalid signature."""

    status_code = 403

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(message, "INVALID_SIGNATURE")


class ConfigurationError(AppError):
    """A required setting is absent at request time."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message, "CONFIGURATION_ERROR")


class LedgerUnavailableError(AppError):
    """The idempotency ledger could not record a claim.

    Surfaced as a 500 so the provider redelivers the event later.
    """

    status_code = 500

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Could not claim event {event_id}", "LEDGER_UNAVAILABLE")
        self.event_id = event_id


class InvalidPhoneNumberError(ValidationError):
    """A phone number could not be normalized to E.164."""

    def __init__(self, raw: str) -> None:
        super().__init__("Invalid phone number format", field="phone")
        self.raw = raw
