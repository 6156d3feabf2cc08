"""Exception types raised by the record store, backends and services."""

from typing import Optional


class PortalError(Exception):
    """Base exception for all portal errors."""

    def __init__(self, message: str, error_code: str = "PORTAL_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class BackendUnavailable(PortalError):
    """Raised when the remote backend cannot be reached or returns unusable data."""

    def __init__(self, message: str, action: Optional[str] = None):
        self.action = action
        if action:
            message = f"{action}: {message}"
        super().__init__(message, error_code="BACKEND_UNAVAILABLE")


class NotFound(PortalError):
    """Raised when a referenced application or code does not exist."""

    def __init__(self, kind: str, identifier: str, message: Optional[str] = None):
        self.kind = kind
        self.identifier = identifier
        # Errors relayed from the collaborator keep its wording
        super().__init__(message or f"{kind} '{identifier}' not found", error_code="NOT_FOUND")


class CorruptRecord(PortalError):
    """Raised when locally serialized data cannot be parsed."""

    def __init__(self, message: str):
        super().__init__(message, error_code="CORRUPT_RECORD")


class ValidationError(PortalError):
    """Raised when submitted fields are malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, error_code="VALIDATION_ERROR")


class CodeGenerationError(PortalError):
    """Raised when no unused invite code could be generated."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Could not generate a unique invite code after {attempts} attempts",
            error_code="CODE_GENERATION_FAILED",
        )
