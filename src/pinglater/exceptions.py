"""PingLater exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from PingLaterError for easy catching.
"""

from __future__ import annotations


class PingLaterError(Exception):
    """Base exception for all PingLater errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "pinglater_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(PingLaterError):
    """Invalid input provided.

    Raised when a destination registration or update fails validation.
    Invalid input is never persisted.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(PingLaterError):
    """Resource not found.

    Raised both when a destination does not exist and when it belongs to
    another user. The two cases are indistinguishable to the caller.

    Attributes:
        resource_type: Type of resource (e.g., "webhook").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(PingLaterError):
    """Storage operation failed."""

    code: str = "storage_error"


class ConfigurationError(PingLaterError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"


class AuthenticationError(PingLaterError):
    """Authentication failed.

    Raised when authentication credentials are invalid or missing.
    """

    code: str = "authentication_error"


class AuthorizationError(PingLaterError):
    """Authorization failed.

    Raised when the authenticated identity lacks the required scope.
    """

    code: str = "authorization_error"
