"""Domain-specific exceptions.

These represent rule violations in the start-page data model. They are raised
by the state store and model helpers and handled by the caller that triggered
the mutation.
"""


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DomainException):
    """Raised when a value violates the data model (ranges, icon size, ids)."""


class ResourceNotFoundError(DomainException):
    """Raised when a shortcut id does not exist."""
