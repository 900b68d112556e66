"""
Error types for manifest-back.

Per-request errors are translated to HTTP status codes by
``manifest_back.runtime.exception_handlers``. ``ConfigurationError`` is
raised at boot only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from manifest_back.runtime.validation import FieldError


class ManifestBackError(Exception):
    """Base exception for all manifest-back errors."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(ManifestBackError):
    """
    Raised when the manifest cannot be turned into a working schema.

    Examples:
    - Property type with no column mapping
    - Relationship pointing at an unknown entity
    - Many-to-many pair with two owning sides
    - Duplicate entity slug
    """


class NotFoundError(ManifestBackError):
    """Raised for an unknown entity slug or item id."""

    status_code = 404


class BadRequestError(ManifestBackError):
    """
    Raised when a request cannot be turned into a query.

    Examples:
    - Filter key without an operator suffix
    - Filter or order property that does not exist or is hidden
    - Malformed ``_in`` list
    - Delete blocked by one-to-many dependents
    """

    status_code = 400


class ValidationFailedError(ManifestBackError):
    """Raised when a candidate entity fails validation. Carries the field errors."""

    status_code = 400

    def __init__(self, errors: list[FieldError], message: str = "Validation failed"):
        self.errors = errors
        super().__init__(message)


class ForbiddenError(ManifestBackError):
    """Raised when a non-admin request touches an admin-only entity."""

    status_code = 403
