"""Error hierarchy for the registration desk.

Every failure the HTTP layer can report maps to one of these exceptions. The
service registers a single handler for the base class so the wire shape stays
uniform: ``{"error": <code or message>}`` with the exception's status code.
"""

from __future__ import annotations

from typing import Dict, Iterable


class RegistrationDeskError(Exception):
    """Base class for errors that resolve to a structured JSON response."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.code
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_response(self) -> Dict[str, str]:
        return {"error": self.code}


class ValidationError(RegistrationDeskError):
    """A required field or mandatory upload is missing or blank."""

    status_code = 400
    code = "validation_failed"

    def __init__(self, message: str, *, fields: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.fields = tuple(fields)

    def to_response(self) -> Dict[str, str]:
        # Validation messages are meant for the player filling in the form.
        return {"error": self.message}


class MissingUpload(ValidationError):
    """One of the mandatory file parts was not supplied."""


class Unauthenticated(RegistrationDeskError):
    status_code = 401
    code = "auth_required"


class NotFound(RegistrationDeskError):
    status_code = 404
    code = "not_found"


class UploadTooLarge(RegistrationDeskError):
    status_code = 413
    code = "upload_too_large"


class StorageFailure(RegistrationDeskError):
    """The record store or the upload directory failed.

    ``message`` carries the underlying detail for the server log; clients only
    ever see ``code``.
    """

    status_code = 500
    code = "storage_failed"


class NotifierFailure(Exception):
    """Sending a notification failed. Never surfaced as a request failure."""


__all__ = [
    "MissingUpload",
    "NotFound",
    "NotifierFailure",
    "RegistrationDeskError",
    "StorageFailure",
    "Unauthenticated",
    "UploadTooLarge",
    "ValidationError",
]
