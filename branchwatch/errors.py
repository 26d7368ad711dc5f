"""Error taxonomy. Every error carries a human-readable message."""

from __future__ import annotations


class BranchwatchError(Exception):
    """Base class for domain errors. `status_code` is the HTTP mapping used by the server."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InsufficientEvidence(BranchwatchError):
    """No photo, audio transcript or text was supplied."""
    status_code = 422


class ClassificationError(BranchwatchError):
    """The model answer was not schema-valid or did not fit the configured settings."""
    status_code = 422


class ValidationError(BranchwatchError):
    status_code = 422


class NotFound(BranchwatchError):
    status_code = 404


class DuplicateId(BranchwatchError):
    status_code = 409


class RemoteServiceError(BranchwatchError):
    """Inference or storage call failed or timed out."""
    status_code = 502


class PermissionDenied(BranchwatchError):
    status_code = 403
