"""Error taxonomy shared by the store, auth overlay, broker and HTTP layer.

Each error carries the HTTP status it maps to, so the server middleware can
translate any ``L2HError`` into a JSON ``{"error": ...}`` response without
knowing where it was raised.
"""

from __future__ import annotations


class L2HError(Exception):
    """Base class for all l2h errors."""

    status: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "", *, details: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, str]:
        """Render as the JSON error body returned to HTTP clients."""
        return {"error": self.message}


class ValidationError(L2HError):
    """Malformed path, port, email or request body. User-correctable."""

    status = 400
    code = "invalid_request"


class InvalidPath(ValidationError):
    code = "invalid_path"


class NotFoundError(L2HError):
    status = 404
    code = "not_found"


class AuthError(L2HError):
    """Missing or invalid session, password or API key."""

    status = 401
    code = "unauthorized"


class AuthRequired(AuthError):
    code = "auth_required"


class Unauthorized(AuthError):
    code = "invalid_credentials"


class ConflictError(L2HError):
    status = 409
    code = "conflict"


class DuplicatePath(ConflictError):
    code = "duplicate_path"


class StorageError(L2HError):
    """I/O or transaction failure in the backing store."""

    status = 500
    code = "storage_error"


class UpstreamError(L2HError):
    """A front node could not be reached or answered unexpectedly."""

    status = 502
    code = "upstream_error"


class CryptoError(L2HError):
    status = 500
    code = "crypto_error"


class CryptoFailure(CryptoError):
    """The system random source or the KDF itself failed."""

    code = "crypto_failure"


class InvalidDigestFormat(CryptoError):
    code = "invalid_digest_format"


def format_error_for_user(error: Exception) -> str:
    """Short, human-readable message for CLI output."""
    if isinstance(error, L2HError):
        return str(error)
    return f"Unexpected error: {error}"
