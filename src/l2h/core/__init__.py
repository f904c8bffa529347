"""Core configuration, error types and logging setup."""

from l2h.core.config import (
    NodeConfig,
    NodeRole,
    load_config_from_file,
)
from l2h.core.exceptions import (
    AuthError,
    AuthRequired,
    ConflictError,
    CryptoFailure,
    DuplicatePath,
    InvalidDigestFormat,
    InvalidPath,
    L2HError,
    NotFoundError,
    StorageError,
    Unauthorized,
    UpstreamError,
    ValidationError,
)
from l2h.core.logging import configure_logging, get_logger

__all__ = [
    "NodeConfig",
    "NodeRole",
    "load_config_from_file",
    "L2HError",
    "ValidationError",
    "InvalidPath",
    "NotFoundError",
    "AuthError",
    "AuthRequired",
    "Unauthorized",
    "ConflictError",
    "DuplicatePath",
    "StorageError",
    "UpstreamError",
    "CryptoFailure",
    "InvalidDigestFormat",
    "configure_logging",
    "get_logger",
]
