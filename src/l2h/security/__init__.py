"""Security primitives: password hashing, tokens and input validation."""

from l2h.security.credentials import (
    Argon2Parameters,
    PasswordCodec,
    StoredPassword,
    hash_password,
    is_hashed,
    random_token,
    verify_password,
)
from l2h.security.validation import (
    contains_sensitive_word,
    is_valid_email,
    is_valid_path,
    is_valid_port,
    validate_admin_password,
    validate_email,
    validate_path,
    validate_port,
)

__all__ = [
    "Argon2Parameters",
    "PasswordCodec",
    "StoredPassword",
    "hash_password",
    "is_hashed",
    "random_token",
    "verify_password",
    "contains_sensitive_word",
    "is_valid_email",
    "is_valid_path",
    "is_valid_port",
    "validate_admin_password",
    "validate_email",
    "validate_path",
    "validate_port",
]
