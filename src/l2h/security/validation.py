"""Input validation for paths, ports and emails."""

from __future__ import annotations

import re

from l2h.core.exceptions import InvalidPath, ValidationError

INVALID_PATH_CHARS = frozenset(" \\?#&=%")

SENSITIVE_WORDS = (
    "admin",
    "administrator",
    "root",
    "system",
    "config",
    "api",
    "internal",
    "private",
    "secret",
    "password",
    "login",
    "logout",
    "auth",
    "token",
    "key",
)

MIN_ADMIN_PASSWORD_LENGTH = 6

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_path(path: str) -> bool:
    """Check a binding or admin path segment.

    Must be non-empty, must not start or end with "/", and must not contain
    whitespace or URL-reserved characters.
    """
    if not path:
        return False
    if path.startswith("/") or path.endswith("/"):
        return False
    if any(c.isspace() for c in path):
        return False
    return not any(c in INVALID_PATH_CHARS for c in path)


def validate_path(path: str) -> str:
    if not is_valid_path(path):
        raise InvalidPath("invalid path", details=repr(path))
    return path


def contains_sensitive_word(path: str) -> bool:
    lowered = path.lower()
    return any(word in lowered for word in SENSITIVE_WORDS)


def is_valid_port(port: object) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and 0 < port <= 65535


def validate_port(port: object) -> int:
    if not is_valid_port(port):
        raise ValidationError("invalid port", details=repr(port))
    return port  # type: ignore[return-value]


def is_valid_email(email: object) -> bool:
    return isinstance(email, str) and _EMAIL_RE.match(email) is not None


def validate_email(email: object) -> str | None:
    """Empty email is allowed (the field is optional)."""
    if email is None or email == "":
        return None
    if not is_valid_email(email):
        raise ValidationError("invalid email", details=repr(email))
    return email  # type: ignore[return-value]


def validate_admin_password(password: str) -> str:
    if len(password) < MIN_ADMIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"admin password must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters"
        )
    return password
