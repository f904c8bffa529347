"""Admin sessions, per-path password gates and API-key checks."""

from l2h.auth.overlay import (
    API_KEY_HEADER,
    PASSWORD_COOKIE_PREFIX,
    SESSION_COOKIE,
    AuthOverlay,
    extract_api_key,
    password_cookie_name,
)
from l2h.auth.session import AdminSession, AdminSessionManager

__all__ = [
    "API_KEY_HEADER",
    "PASSWORD_COOKIE_PREFIX",
    "SESSION_COOKIE",
    "AuthOverlay",
    "extract_api_key",
    "password_cookie_name",
    "AdminSession",
    "AdminSessionManager",
]
