"""Authentication overlay on top of the binding store.

Three independent gates:

* admin console: server-side session looked up from the ``l2h_session``
  cookie;
* per-path password: the ``l2h_auth_<path>`` cookie re-verified against
  the binding's stored password on every request, with legacy plaintext
  passwords rehashed on first successful use;
* API key: ``X-API-Key`` header, then ``Authorization: Bearer``, then the
  ``api_key`` query parameter.

Argon2 and SQLite work is pushed to worker threads so the event loop never
blocks on it.
"""

from __future__ import annotations

import asyncio
import hmac
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from l2h.auth.session import AdminSession, AdminSessionManager
from l2h.core.exceptions import AuthRequired, CryptoError, Unauthorized
from l2h.core.logging import get_logger
from l2h.security.credentials import PasswordCodec, StoredPassword
from l2h.storage.store import Binding, BindingStore

SESSION_COOKIE = "l2h_session"
PASSWORD_COOKIE_PREFIX = "l2h_auth"
API_KEY_HEADER = "X-API-Key"
API_KEY_QUERY_PARAM = "api_key"


def password_cookie_name(path: str) -> str:
    """Cookie name for a path's password. Nested paths are percent-encoded."""
    return f"{PASSWORD_COOKIE_PREFIX}_{quote(path, safe='')}"


def extract_api_key(headers: Mapping[str, str], query: Mapping[str, str]) -> str | None:
    """Pull an API key from a request, first match wins."""
    key = headers.get(API_KEY_HEADER)
    if key:
        return key

    auth_header = headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer ") :].strip()
        if token:
            return token

    key = query.get(API_KEY_QUERY_PARAM)
    return key or None


class AuthOverlay:
    """Admin, path-password and API-key checks for one node."""

    def __init__(
        self,
        store: BindingStore,
        sessions: AdminSessionManager,
        *,
        codec: PasswordCodec | None = None,
        logger: Any = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self._codec = codec or PasswordCodec()
        self._log = logger or get_logger("l2h.auth")

    # Admin console

    async def login(self, username: str, password: str) -> AdminSession:
        """Check admin credentials and open a session.

        Raises:
            Unauthorized: If settings are missing or the credentials do not match.
        """
        settings = await asyncio.to_thread(self.store.get_settings)
        if settings is None:
            raise Unauthorized("admin console is not initialized")

        username_ok = hmac.compare_digest(
            (username or "").encode("utf-8"), settings.username.encode("utf-8")
        )
        stored = StoredPassword.parse(settings.password)
        password_ok = await asyncio.to_thread(stored.matches, password, self._codec)

        if not (username_ok and password_ok):
            self._log.warning("Admin login failed", username=username)
            raise Unauthorized("invalid username or password")

        session = await self.sessions.create_session(settings.username)
        self._log.info("Admin logged in", username=settings.username)
        return session

    async def logout(self, cookies: Mapping[str, str]) -> bool:
        session_id = cookies.get(SESSION_COOKIE, "")
        if not session_id:
            return False
        return await self.sessions.delete_session(session_id)

    async def require_admin(self, cookies: Mapping[str, str]) -> AdminSession:
        """Return the live admin session for a request.

        Raises:
            AuthRequired: If the session cookie is missing or empty.
            Unauthorized: If it does not name a live session.
        """
        session_id = cookies.get(SESSION_COOKIE, "")
        if not session_id:
            raise AuthRequired("admin login required")
        session = await self.sessions.get_session(session_id)
        if session is None:
            raise Unauthorized("admin session expired or invalid")
        return session

    # Per-path passwords

    async def verify_path_password(self, binding: Binding, candidate: str | None) -> bool:
        """Check a candidate against the binding's password.

        A legacy plaintext password that matches is rehashed and persisted,
        so every later check goes through the hash.
        """
        stored = binding.stored_password
        if not stored.required:
            return True

        matched = await asyncio.to_thread(stored.matches, candidate, self._codec)
        if not matched:
            return False

        if stored.needs_upgrade:
            await self._upgrade_legacy_password(binding, candidate or "")
        return True

    async def _upgrade_legacy_password(self, binding: Binding, plaintext: str) -> None:
        try:
            digest = await asyncio.to_thread(self._codec.hash, plaintext)
        except CryptoError as e:
            self._log.warning("Legacy password rehash failed", path=binding.path, error=str(e))
            return
        await asyncio.to_thread(self.store.rotate_binding_password, binding.id, digest)
        binding.password = digest
        self._log.info("Legacy password upgraded to argon2id", path=binding.path)

    async def check_path_access(self, binding: Binding, cookies: Mapping[str, str]) -> bool:
        """True if the binding is open or the request carries a valid password cookie."""
        if not binding.stored_password.required:
            return True
        candidate = cookies.get(password_cookie_name(binding.path), "")
        if not candidate:
            return False
        return await self.verify_path_password(binding, candidate)

    # API keys

    async def require_api_key(
        self, headers: Mapping[str, str], query: Mapping[str, str]
    ) -> str:
        """Return the validated key.

        Raises:
            AuthRequired: If the request carries no key.
            Unauthorized: If the key is unknown or expired.
        """
        key = extract_api_key(headers, query)
        if not key:
            raise AuthRequired("API key required")
        if not await asyncio.to_thread(self.store.validate_api_key, key):
            self._log.warning("Rejected API key")
            raise Unauthorized("invalid or expired API key")
        return key

    async def require_admin_or_api_key(
        self,
        cookies: Mapping[str, str],
        headers: Mapping[str, str],
        query: Mapping[str, str],
    ) -> AdminSession | str:
        """Accept either a live admin session or a valid API key.

        A request with neither credential gets ``AuthRequired``; a request
        whose presented credential is bad gets ``Unauthorized``.
        """
        if cookies.get(SESSION_COOKIE):
            session = await self.sessions.get_session(cookies[SESSION_COOKIE])
            if session is not None:
                return session
            if extract_api_key(headers, query) is None:
                raise Unauthorized("admin session expired or invalid")
        return await self.require_api_key(headers, query)
