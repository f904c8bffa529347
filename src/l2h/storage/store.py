"""SQLite-backed store for bindings, admin settings and API keys.

One store per node. Every public operation runs in its own transaction and
either commits fully or rolls back; SQLite failures surface as
:class:`~l2h.core.exceptions.StorageError`, never as partial state.

Tables:
    settings     singleton admin row (id is always 1)
    paths        path -> target bindings, optional password
    api_keys     keys authorizing back nodes to register bindings
    server_link  back node only: front node URL + API key
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from l2h.core.exceptions import (
    ConflictError,
    DuplicatePath,
    L2HError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from l2h.core.logging import get_logger
from l2h.security.credentials import (
    PasswordCodec,
    StoredPassword,
    is_hashed,
    random_token,
)
from l2h.security.validation import validate_email, validate_path, validate_port

API_KEY_LENGTH = 32
MAX_API_KEY_DAYS = 36500

# Served by fixed routes on every node, so a binding here could never resolve.
RESERVED_PATHS = ("api", "health")


def is_reserved_path(path: str) -> bool:
    return any(path == reserved or path.startswith(reserved + "/") for reserved in RESERVED_PATHS)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class AdminSettings:
    """Singleton admin row: where the console is mounted and who may log in."""

    admin_path: str
    username: str
    password: str
    email: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AdminSettings:
        """Build settings from a request body.

        Raises:
            ValidationError: If a required field is missing, empty or not a string.
        """
        values: dict[str, str] = {}
        for key in ("admin_path", "username", "password"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise ValidationError(f"{key} is required")
            values[key] = value

        email = data.get("email")
        if email is not None and not isinstance(email, str):
            raise ValidationError("email must be a string")

        return cls(**values, email=email or None)

    def to_dict(self) -> dict[str, Any]:
        """Public view; the password digest is never returned."""
        return {
            "admin_path": self.admin_path,
            "username": self.username,
            "email": self.email or "",
        }


@dataclass
class Binding:
    """A registered path and the port it tunnels to."""

    id: int
    path: str
    password: str | None
    target: int
    created_at: datetime = field(default_factory=_utc_now)

    @property
    def stored_password(self) -> StoredPassword:
        return StoredPassword.parse(self.password)

    @property
    def has_password(self) -> bool:
        return bool(self.password)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "has_password": self.has_password,
            "target": self.target,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class APIKey:
    """An API key row. ``usage_count`` only ever goes up."""

    id: int
    key: str
    name: str
    created_at: datetime
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    usage_count: int = 0

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utc_now()) > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ServerLink:
    """A back node's pointer to its front node."""

    server_url: str
    api_key: str
    updated_at: datetime | None = None


class BindingStore:
    """Transactional store for one node.

    A single SQLite connection is shared by all callers and guarded by a
    re-entrant lock, so the store may be used from worker threads
    (``asyncio.to_thread``) as well as the event loop thread.
    """

    def __init__(
        self,
        db_path: str | Path = "l2h.db",
        *,
        codec: PasswordCodec | None = None,
        logger: Any = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite file, or ":memory:".
            codec: Password codec used to hash plaintext passwords on write.
            logger: structlog logger; a component logger is created if omitted.
            now: Clock, injectable for tests.
        """
        self.db_path = str(db_path)
        self._codec = codec or PasswordCodec()
        self._log = logger or get_logger("l2h.storage")
        self._now = now
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    isolation_level=None,
                )
            except sqlite3.Error as e:
                raise StorageError("failed to open database", details=str(e)) from e
            conn.row_factory = sqlite3.Row
            self._conn = conn
        return self._conn

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Cursor]:
        """Run a block inside one transaction, committing on success."""
        with self._lock:
            conn = self._get_connection()
            cur = conn.cursor()
            try:
                cur.execute("BEGIN IMMEDIATE")
                yield cur
                conn.commit()
            except L2HError:
                conn.rollback()
                raise
            except sqlite3.Error as e:
                conn.rollback()
                self._log.error("Storage operation failed", error=str(e))
                raise StorageError("storage operation failed", details=str(e)) from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                cur.close()

    def initialize(self) -> None:
        """Create tables if they do not exist yet."""
        if self._initialized:
            return

        with self.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    admin_path TEXT NOT NULL,
                    username TEXT NOT NULL,
                    password TEXT NOT NULL,
                    email TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS paths (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    path TEXT UNIQUE NOT NULL,
                    password TEXT,
                    target INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL DEFAULT '',
                    expires_at TEXT,
                    last_used_at TEXT,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS server_link (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    server_url TEXT NOT NULL,
                    api_key TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_paths_created_at
                ON paths(created_at DESC)
            """)

        self._initialized = True

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self._initialized = False

    def _hash_if_needed(self, password: str | None) -> str | None:
        if not password:
            return None
        if is_hashed(password):
            return password
        return self._codec.hash(password)

    # Settings

    def get_settings(self) -> AdminSettings | None:
        with self.cursor() as cur:
            cur.execute("SELECT admin_path, username, password, email FROM settings WHERE id = 1")
            row = cur.fetchone()
        if row is None:
            return None
        return AdminSettings(
            admin_path=row["admin_path"],
            username=row["username"],
            password=row["password"],
            email=row["email"],
        )

    def upsert_settings(self, settings: AdminSettings) -> AdminSettings:
        """Validate, hash the password if needed, and replace the singleton row."""
        validate_path(settings.admin_path)
        if not isinstance(settings.username, str) or not settings.username:
            raise ValidationError("username is required")
        if not isinstance(settings.password, str) or not settings.password:
            raise ValidationError("password is required")
        email = validate_email(settings.email)
        if is_reserved_path(settings.admin_path):
            raise ConflictError("admin path is reserved", details=settings.admin_path)

        if is_hashed(settings.password):
            digest = settings.password
        else:
            digest = self._codec.hash(settings.password)

        with self.cursor() as cur:
            cur.execute("SELECT id FROM paths WHERE path = ?", (settings.admin_path,))
            if cur.fetchone() is not None:
                raise ConflictError(
                    "admin path collides with a registered binding",
                    details=settings.admin_path,
                )
            cur.execute(
                """
                INSERT OR REPLACE INTO settings
                (id, admin_path, username, password, email, created_at)
                VALUES (1, ?, ?, ?, ?, ?)
            """,
                (settings.admin_path, settings.username, digest, email, _to_db(self._now())),
            )

        self._log.info("Admin settings updated", admin_path=settings.admin_path)
        return AdminSettings(
            admin_path=settings.admin_path,
            username=settings.username,
            password=digest,
            email=email,
        )

    # Bindings

    def _row_to_binding(self, row: sqlite3.Row) -> Binding:
        return Binding(
            id=row["id"],
            path=row["path"],
            password=row["password"] or None,
            target=row["target"],
            created_at=_parse_datetime(row["created_at"]) or self._now(),
        )

    def add_binding(self, path: str, password: str | None, target: int) -> int:
        """Register a path.

        Raises:
            InvalidPath: If the path fails validation.
            ValidationError: If the target is not a valid port.
            DuplicatePath: If the path is already registered, is the admin path,
                or is taken by a fixed route (``api/...``, ``health``).
        """
        validate_path(path)
        validate_port(target)
        if is_reserved_path(path):
            raise DuplicatePath("path is reserved", details=path)
        digest = self._hash_if_needed(password)

        with self.cursor() as cur:
            cur.execute("SELECT admin_path FROM settings WHERE id = 1")
            settings_row = cur.fetchone()
            if settings_row is not None:
                admin_path = settings_row["admin_path"]
                if path == admin_path or path.startswith(admin_path + "/"):
                    raise DuplicatePath("path is reserved for the admin console", details=path)

            cur.execute("SELECT id FROM paths WHERE path = ?", (path,))
            if cur.fetchone() is not None:
                raise DuplicatePath("path already registered", details=path)

            try:
                cur.execute(
                    "INSERT INTO paths (path, password, target, created_at) VALUES (?, ?, ?, ?)",
                    (path, digest, target, _to_db(self._now())),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicatePath("path already registered", details=path) from e
            binding_id = cur.lastrowid

        self._log.info("Binding added", path=path, target=target, protected=digest is not None)
        return int(binding_id or 0)

    def list_bindings(self) -> list[Binding]:
        """All bindings, most recently created first."""
        with self.cursor() as cur:
            cur.execute("SELECT * FROM paths ORDER BY created_at DESC, id DESC")
            return [self._row_to_binding(row) for row in cur.fetchall()]

    def get_binding(self, binding_id: int) -> Binding | None:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM paths WHERE id = ?", (binding_id,))
            row = cur.fetchone()
        return self._row_to_binding(row) if row else None

    def find_binding_by_path(self, path: str) -> Binding | None:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM paths WHERE path = ?", (path,))
            row = cur.fetchone()
        return self._row_to_binding(row) if row else None

    def delete_binding(self, binding_id: int) -> None:
        """Delete by id. Deleting a missing id raises NotFoundError."""
        with self.cursor() as cur:
            cur.execute("DELETE FROM paths WHERE id = ?", (binding_id,))
            if cur.rowcount == 0:
                raise NotFoundError("binding not found", details=str(binding_id))
        self._log.info("Binding deleted", binding_id=binding_id)

    def rotate_binding_password(self, binding_id: int, new_digest: str) -> None:
        """Overwrite a binding's stored password with an already-computed digest."""
        with self.cursor() as cur:
            cur.execute("UPDATE paths SET password = ? WHERE id = ?", (new_digest, binding_id))
            if cur.rowcount == 0:
                raise NotFoundError("binding not found", details=str(binding_id))

    # API keys

    def _row_to_api_key(self, row: sqlite3.Row) -> APIKey:
        return APIKey(
            id=row["id"],
            key=row["key"],
            name=row["name"] or "",
            created_at=_parse_datetime(row["created_at"]) or self._now(),
            expires_at=_parse_datetime(row["expires_at"]),
            last_used_at=_parse_datetime(row["last_used_at"]),
            usage_count=row["usage_count"] or 0,
        )

    def generate_api_key(self, name: str, expires_in_days: int = 0) -> str:
        """Create a key. ``expires_in_days == 0`` means it never expires."""
        if not isinstance(expires_in_days, int) or isinstance(expires_in_days, bool):
            raise ValidationError("expires_in_days must be an integer")
        if expires_in_days < 0:
            raise ValidationError("expires_in_days must not be negative")
        if expires_in_days > MAX_API_KEY_DAYS:
            raise ValidationError(f"expires_in_days must be at most {MAX_API_KEY_DAYS}")

        key = random_token(API_KEY_LENGTH)
        now = self._now()
        expires_at = now + timedelta(days=expires_in_days) if expires_in_days > 0 else None

        with self.cursor() as cur:
            cur.execute(
                "INSERT INTO api_keys (key, name, expires_at, created_at) VALUES (?, ?, ?, ?)",
                (key, name or "", _to_db(expires_at), _to_db(now)),
            )

        self._log.info("API key generated", name=name, expires_in_days=expires_in_days)
        return key

    def list_api_keys(self) -> list[APIKey]:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM api_keys ORDER BY created_at DESC, id DESC")
            return [self._row_to_api_key(row) for row in cur.fetchall()]

    def get_api_key(self, key: str) -> APIKey | None:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM api_keys WHERE key = ?", (key,))
            row = cur.fetchone()
        return self._row_to_api_key(row) if row else None

    def delete_api_key(self, key_id: int) -> None:
        with self.cursor() as cur:
            cur.execute("DELETE FROM api_keys WHERE id = ?", (key_id,))
            if cur.rowcount == 0:
                raise NotFoundError("api key not found", details=str(key_id))
        self._log.info("API key deleted", key_id=key_id)

    def validate_api_key(self, key: str) -> bool:
        """Check a key and record its use.

        Unknown and expired keys return False. A failure while recording
        usage is logged and does not invalidate an otherwise valid key.
        """
        if not key:
            return False

        api_key = self.get_api_key(key)
        if api_key is None:
            return False

        now = self._now()
        if api_key.is_expired(now):
            self._log.info("Expired API key rejected", key_id=api_key.id)
            return False

        try:
            with self.cursor() as cur:
                cur.execute(
                    "UPDATE api_keys SET last_used_at = ?, usage_count = usage_count + 1 WHERE id = ?",
                    (_to_db(now), api_key.id),
                )
        except StorageError as e:
            self._log.warning("Failed to record API key usage", key_id=api_key.id, error=str(e))

        return True

    # Server link (back node)

    def get_server_link(self) -> ServerLink | None:
        with self.cursor() as cur:
            cur.execute("SELECT server_url, api_key, updated_at FROM server_link WHERE id = 1")
            row = cur.fetchone()
        if row is None:
            return None
        return ServerLink(
            server_url=row["server_url"],
            api_key=row["api_key"],
            updated_at=_parse_datetime(row["updated_at"]),
        )

    def set_server_link(self, server_url: str, api_key: str) -> None:
        if not server_url or not api_key:
            raise ValidationError("server url and api key are required")
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT OR REPLACE INTO server_link (id, server_url, api_key, updated_at)
                VALUES (1, ?, ?, ?)
            """,
                (server_url.rstrip("/"), api_key, _to_db(self._now())),
            )
        self._log.info("Server link updated", server_url=server_url)
