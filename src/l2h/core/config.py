"""Configuration types with environment variable support.

All settings can be configured via environment variables with the L2H_ prefix.
Example: L2H_PORT=8080 sets port to 8080, L2H_ROLE=back runs a back node.
"""

from __future__ import annotations

import tomllib
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FRONT_PORT = 55080
DEFAULT_BACK_PORT = 55055


class NodeRole(str, Enum):
    """Which side of the signaling exchange a node plays.

    The front node is publicly reachable and initiates offers for visitors;
    the back node sits behind NAT and answers them.
    """

    FRONT = "front"
    BACK = "back"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class NodeConfig(BaseSettings):
    """Settings for one node (front or back).

    All settings can be overridden via environment variables:
    - L2H_ROLE: front or back
    - L2H_PORT: listen port (defaults depend on role)
    - L2H_DATA_DIR / L2H_DB_PATH: where the SQLite store lives
    - L2H_LOG_LEVEL / L2H_LOG_JSON: logging output
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="L2H_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    role: NodeRole = Field(
        default=NodeRole.FRONT,
        description="Node role: 'front' (public, Server A) or 'back' (private, Server B).",
    )
    host: str = Field(
        default="0.0.0.0",
        description="Bind address for the HTTP server.",
    )
    port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Bind port. Defaults to 55080 on front nodes and 55055 on back nodes.",
    )
    data_dir: str = Field(
        default="./data",
        description="Directory holding the database file.",
    )
    db_path: str | None = Field(
        default=None,
        description="Explicit database path. Defaults to <data_dir>/l2h-s.db or l2h-c.db by role.",
    )
    admin_static_dir: str | None = Field(
        default=None,
        description="Directory with the built admin console. Defaults to the bundled shell.",
    )
    session_ttl: float = Field(
        default=300.0,
        gt=0,
        description="Seconds a signaling session may live before the reaper evicts it.",
    )
    session_sweep_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between signaling reaper sweeps.",
    )
    admin_session_duration: int = Field(
        default=86400,
        gt=0,
        description="Admin console session lifetime in seconds (default 24 hours).",
    )
    password_cookie_max_age: int = Field(
        default=7 * 86400,
        description="Lifetime of the per-path password cookie in seconds (default 7 days).",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines instead of the console renderer.",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        value = value.lower()
        if value not in {"debug", "info", "warning", "error"}:
            raise ValueError(f"Unsupported log level: {value}")
        return value

    @property
    def effective_port(self) -> int:
        if self.port is not None:
            return self.port
        return DEFAULT_FRONT_PORT if self.role == NodeRole.FRONT else DEFAULT_BACK_PORT

    @property
    def effective_db_path(self) -> str:
        if self.db_path:
            return self.db_path
        filename = "l2h-s.db" if self.role == NodeRole.FRONT else "l2h-c.db"
        return str(Path(self.data_dir) / filename)

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> NodeConfig:
        """Build a config from a YAML/TOML file, with keyword overrides on top.

        Nested sections are flattened, so ``{"log": {"level": "debug"}}``
        becomes ``log_level``.
        """
        values = flatten_config(load_config_from_file(path))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

