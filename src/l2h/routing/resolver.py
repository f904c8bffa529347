"""Request path resolution.

Decides what an inbound path on a node means. First match wins:

1. exactly the admin path -> redirect to ``/<admin>/``
2. under ``<admin>/``      -> serve the admin console
3. a registered binding    -> tunnel, or a password challenge
4. anything else           -> landing page

Admin checks are skipped until the node has settings. Every resolution is
terminal for its request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from l2h.auth.overlay import AuthOverlay
from l2h.core.logging import get_logger
from l2h.storage.store import Binding, BindingStore


class ResolutionKind(str, Enum):
    ADMIN_REDIRECT = "admin_redirect"
    ADMIN_SERVE = "admin_serve"
    PASSWORD_CHALLENGE = "password_challenge"
    TUNNEL_ESTABLISH = "tunnel_establish"
    DEFAULT_LANDING = "default_landing"


@dataclass
class Resolution:
    """Outcome of resolving one request path."""

    kind: ResolutionKind
    path: str
    redirect_to: str | None = None
    admin_path: str | None = None
    admin_subpath: str | None = None
    binding: Binding | None = None

    @property
    def target(self) -> int | None:
        return self.binding.target if self.binding else None


class PathResolver:
    def __init__(self, store: BindingStore, overlay: AuthOverlay, *, logger: Any = None) -> None:
        self.store = store
        self.overlay = overlay
        self._log = logger or get_logger("l2h.routing")

    async def resolve(self, path: str, cookies: Mapping[str, str]) -> Resolution:
        path = path.lstrip("/")

        if not path:
            return Resolution(ResolutionKind.DEFAULT_LANDING, path)

        settings = await asyncio.to_thread(self.store.get_settings)
        if settings is not None:
            admin_path = settings.admin_path
            if path == admin_path:
                return Resolution(
                    ResolutionKind.ADMIN_REDIRECT,
                    path,
                    redirect_to=f"/{admin_path}/",
                    admin_path=admin_path,
                )
            if path.startswith(admin_path + "/"):
                return Resolution(
                    ResolutionKind.ADMIN_SERVE,
                    path,
                    admin_path=admin_path,
                    admin_subpath=path[len(admin_path) + 1 :],
                )

        binding = await asyncio.to_thread(self.store.find_binding_by_path, path)
        if binding is None:
            return Resolution(ResolutionKind.DEFAULT_LANDING, path)

        if await self.overlay.check_path_access(binding, cookies):
            self._log.debug("Path resolved to tunnel", path=path, target=binding.target)
            return Resolution(ResolutionKind.TUNNEL_ESTABLISH, path, binding=binding)

        return Resolution(ResolutionKind.PASSWORD_CHALLENGE, path, binding=binding)
