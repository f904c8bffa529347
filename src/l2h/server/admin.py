"""Admin console asset serving.

The console is a single-page app mounted at ``/<admin_path>/``. Unknown
sub-paths fall back to ``index.html`` so client-side routes survive a
reload; anything under ``assets/`` that does not exist is a plain 404.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from aiohttp import web

from l2h.core.logging import get_logger

STATIC_DIR = Path(__file__).parent.parent / "static" / "admin"

NO_CACHE = "no-cache, no-store, must-revalidate"

CONTENT_TYPES = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
}


class AdminConsole:
    """Serves the built admin console from a static directory."""

    def __init__(self, static_dir: str | Path | None = None, *, logger: Any = None) -> None:
        self.static_dir = Path(static_dir) if static_dir else STATIC_DIR
        self._log = logger or get_logger("l2h.admin")

    def _content_type(self, path: Path) -> str:
        return CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")

    def _render_index(self, admin_path: str) -> web.Response:
        index = self.static_dir / "index.html"
        try:
            content = index.read_text(encoding="utf-8")
        except OSError as e:
            self._log.error("Admin index unreadable", path=str(index), error=str(e))
            return web.json_response({"error": "Admin interface not found"}, status=500)

        script = f"<script>window.L2H_ADMIN_BASE = '/{admin_path}/';</script>"
        content = content.replace("<head>", "<head>" + script, 1)
        return web.Response(
            text=content,
            content_type="text/html",
            charset="utf-8",
            headers={"Cache-Control": NO_CACHE},
        )

    def _resolve_file(self, subpath: str) -> Path | None:
        """Map a sub-path to a file inside the static dir, or None."""
        if not subpath or subpath.endswith("/"):
            return None
        candidate = (self.static_dir / subpath).resolve()
        root = self.static_dir.resolve()
        if root not in candidate.parents:
            return None
        return candidate if candidate.is_file() else None

    async def serve(self, admin_path: str, subpath: str) -> web.Response:
        if not self.static_dir.is_dir():
            self._log.error("Admin static directory missing", path=str(self.static_dir))
            return web.json_response({"error": "Admin interface not found"}, status=500)

        if ".." in Path(subpath).parts or subpath.startswith("/"):
            return web.json_response({"error": "Not found"}, status=404)

        file_path = self._resolve_file(subpath)
        if file_path is None:
            if subpath.startswith("assets/"):
                return web.json_response({"error": "Not found"}, status=404)
            return self._render_index(admin_path)

        if file_path.name == "index.html" and file_path.parent == self.static_dir.resolve():
            return self._render_index(admin_path)

        try:
            body = file_path.read_bytes()
        except OSError as e:
            self._log.error("Failed to read admin asset", path=subpath, error=str(e))
            return web.json_response({"error": "Failed to read asset"}, status=500)

        return web.Response(
            body=body,
            content_type=self._content_type(file_path),
            headers={"Cache-Control": "public, max-age=300"},
        )
