"""HTTP server for a front or back node.

One class serves both roles. The role only decides which signaling route
is mounted: front nodes accept visitor offers at ``/api/webrtc/offer``,
back nodes accept answers at ``/api/webrtc/answer``. Everything else
(admin console, bindings, API keys, path passwords) is shared.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from aiohttp import web

from l2h.auth.overlay import SESSION_COOKIE, AuthOverlay, password_cookie_name
from l2h.auth.session import AdminSessionManager
from l2h.core.config import NodeConfig, NodeRole
from l2h.core.exceptions import L2HError, NotFoundError, Unauthorized, ValidationError
from l2h.core.logging import get_logger
from l2h.routing.resolver import PathResolver, ResolutionKind
from l2h.security.credentials import PasswordCodec
from l2h.security.validation import validate_path
from l2h.server.admin import AdminConsole
from l2h.server.pages import LANDING_PAGE, render_password_page, render_tunnel_page
from l2h.signaling.broker import Answerer, SignalingBroker
from l2h.storage.store import AdminSettings, BindingStore

RESOLUTION_HEADER = "X-L2H-Resolution"


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("invalid JSON body", details=str(e)) from e
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{key} is required")
    return value


def _match_id(request: web.Request) -> int:
    raw = request.match_info["id"]
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError("invalid id", details=raw) from e


def _ok(**extra: Any) -> web.Response:
    return web.json_response({"status": "ok", **extra})


class NodeServer:
    """aiohttp application and lifecycle for one node."""

    def __init__(
        self,
        config: NodeConfig,
        *,
        store: BindingStore | None = None,
        sessions: AdminSessionManager | None = None,
        broker: SignalingBroker | None = None,
        answerer: Answerer | None = None,
        codec: PasswordCodec | None = None,
        logger: Any = None,
    ) -> None:
        self.config = config
        self.role = config.role
        self._log = logger or get_logger("l2h.server", role=self.role.value)
        self._codec = codec or PasswordCodec()

        self.store = store or BindingStore(config.effective_db_path, codec=self._codec)
        self.sessions = sessions or AdminSessionManager(
            session_duration=config.admin_session_duration,
        )
        self.overlay = AuthOverlay(self.store, self.sessions, codec=self._codec)
        self.resolver = PathResolver(self.store, self.overlay)
        self.broker = broker or SignalingBroker(
            self.role,
            answerer=answerer,
            session_ttl=config.session_ttl,
            sweep_interval=config.session_sweep_interval,
        )
        self.admin_console = AdminConsole(config.admin_static_dir)

        self._runner: web.AppRunner | None = None

    # Application

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._cors_middleware, self._error_middleware])

        app.router.add_get("/health", self._handle_health)

        app.router.add_post("/api/login", self._handle_login)
        app.router.add_post("/api/logout", self._handle_logout)
        app.router.add_get("/api/settings", self._handle_get_settings)
        app.router.add_post("/api/settings", self._handle_set_settings)
        app.router.add_get("/api/paths", self._handle_list_paths)
        app.router.add_post("/api/paths", self._handle_add_path)
        app.router.add_delete("/api/paths/{id}", self._handle_delete_path)
        app.router.add_get("/api/api-keys", self._handle_list_api_keys)
        app.router.add_post("/api/api-keys", self._handle_generate_api_key)
        app.router.add_delete("/api/api-keys/{id}", self._handle_delete_api_key)
        app.router.add_post("/api/auth", self._handle_path_auth)

        if self.role == NodeRole.FRONT:
            app.router.add_post("/api/webrtc/offer", self._handle_offer)
        else:
            app.router.add_post("/api/webrtc/answer", self._handle_answer)

        app.router.add_route("*", "/api/{tail:.*}", self._handle_api_not_found)
        app.router.add_route("*", "/{path:.*}", self._handle_root)

        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        await asyncio.to_thread(self.store.initialize)
        await self.sessions.start()
        await self.broker.start()
        self._log.info("Node components started", db_path=self.store.db_path)

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.broker.stop()
        await self.sessions.stop()
        self.store.close()

    async def start(self) -> None:
        """Bind the listening socket and start serving."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.effective_port)
        await site.start()
        self._log.info(
            "Node server started",
            host=self.config.host,
            port=self.config.effective_port,
        )

    async def stop(self) -> None:
        self._log.info("Stopping node server...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._log.info("Node server stopped")

    # Middlewares

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response: web.StreamResponse = web.Response(status=200)
        else:
            response = await handler(request)

        origin = request.headers.get("Origin")
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = (
                "Content-Type, Authorization, X-API-Key"
            )
        return response

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            return await handler(request)
        except L2HError as e:
            if e.status >= 500:
                self._log.error("Request failed", path=request.path, error=str(e))
            else:
                self._log.debug("Request rejected", path=request.path, error=str(e))
            return web.json_response(e.to_dict(), status=e.status)
        except web.HTTPException as e:
            if e.status >= 400 and request.path.startswith("/api/"):
                return web.json_response({"error": e.reason}, status=e.status)
            raise
        except Exception as e:
            self._log.exception("Unhandled error", path=request.path, error=str(e))
            return web.json_response({"error": "Internal server error"}, status=500)

    # Health

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    # Admin session

    async def _handle_login(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        username = _require_str(data, "username")
        password = _require_str(data, "password")

        session = await self.overlay.login(username, password)

        response = _ok()
        response.set_cookie(
            SESSION_COOKIE,
            session.session_id,
            max_age=self.sessions.session_duration,
            httponly=True,
            samesite="Lax",
            path="/",
        )
        return response

    async def _handle_logout(self, request: web.Request) -> web.Response:
        if await self.overlay.logout(request.cookies):
            self._log.info("Admin logged out")
        response = _ok()
        response.del_cookie(SESSION_COOKIE, path="/")
        return response

    # Settings

    async def _handle_get_settings(self, request: web.Request) -> web.Response:
        await self.overlay.require_admin(request.cookies)
        settings = await asyncio.to_thread(self.store.get_settings)
        if settings is None:
            raise NotFoundError("settings not initialized")
        return web.json_response(settings.to_dict())

    async def _handle_set_settings(self, request: web.Request) -> web.Response:
        # First-time setup is open; afterwards only an admin may change settings.
        if await asyncio.to_thread(self.store.get_settings) is not None:
            await self.overlay.require_admin(request.cookies)

        data = await _read_json(request)
        settings = AdminSettings.from_dict(data)
        await asyncio.to_thread(self.store.upsert_settings, settings)
        return _ok()

    # Bindings

    async def _require_admin_or_api_key(self, request: web.Request) -> None:
        await self.overlay.require_admin_or_api_key(
            request.cookies, request.headers, request.query
        )

    async def _handle_list_paths(self, request: web.Request) -> web.Response:
        await self._require_admin_or_api_key(request)
        bindings = await asyncio.to_thread(self.store.list_bindings)
        return web.json_response([b.to_dict() for b in bindings])

    async def _handle_add_path(self, request: web.Request) -> web.Response:
        await self._require_admin_or_api_key(request)
        data = await _read_json(request)

        path = data.get("path")
        if not isinstance(path, str):
            raise ValidationError("path is required")
        password = data.get("password") or None
        if password is not None and not isinstance(password, str):
            raise ValidationError("password must be a string")
        target = data.get("target", data.get("server_b_port"))

        await asyncio.to_thread(self.store.add_binding, path, password, target)
        return _ok()

    async def _handle_delete_path(self, request: web.Request) -> web.Response:
        await self._require_admin_or_api_key(request)
        binding_id = _match_id(request)
        await asyncio.to_thread(self.store.delete_binding, binding_id)
        return _ok()

    # API keys

    async def _handle_list_api_keys(self, request: web.Request) -> web.Response:
        await self.overlay.require_admin(request.cookies)
        keys = await asyncio.to_thread(self.store.list_api_keys)
        return web.json_response([k.to_dict() for k in keys])

    async def _handle_generate_api_key(self, request: web.Request) -> web.Response:
        await self.overlay.require_admin(request.cookies)
        data = await _read_json(request)
        name = data.get("name") or ""
        if not isinstance(name, str):
            raise ValidationError("name must be a string")
        expires_in_days = data.get("expires_in_days", 0)
        key = await asyncio.to_thread(self.store.generate_api_key, name, expires_in_days)
        return web.json_response({"key": key})

    async def _handle_delete_api_key(self, request: web.Request) -> web.Response:
        await self.overlay.require_admin(request.cookies)
        key_id = _match_id(request)
        await asyncio.to_thread(self.store.delete_api_key, key_id)
        return _ok()

    # Path passwords

    async def _handle_path_auth(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        path = _require_str(data, "path")
        password = _require_str(data, "password")

        binding = await asyncio.to_thread(self.store.find_binding_by_path, path)
        if binding is None:
            raise NotFoundError("Path not found")

        if not await self.overlay.verify_path_password(binding, password):
            self._log.info("Path password rejected", path=path)
            raise Unauthorized("Invalid password")

        response = _ok()
        response.set_cookie(
            password_cookie_name(path),
            password,
            max_age=self.config.password_cookie_max_age,
            httponly=True,
            path="/",
        )
        return response

    # Signaling

    async def _handle_offer(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        path = _require_str(data, "path")
        offer = _require_str(data, "offer")

        binding = await asyncio.to_thread(self.store.find_binding_by_path, path)
        if binding is None:
            raise NotFoundError("Path not found")
        if not await self.overlay.check_path_access(binding, request.cookies):
            raise Unauthorized("password required")

        session_id, answer = await self.broker.submit_offer(path, offer.encode("utf-8"))
        return web.json_response(
            {"answer": answer.decode("utf-8"), "session_id": session_id}
        )

    async def _handle_answer(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        path = validate_path(_require_str(data, "path"))
        answer = _require_str(data, "answer")

        session = self.broker.accept_answer(path, answer.encode("utf-8"))
        return _ok(session_id=session.id)

    # Catch-alls

    async def _handle_api_not_found(self, request: web.Request) -> web.Response:
        raise NotFoundError("Not found")

    async def _handle_root(self, request: web.Request) -> web.Response:
        resolution = await self.resolver.resolve(request.match_info["path"], request.cookies)
        kind = resolution.kind

        if kind == ResolutionKind.ADMIN_REDIRECT:
            raise web.HTTPMovedPermanently(resolution.redirect_to or f"/{resolution.path}/")

        if kind == ResolutionKind.ADMIN_SERVE:
            response = await self.admin_console.serve(
                resolution.admin_path or resolution.path, resolution.admin_subpath or ""
            )
        elif kind == ResolutionKind.PASSWORD_CHALLENGE:
            response = web.Response(
                text=render_password_page(resolution.path), content_type="text/html"
            )
        elif kind == ResolutionKind.TUNNEL_ESTABLISH and resolution.binding is not None:
            response = web.Response(
                text=render_tunnel_page(resolution.path, resolution.binding.target),
                content_type="text/html",
            )
        else:
            response = web.Response(text=LANDING_PAGE, content_type="text/html")

        response.headers[RESOLUTION_HEADER] = kind.value
        return response


async def run_node(config: NodeConfig, *, logger: Any = None) -> None:
    """Run a node until cancelled."""
    server = NodeServer(config, logger=logger)
    try:
        await server.start()
        await asyncio.Event().wait()
    finally:
        await server.stop()
