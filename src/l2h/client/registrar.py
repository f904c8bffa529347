"""Client a back node uses to manage its bindings on a front node.

Authenticates with an API key issued by the front node's admin console.

Usage:
    async with FrontNodeClient("https://front.example", api_key) as client:
        await client.register("shop", 9001)
"""

from __future__ import annotations

from typing import Any

import httpx

from l2h.core.exceptions import (
    AuthError,
    DuplicatePath,
    L2HError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from l2h.core.logging import get_logger
from l2h.storage.store import ServerLink

_STATUS_ERRORS: dict[int, type[L2HError]] = {
    400: ValidationError,
    401: AuthError,
    404: NotFoundError,
    409: DuplicatePath,
}


class FrontNodeClient:
    """Async API client for a front node's binding endpoints."""

    def __init__(
        self,
        server_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Any = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._log = logger or get_logger("l2h.client")
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_link(cls, link: ServerLink, **kwargs: Any) -> FrontNodeClient:
        return cls(link.server_url, link.api_key, **kwargs)

    async def __aenter__(self) -> FrontNodeClient:
        self._client = httpx.AsyncClient(
            base_url=self.server_url,
            headers={"X-API-Key": self._api_key},
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        if self._client is None:
            raise RuntimeError("FrontNodeClient used outside of 'async with'")

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError("front node timed out", details=self.server_url) from e
        except httpx.RequestError as e:
            raise UpstreamError("front node unreachable", details=str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_success:
            return body

        message = body.get("error") if isinstance(body, dict) else None
        error_cls = _STATUS_ERRORS.get(response.status_code, UpstreamError)
        self._log.warning(
            "Front node rejected request",
            method=method,
            url=url,
            status=response.status_code,
            error=message,
        )
        raise error_cls(message or f"HTTP {response.status_code}")

    async def register(self, path: str, target: int, password: str | None = None) -> None:
        """Bind ``path`` on the front node to ``target`` on this node."""
        await self._request(
            "POST",
            "/api/paths",
            json={"path": path, "password": password or "", "target": target},
        )
        self._log.info("Binding registered", path=path, target=target)

    async def list_bindings(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/paths")

    async def unregister(self, binding_id: int) -> None:
        await self._request("DELETE", f"/api/paths/{binding_id}")
        self._log.info("Binding removed", binding_id=binding_id)
