"""
HTTP receiver for host traffic reports.

Lets an out-of-process host (browser extension, userscript, headless
driver) forward what it observed to HostTrafficHooks:

- POST /hooks/request     {"method", "url", "headers"}
- POST /hooks/response    {"method", "url", "status", "request_headers"}
- POST /hooks/connection  {"url", "opened"}
- GET  /health/live

Runs on the agent's event loop so hook events and cycles never interleave
mid-step.

Usage:
    server = HookServer(hooks, host="127.0.0.1", port=8765)
    await server.start()
    ...
    await server.stop()
"""

import logging
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from schedule_collector.host import (
    HostTrafficHooks,
    ObservedConnection,
    ObservedRequest,
    ObservedResponse,
)

logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    """Hook payload missing fields or of the wrong type."""


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise PayloadError(f"'{key}' must be a non-empty string")
    return value


def _headers(payload: dict[str, Any], key: str) -> dict[str, str]:
    value = payload.get(key) or {}
    if not isinstance(value, dict):
        raise PayloadError(f"'{key}' must be an object")
    return {str(k): str(v) for k, v in value.items()}


def parse_request(payload: dict[str, Any]) -> ObservedRequest:
    return ObservedRequest(
        method=str(payload.get("method") or "GET").upper(),
        url=_require_str(payload, "url"),
        headers=_headers(payload, "headers"),
    )


def parse_response(payload: dict[str, Any]) -> ObservedResponse:
    status = payload.get("status")
    if isinstance(status, bool) or not isinstance(status, int):
        raise PayloadError("'status' must be an integer")
    return ObservedResponse(
        method=str(payload.get("method") or "GET").upper(),
        url=_require_str(payload, "url"),
        status=status,
        request_headers=_headers(payload, "request_headers"),
    )


def parse_connection(payload: dict[str, Any]) -> ObservedConnection:
    return ObservedConnection(
        url=_require_str(payload, "url"),
        opened=bool(payload.get("opened", True)),
    )


class HookServer:
    """aiohttp app forwarding posted traffic events to HostTrafficHooks."""

    def __init__(self, hooks: HostTrafficHooks, host: str = "127.0.0.1", port: int = 8765):
        self.hooks = hooks
        self.host = host
        self.port = port
        self._started_at = datetime.now(UTC)
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def actual_port(self) -> int | None:
        if self._site is None or self._site._server is None:
            return None
        sockets = getattr(self._site._server, "sockets", None) or []
        return sockets[0].getsockname()[1] if sockets else None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/hooks/request", self._handler(parse_request, self.hooks.emit_request))
        app.router.add_post("/hooks/response", self._handler(parse_response, self.hooks.emit_response))
        app.router.add_post("/hooks/connection", self._handler(parse_connection, self.hooks.emit_connection))
        app.router.add_get("/health/live", self.handle_liveness)
        return app

    def _handler(self, parse, emit):
        async def handle(request: web.Request) -> web.Response:
            try:
                payload = await request.json()
            except ValueError:
                return web.json_response({"error": "body must be JSON"}, status=400)

            if not isinstance(payload, dict):
                return web.json_response({"error": "body must be a JSON object"}, status=400)

            try:
                event = parse(payload)
            except PayloadError as e:
                return web.json_response({"error": str(e)}, status=400)

            emit(event)
            return web.json_response({"status": "accepted"}, status=202)

        return handle

    async def handle_liveness(self, request: web.Request) -> web.Response:
        uptime_seconds = (datetime.now(UTC) - self._started_at).total_seconds()
        return web.json_response(
            {
                "status": "alive",
                "observers": self.hooks.observer_count,
                "uptime_seconds": int(uptime_seconds),
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def start(self) -> None:
        if self._runner is not None:
            return

        self._runner = web.AppRunner(self.create_app(), access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info(
            "Hook server started",
            extra={"url": f"http://{self.host}:{self.actual_port or self.port}/hooks"},
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        self._site = None
        logger.info("Hook server stopped")
