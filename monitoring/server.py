"""
============================================================================
FLEET WATCHDOG - INBOUND API
============================================================================
aiohttp server through which clients and the registry talk to the
watchdog.

Routes
------
GET  /                           liveness probe ("OK")
GET  /health                     uptime and component stats
GET  /clients                    every registered client
GET  /clients/{client_id}        one client, 404 when unknown
POST /clients                    full upsert, body is a JSON list
GET  /refreshMap                 pull the registry from its source now
GET  /receive?clientId=          heartbeat
GET  /tgclientoff/{processId}?clientId=
                                 "this process is now active"
GET  /requestcall?clientId=&chatId=&type=
                                 forward a call request

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import json
from typing import Optional

from aiohttp import web

from exceptions.registry import UnknownClientError
from exceptions.validation import (
    InvalidFormatError,
    MissingFieldError,
    ValidationException,
)
from monitoring.context import WatchdogContext
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("WatchdogServer")


def _required_query(request: web.Request, name: str) -> str:
    value = request.query.get(name, "").strip()
    if not value:
        raise MissingFieldError(name)
    return value


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map domain exceptions onto JSON error responses."""
    try:
        return await handler(request)
    except ValidationException as e:
        logger.info(f"[API] 400 {request.method} {request.path}: {e.message}")
        return web.json_response({"error": e.user_message()}, status=400)
    except UnknownClientError as e:
        return web.json_response({"error": e.message}, status=404)


class WatchdogServer:
    """
    Parameters
    ----------
    context : WatchdogContext
        Every handler delegates to it.
    host / port : where ``start()`` binds.
    """

    def __init__(self, context: WatchdogContext, host: str = "0.0.0.0", port: int = 9000):
        self.context = context
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._request_count = 0
        self.app = self.build_app()

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        app.router.add_get("/", self._handle_root)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/clients", self._handle_list_clients)
        app.router.add_get("/clients/{client_id}", self._handle_get_client)
        app.router.add_post("/clients", self._handle_register_clients)
        app.router.add_get("/refreshMap", self._handle_refresh)
        app.router.add_get("/receive", self._handle_heartbeat)
        app.router.add_get("/tgclientoff/{process_id}", self._handle_process_active)
        app.router.add_get("/requestcall", self._handle_request_call)
        return app

    async def start(self) -> None:
        """Bind and start serving."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info(f"✓ WatchdogServer listening on {self._host}:{self._port}")

    async def stop(self) -> None:
        """Gracefully shut down the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("✓ WatchdogServer stopped")

    # ------------------------------------------------------------------
    # ROUTE HANDLERS
    # ------------------------------------------------------------------

    async def _handle_root(self, request: web.Request) -> web.Response:
        self._request_count += 1
        return web.Response(text="OK", status=200)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health: detailed health JSON."""
        self._request_count += 1
        stats = self.context.get_stats()
        health = {
            "status": "healthy",
            "app": self.context.settings.app_name,
            "instance": self.context.settings.instance_name,
            "uptime_seconds": stats["uptime_seconds"],
            "uptime_human": stats["uptime_human"],
            "requests_served": self._request_count,
            "timestamp": TimeHelper.get_utc_now().isoformat(),
            "clients": stats["registry"]["clients"],
            "queue_length": stats["sequencer"]["queue_length"],
            "alerts": stats["alerts"],
            "monitor": stats["monitor"],
        }
        return web.json_response(health, status=200)

    async def _handle_list_clients(self, request: web.Request) -> web.Response:
        self._request_count += 1
        return web.json_response([r.to_public() for r in self.context.get_clients()])

    async def _handle_get_client(self, request: web.Request) -> web.Response:
        self._request_count += 1
        record = self.context.get_client(request.match_info["client_id"])
        return web.json_response(record.to_public())

    async def _handle_register_clients(self, request: web.Request) -> web.Response:
        """POST /clients: replaces the client set."""
        self._request_count += 1
        try:
            body = await request.json()
        except json.JSONDecodeError as e:
            raise InvalidFormatError("Body is not valid JSON", field="body", cause=e) from e

        if not isinstance(body, list):
            raise InvalidFormatError(
                "Client set must be a JSON list",
                field="body",
                expected_format="a JSON list of client objects",
            )

        count = self.context.register_clients(body)
        return web.json_response({"registered": count})

    async def _handle_refresh(self, request: web.Request) -> web.Response:
        """GET /refreshMap: pull the registry from its source now."""
        self._request_count += 1
        count = await self.context.refresh_from_source()
        if count is None:
            return web.json_response({"refreshed": False}, status=502)
        return web.json_response({"refreshed": True, "clients": count})

    async def _handle_heartbeat(self, request: web.Request) -> web.Response:
        """GET /receive?clientId=: the client is alive."""
        self._request_count += 1
        client_id = _required_query(request, "clientId")
        known = self.context.report_heartbeat(client_id)
        return web.json_response({"received": known})

    async def _handle_process_active(self, request: web.Request) -> web.Response:
        """GET /tgclientoff/{processId}?clientId=: answers a JSON bool."""
        self._request_count += 1
        client_id = _required_query(request, "clientId")
        process_id = request.match_info["process_id"]
        accepted = await self.context.report_active_process(client_id, process_id)
        return web.json_response(accepted)

    async def _handle_request_call(self, request: web.Request) -> web.Response:
        self._request_count += 1
        client_id = _required_query(request, "clientId")
        chat_id = _required_query(request, "chatId")
        call_type = _required_query(request, "type")
        forwarded = await self.context.request_call(client_id, chat_id, call_type)
        return web.json_response({"forwarded": forwarded})
