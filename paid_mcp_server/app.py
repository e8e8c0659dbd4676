"""
Starlette application wiring.

Request pipeline: JSON body parsing -> payment gate -> ``POST /`` MCP
handler. Every long-lived object is built here once and handed down.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from mcp.types import INVALID_REQUEST, PARSE_ERROR
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from paid_mcp_server.config import ServerConfig
from paid_mcp_server.payments.client import PaymentServerClient
from paid_mcp_server.payments.gate import PaymentGate, PaymentMiddleware
from paid_mcp_server.server import create_server
from paid_mcp_server.tools.add import register_add_tool
from paid_mcp_server.tools.registry import ToolRegistry
from paid_mcp_server.transport import MCPRequestHandler

logger = logging.getLogger(__name__)

# Largest JSON body accepted, in bytes
MAX_BODY_SIZE = 100 * 1024


class JSONBodyMiddleware:
    """
    Parse JSON request bodies before anything else runs.

    Bodies larger than ``max_body_size`` bytes are refused with 413 without
    being buffered, and malformed JSON is answered with a JSON-RPC parse
    error. The parsed body is stored in ``scope["state"]["json_body"]`` and
    the raw bytes are replayed to the downstream app.
    """

    def __init__(self, app: ASGIApp, max_body_size: int = MAX_BODY_SIZE) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST" or not self._is_json(scope):
            await self.app(scope, receive, send)
            return

        declared = self._header(scope, b"content-length")
        if declared is not None and declared.isdigit() and int(declared) > self.max_body_size:
            await self._too_large(scope, receive, send)
            return

        chunks = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_body_size:
                await self._too_large(scope, receive, send)
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)
        body = b"".join(chunks)

        try:
            parsed = json.loads(body) if body else None
        except ValueError:
            logger.info("Rejecting request with malformed JSON body")
            response = JSONResponse(
                {"jsonrpc": "2.0", "error": {"code": PARSE_ERROR, "message": "Parse error"}, "id": None},
                status_code=400,
            )
            await response(scope, receive, send)
            return

        scope.setdefault("state", {})["json_body"] = parsed

        replayed = False

        async def replay_receive() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay_receive, send)

    async def _too_large(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.info(f"Rejecting request body larger than {self.max_body_size} bytes")
        response = JSONResponse(
            {"jsonrpc": "2.0", "error": {"code": INVALID_REQUEST, "message": "Request body too large"}, "id": None},
            status_code=413,
        )
        await response(scope, receive, send)

    @staticmethod
    def _header(scope: Scope, name: bytes) -> Optional[bytes]:
        for key, value in scope.get("headers", []):
            if key == name:
                return value
        return None

    @classmethod
    def _is_json(cls, scope: Scope) -> bool:
        content_type = cls._header(scope, b"content-type")
        if content_type is None:
            return False
        return content_type.split(b";")[0].strip().lower() == b"application/json"


def create_registry(gate: PaymentGate) -> ToolRegistry:
    registry = ToolRegistry()
    register_add_tool(registry, gate)
    return registry


def create_app(config: ServerConfig, payment_server: Optional[PaymentServerClient] = None) -> Starlette:
    """
    Build the ASGI application for ``config``.

    ``payment_server`` defaults to an httpx client for ``config.payment_server``.
    """
    if payment_server is None:
        payment_server = PaymentServerClient(config.payment_server, config.account)

    gate = PaymentGate(config.account, payment_server, config.payee_name)
    registry = create_registry(gate)
    handler = MCPRequestHandler(create_server(registry))

    @asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await payment_server.close()

    app = Starlette(
        routes=[Route("/", endpoint=handler, methods=["POST"])],
        middleware=[
            Middleware(JSONBodyMiddleware),
            Middleware(PaymentMiddleware, gate=gate, payment_server_url=config.payment_server),
        ],
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.gate = gate
    return app
