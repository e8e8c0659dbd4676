"""
Per-request MCP transport handling.

Every HTTP request gets its own stateless StreamableHTTPServerTransport so
JSON-RPC request ids from concurrent callers can never collide. The MCP
server is connected to that transport for the lifetime of the request only,
and the transport is terminated as soon as the client goes away.
"""

import json
import logging

import anyio
from anyio.abc import TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

from paid_mcp_server.errors import InternalServerError

logger = logging.getLogger(__name__)


class MCPRequestHandler:
    """ASGI endpoint piping one HTTP request through a fresh MCP transport."""

    def __init__(self, server: Server) -> None:
        self.server = server

    def create_transport(self) -> StreamableHTTPServerTransport:
        return StreamableHTTPServerTransport(
            mcp_session_id=None,
            is_json_response_enabled=True,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        body = scope.get("state", {}).get("json_body")
        logger.info(f"Received MCP request: {json.dumps(body)}")

        response_started = False
        response_finished = False
        body_consumed = anyio.Event()

        async def tracked_receive() -> Message:
            message = await receive()
            if message["type"] == "http.request" and not message.get("more_body", False):
                body_consumed.set()
            return message

        async def tracked_send(message: Message) -> None:
            nonlocal response_started, response_finished
            if message["type"] == "http.response.start":
                response_started = True
            elif message["type"] == "http.response.body" and not message.get("more_body", False):
                response_finished = True
            await send(message)

        async def release_on_disconnect(handling: anyio.CancelScope) -> None:
            # Only read from the client once the transport has the whole body
            await body_consumed.wait()
            while (await receive())["type"] != "http.disconnect":
                pass
            if response_finished:
                return
            logger.info("Client disconnected, releasing MCP transport")
            handling.cancel()
            with anyio.CancelScope(shield=True):
                await transport.terminate()

        transport = self.create_transport()
        try:
            async with anyio.create_task_group() as tg:
                try:
                    await tg.start(self._run_server, transport)
                    with anyio.CancelScope() as handling:
                        tg.start_soon(release_on_disconnect, handling)
                        await transport.handle_request(scope, tracked_receive, tracked_send)
                finally:
                    with anyio.CancelScope(shield=True):
                        await transport.terminate()
                    tg.cancel_scope.cancel()
        except Exception:
            logger.exception("Error handling MCP request")
            if not response_started:
                response = JSONResponse(InternalServerError().to_jsonrpc(), status_code=500)
                await response(scope, receive, send)

    async def _run_server(
        self,
        transport: StreamableHTTPServerTransport,
        *,
        task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        async with transport.connect() as (read_stream, write_stream):
            task_status.started()
            try:
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                    stateless=True,
                )
            except Exception:
                logger.exception("MCP server session crashed")
