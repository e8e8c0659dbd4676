"""
MCP protocol server for the paid tools.

Binds a ToolRegistry to a low-level MCP ``Server``. The server object is
built once at startup and connected to a fresh transport for every HTTP
request.
"""

import logging
from typing import List

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.shared.exceptions import McpError

from paid_mcp_server.errors import InvalidArgumentError, PaymentRequiredError, PaymentServerError
from paid_mcp_server.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "atxp-add-server"
SERVER_VERSION = "1.0.0"


def create_server(registry: ToolRegistry, name: str = SERVER_NAME, version: str = SERVER_VERSION) -> Server:
    server = Server(name, version=version)

    @server.list_tools()
    async def handle_list_tools() -> List[types.Tool]:
        """List available tools."""
        return registry.list_tools()

    async def handle_call_tool(request: types.CallToolRequest) -> types.ServerResult:
        """Handle tool calls."""
        name = request.params.name
        try:
            result = await registry.call(name, request.params.arguments)
        except InvalidArgumentError as e:
            logger.info(f"Rejected call to {name}: {e}")
            raise McpError(types.ErrorData(code=e.code, message=str(e), data={"errors": e.errors} if e.errors else None))
        except PaymentRequiredError as e:
            logger.info(f"Payment required for {name}: {e}")
            raise McpError(types.ErrorData(code=e.code, message=str(e), data=e.data))
        except PaymentServerError as e:
            logger.error(f"Payment server error in tool call {name}: {e}")
            raise McpError(types.ErrorData(code=types.INTERNAL_ERROR, message="Payment server unavailable"))
        except Exception as e:
            logger.error(f"Error in tool call {name}: {e}")
            result = types.CallToolResult(
                content=[types.TextContent(type="text", text=f"Error: {str(e)}")],
                isError=True,
            )
        return types.ServerResult(result)

    # Registered directly so protocol errors reach the client as JSON-RPC errors
    server.request_handlers[types.CallToolRequest] = handle_call_tool
    return server
