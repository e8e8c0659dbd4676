import asyncio

import mcp.types as types
import pytest
from mcp.server.lowlevel import NotificationOptions
from mcp.shared.exceptions import McpError
from pydantic import BaseModel

from paid_mcp_server.errors import PaymentRequiredError, PaymentServerError
from paid_mcp_server.server import create_server
from paid_mcp_server.tools.add import register_add_tool
from paid_mcp_server.tools.registry import ToolDefinition, ToolRegistry


class StubGate:
    def __init__(self, error=None):
        self.error = error

    async def require_payment(self, price):
        if self.error is not None:
            raise self.error


def call_tool(server, name, arguments):
    request = types.CallToolRequest(
        method="tools/call",
        params=types.CallToolRequestParams(name=name, arguments=arguments),
    )
    handler = server.request_handlers[types.CallToolRequest]
    return asyncio.run(handler(request))


def make_server(gate):
    registry = ToolRegistry()
    register_add_tool(registry, gate)
    return create_server(registry)


def test_server_advertises_tools_capability():
    server = make_server(StubGate())
    capabilities = server.get_capabilities(
        notification_options=NotificationOptions(),
        experimental_capabilities={},
    )
    assert capabilities.tools is not None
    assert types.ListToolsRequest in server.request_handlers


def test_call_tool_success():
    server = make_server(StubGate())

    result = call_tool(server, "add", {"a": 2, "b": 3}).root

    assert isinstance(result, types.CallToolResult)
    assert result.structuredContent == {"result": 5}
    assert result.isError is False


def test_invalid_arguments_map_to_invalid_params():
    server = make_server(StubGate())

    with pytest.raises(McpError) as exc_info:
        call_tool(server, "add", {"a": "two", "b": 3})

    assert exc_info.value.error.code == types.INVALID_PARAMS
    assert exc_info.value.error.data["errors"]


def test_unknown_tool_maps_to_invalid_params():
    server = make_server(StubGate())

    with pytest.raises(McpError) as exc_info:
        call_tool(server, "subtract", {"a": 1, "b": 2})

    assert exc_info.value.error.code == types.INVALID_PARAMS
    assert "Unknown tool: subtract" in exc_info.value.error.message


def test_payment_required_maps_to_payment_error_code():
    error = PaymentRequiredError(price=0.01, payment_request_id="pr-1", payment_request_url="https://pay/pr-1")
    server = make_server(StubGate(error))

    with pytest.raises(McpError) as exc_info:
        call_tool(server, "add", {"a": 2, "b": 3})

    assert exc_info.value.error.code == -30402
    assert exc_info.value.error.data == {"paymentRequestId": "pr-1", "paymentRequestUrl": "https://pay/pr-1"}


def test_payment_server_error_maps_to_internal_error():
    server = make_server(StubGate(PaymentServerError("down")))

    with pytest.raises(McpError) as exc_info:
        call_tool(server, "add", {"a": 2, "b": 3})

    assert exc_info.value.error.code == types.INTERNAL_ERROR


def test_handler_failure_becomes_error_result():
    class Empty(BaseModel):
        pass

    async def explode(params):
        raise RuntimeError("boom")

    registry = ToolRegistry()
    registry.register(
        ToolDefinition(name="explode", description="Always fails", input_model=Empty, output_model=Empty, handler=explode)
    )
    server = create_server(registry)

    result = call_tool(server, "explode", {}).root

    assert result.isError is True
    assert result.content[0].text == "Error: boom"
