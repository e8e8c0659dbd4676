import asyncio
from decimal import Decimal

import pytest

from paid_mcp_server.errors import InvalidArgumentError, PaymentRequiredError
from paid_mcp_server.tools.add import ADD_PRICE, AddInput, create_add_tool, register_add_tool
from paid_mcp_server.tools.registry import ToolRegistry


class RecordingGate:
    def __init__(self, fail=False):
        self.fail = fail
        self.prices = []

    async def require_payment(self, price):
        self.prices.append(price)
        if self.fail:
            raise PaymentRequiredError(price, "pr-1", "https://auth.example.test/payment-request/pr-1")


@pytest.fixture
def gate():
    return RecordingGate()


@pytest.fixture
def registry(gate):
    registry = ToolRegistry()
    register_add_tool(registry, gate)
    return registry


def test_add_tool_definition(gate):
    tool = create_add_tool(gate)
    schema = tool.to_mcp_tool()

    assert tool.name == "add"
    assert tool.title == "Addition Tool"
    assert tool.description == "Add two numbers together"
    assert sorted(schema.inputSchema["required"]) == ["a", "b"]
    assert schema.outputSchema["required"] == ["result"]


@pytest.mark.parametrize(
    "a, b, expected",
    [
        (2, 3, 5),
        (-7, 7, 0),
        (0.1, 0.2, 0.1 + 0.2),
        (1.5, 2, 3.5),
        (10**20, 1, 10**20 + 1),
    ],
)
def test_add_returns_sum(registry, gate, a, b, expected):
    result = asyncio.run(registry.call("add", {"a": a, "b": b}))

    assert result.structuredContent == {"result": expected}
    assert gate.prices == [ADD_PRICE]


def test_integer_sum_stays_integer(registry):
    result = asyncio.run(registry.call("add", {"a": 2, "b": 3}))

    assert isinstance(result.structuredContent["result"], int)
    assert result.content[0].text == '{"result": 5}'


def test_add_charges_one_cent(registry, gate):
    asyncio.run(registry.call("add", {"a": 1, "b": 1}))
    assert gate.prices == [Decimal("0.01")]


def test_failed_payment_produces_no_output():
    gate = RecordingGate(fail=True)
    registry = ToolRegistry()
    register_add_tool(registry, gate)

    with pytest.raises(PaymentRequiredError):
        asyncio.run(registry.call("add", {"a": 2, "b": 3}))
    assert gate.prices == [ADD_PRICE]


@pytest.mark.parametrize(
    "arguments",
    [
        {"a": "2", "b": 3},
        {"a": 2, "b": True},
        {"a": None, "b": 3},
        {"a": [1], "b": 3},
        {"a": 2},
        {},
    ],
)
def test_non_numbers_are_rejected_before_payment(registry, gate, arguments):
    with pytest.raises(InvalidArgumentError):
        asyncio.run(registry.call("add", arguments))
    assert gate.prices == []


def test_input_model_accepts_mixed_numbers():
    params = AddInput.model_validate({"a": 1, "b": 2.5})
    assert params.a == 1 and isinstance(params.a, int)
    assert params.b == 2.5
