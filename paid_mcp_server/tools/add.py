from decimal import Decimal
from typing import Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt

from paid_mcp_server.payments.gate import PaymentGate
from paid_mcp_server.tools.registry import ToolDefinition, ToolRegistry

ADD_PRICE = Decimal("0.01")

Number = Union[StrictInt, StrictFloat]


class AddInput(BaseModel):
    a: Number = Field(description="First number")
    b: Number = Field(description="Second number")


class AddOutput(BaseModel):
    result: Number


def create_add_tool(gate: PaymentGate, price: Decimal = ADD_PRICE) -> ToolDefinition:
    async def add(params: AddInput) -> AddOutput:
        # No result is produced unless the charge succeeds
        await gate.require_payment(price)
        return AddOutput(result=params.a + params.b)

    return ToolDefinition(
        name="add",
        title="Addition Tool",
        description="Add two numbers together",
        input_model=AddInput,
        output_model=AddOutput,
        handler=add,
    )


def register_add_tool(registry: ToolRegistry, gate: PaymentGate, price: Decimal = ADD_PRICE) -> ToolDefinition:
    return registry.register(create_add_tool(gate, price))
