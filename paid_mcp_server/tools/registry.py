import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type, Union

import mcp.types as types
from pydantic import BaseModel, ConfigDict, ValidationError

from paid_mcp_server.errors import ConfigurationError, InvalidArgumentError

ToolHandler = Callable[[BaseModel], Awaitable[Union[BaseModel, Dict[str, Any]]]]


def _format_errors(error: ValidationError) -> List[str]:
    errors = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        errors.append(f"{location}: {item['msg']}")
    return errors


class ToolDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    title: Optional[str] = None
    description: str
    input_model: Type[BaseModel]
    output_model: Type[BaseModel]
    handler: ToolHandler

    def validate_arguments(self, arguments: Optional[Dict[str, Any]]) -> Tuple[Optional[BaseModel], List[str]]:
        """
        Validate call arguments against the input model.

        Returns the parsed input and an empty error list, or None and the
        validation errors.
        """
        try:
            return self.input_model.model_validate(arguments or {}), []
        except ValidationError as e:
            return None, _format_errors(e)

    def validate_output(self, output: Union[BaseModel, Dict[str, Any]]) -> BaseModel:
        if isinstance(output, self.output_model):
            return output
        if isinstance(output, BaseModel):
            output = output.model_dump()
        return self.output_model.model_validate(output)

    def to_mcp_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.input_model.model_json_schema(),
            outputSchema=self.output_model.model_json_schema(),
        )


class ToolRegistry:
    """
    Named, schema-typed tools.

    Filled at startup and read-only while serving. Registering a name that is
    already taken raises ConfigurationError.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}

    def register(self, definition: ToolDefinition) -> ToolDefinition:
        if definition.name in self._tools:
            raise ConfigurationError(f"Tool already registered: {definition.name}")
        self._tools[definition.name] = definition
        return definition

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[types.Tool]:
        return [tool.to_mcp_tool() for tool in self._tools.values()]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]]) -> types.CallToolResult:
        """
        Validate arguments, run the handler and wrap its output.

        Raises:
            InvalidArgumentError: Unknown tool or arguments not matching the input schema
        """
        tool = self._tools.get(name)
        if tool is None:
            raise InvalidArgumentError(f"Unknown tool: {name}")

        params, errors = tool.validate_arguments(arguments)
        if errors:
            raise InvalidArgumentError(f"Invalid arguments for tool {name}: {'; '.join(errors)}", errors)

        output = tool.validate_output(await tool.handler(params))
        structured = output.model_dump(mode="json")
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=json.dumps(structured))],
            structuredContent=structured,
        )
