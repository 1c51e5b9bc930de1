"""Convert pydantic-ai Tools to in-process MCP server tools.

Note:
    ``convert_toolset`` reads ``agent._function_toolset``, a pydantic-ai
    internal that may change in future versions.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Literal, Protocol, TypedDict, runtime_checkable

from pydantic_ai.tools import Tool

from claudecode_agent.exceptions import ToolValidationError
from claudecode_agent.mcp_server import SdkMcpTool, create_sdk_mcp_server
from claudecode_agent.types import McpSdkServerConfig

logger = logging.getLogger(__name__)


# Type alias for JSON schema dict
type JsonSchema = dict[str, object]


class McpTextContent(TypedDict):
    """MCP text content block."""

    type: Literal["text"]
    text: str


class McpResponse(TypedDict, total=False):
    """MCP tool result with content blocks."""

    content: list[McpTextContent]
    isError: bool


@runtime_checkable
class AgentToolset(Protocol):
    """Protocol for a pydantic-ai function toolset (e.g. ``agent._function_toolset``).

    Attributes:
        tools: Mapping of tool names to pydantic-ai Tool objects.
    """

    tools: dict[str, Tool[object]]


def _format_return_value_as_mcp(result: object) -> McpResponse:
    """Convert a return value to MCP format.

    Args:
        result: The return value from a tool function.

    Returns:
        An McpResponse with "content" key containing text blocks.

    Examples:
        >>> _format_return_value_as_mcp("hello")
        {'content': [{'type': 'text', 'text': 'hello'}]}
        >>> _format_return_value_as_mcp({"key": "value"})
        {'content': [{'type': 'text', 'text': '{"key": "value"}'}]}
    """
    # Already MCP text content
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        blocks = [
            McpTextContent(type="text", text=str(item.get("text", "")))
            for item in result["content"]
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        if blocks:
            return McpResponse(content=blocks)

    if result is None:
        text = ""
    elif isinstance(result, str):
        text = result
    elif isinstance(result, (dict, list)):
        text = json.dumps(result)
    else:
        text = str(result)

    return McpResponse(content=[McpTextContent(type="text", text=text)])


def _create_async_handler(
    name: str,
    func: Callable[..., object],
    takes_ctx: bool,
) -> Callable[[JsonSchema], Awaitable[dict[str, object]]]:
    """Wrap a sync/async tool function as an async MCP handler.

    Exceptions raised by the tool become ``isError`` results so the model
    sees the failure instead of the request failing.

    Raises:
        NotImplementedError: If the function takes a RunContext.
    """
    if takes_ctx:
        raise NotImplementedError(
            f"Tool '{name}' takes a RunContext, which is not supported. "
            "Please use the tool_plain decorator instead."
        )

    async def handler(args: JsonSchema) -> dict[str, object]:
        try:
            result = func(**args)
            if inspect.isawaitable(result):
                result = await result
            return dict(_format_return_value_as_mcp(result))
        except Exception as e:
            logger.exception("Tool '%s' raised during execution", name)
            return dict(
                McpResponse(
                    content=[
                        McpTextContent(type="text", text=f"Error: {type(e).__name__}: {e}")
                    ],
                    isError=True,
                )
            )

    return handler


def convert_tool(tool: Tool[object]) -> SdkMcpTool:
    """Convert a pydantic-ai Tool to an :class:`SdkMcpTool`.

    Raises:
        TypeError: If the input is not a Tool instance.
        ToolValidationError: If the tool has an empty name.
        NotImplementedError: If the tool uses ``takes_ctx=True``.

    Examples:
        >>> from pydantic_ai import Tool
        >>> def get_weather(city: str) -> str:
        ...     return f"Weather in {city}"
        >>> convert_tool(Tool(get_weather)).name
        'get_weather'
    """
    if not isinstance(tool, Tool):
        raise TypeError(f"expected Tool, got {type(tool).__name__}")

    tool_def = tool.tool_def
    if not tool_def.name or not tool_def.name.strip():
        raise ToolValidationError("Tool name cannot be empty")

    return SdkMcpTool(
        name=tool_def.name,
        description=tool_def.description or "",
        input_schema=tool_def.parameters_json_schema,
        handler=_create_async_handler(tool_def.name, tool.function, tool.takes_ctx),
    )


def convert_toolset(toolset: AgentToolset) -> list[SdkMcpTool]:
    """Convert every tool of a pydantic-ai function toolset.

    Raises:
        TypeError: If *toolset* has no ``tools`` mapping.
    """
    if not isinstance(toolset, AgentToolset):
        raise TypeError(f"expected a toolset with 'tools', got {type(toolset).__name__}")

    converted = [convert_tool(t) for t in toolset.tools.values()]
    logger.debug(
        "convert_toolset: converted %d tools, names=%s",
        len(converted),
        [t.name for t in converted],
    )
    return converted


def convert_tools_to_mcp_server(
    tools: Iterable[Tool[object]],
    *,
    server_name: str,
    server_version: str = "1.0.0",
) -> McpSdkServerConfig:
    """Serve pydantic-ai Tools from an in-process MCP server.

    Examples:
        >>> config = convert_tools_to_mcp_server(
        ...     [Tool(get_weather)], server_name="weather"
        ... )
        >>> options = ClaudeAgentOptions(mcp_servers={"weather": config})
    """
    return create_sdk_mcp_server(
        server_name,
        version=server_version,
        tools=[convert_tool(t) for t in tools],
    )


__all__ = [
    "AgentToolset",
    "convert_tool",
    "convert_tools_to_mcp_server",
    "convert_toolset",
]
