"""Tests for converting pydantic-ai tools into in-process MCP tools."""

import logging

import pytest
from pydantic_ai import RunContext
from pydantic_ai.tools import Tool
from pydantic_ai.toolsets import FunctionToolset

from claudecode_agent.exceptions import ToolValidationError
from claudecode_agent.mcp_server import McpSdkServer, SdkMcpTool
from claudecode_agent.tool_converter import (
    AgentToolset,
    _format_return_value_as_mcp,
    convert_tool,
    convert_tools_to_mcp_server,
    convert_toolset,
)


def get_weather(city: str) -> str:
    """Get the weather for a city."""
    return f"Sunny in {city}"


async def add_numbers(a: int, b: int) -> int:
    """Add two numbers."""
    return a + b


def lookup(key: str) -> dict[str, str]:
    """Look up a record."""
    return {"key": key, "value": "found"}


def explode() -> str:
    """Always fails."""
    raise ValueError("bad input")


def with_context(ctx: RunContext[None], query: str) -> str:
    """Needs the run context."""
    return query


# ── Return value formatting ──────────────────────────────────────────────


class TestFormatReturnValue:
    """Tests for _format_return_value_as_mcp."""

    def test_string(self) -> None:
        """A string should become text content."""
        assert _format_return_value_as_mcp("hi") == {"content": [{"type": "text", "text": "hi"}]}

    def test_none(self) -> None:
        """None should become empty text."""
        assert _format_return_value_as_mcp(None) == {"content": [{"type": "text", "text": ""}]}

    def test_dict_is_json(self) -> None:
        """A dict should be JSON encoded."""
        result = _format_return_value_as_mcp({"a": 1})
        assert result["content"][0]["text"] == '{"a": 1}'

    def test_number_uses_str(self) -> None:
        """Other values should use str()."""
        assert _format_return_value_as_mcp(42)["content"][0]["text"] == "42"

    def test_existing_mcp_content_passes_through(self) -> None:
        """MCP content should pass through."""
        content = {"content": [{"type": "text", "text": "already formatted"}]}
        assert _format_return_value_as_mcp(content) == content


# ── Tool conversion ──────────────────────────────────────────────────────


class TestConvertTool:
    """Tests for convert_tool."""

    def test_metadata(self) -> None:
        """convert_tool should keep name, description and schema."""
        converted = convert_tool(Tool(get_weather))

        assert isinstance(converted, SdkMcpTool)
        assert converted.name == "get_weather"
        assert converted.description == "Get the weather for a city."
        assert converted.input_schema["properties"]["city"]["type"] == "string"  # type: ignore[index]
        assert converted.input_schema["required"] == ["city"]

    @pytest.mark.asyncio
    async def test_sync_function(self) -> None:
        """A sync function should be callable through the handler."""
        converted = convert_tool(Tool(get_weather))
        result = await converted.handler({"city": "Tokyo"})
        assert result == {"content": [{"type": "text", "text": "Sunny in Tokyo"}]}

    @pytest.mark.asyncio
    async def test_async_function(self) -> None:
        """An async function should be awaited by the handler."""
        converted = convert_tool(Tool(add_numbers))
        result = await converted.handler({"a": 2, "b": 40})
        assert result == {"content": [{"type": "text", "text": "42"}]}

    @pytest.mark.asyncio
    async def test_dict_result_serialized(self) -> None:
        """A dict result should be serialized to JSON text."""
        converted = convert_tool(Tool(lookup))
        result = await converted.handler({"key": "k1"})
        assert result["content"] == [{"type": "text", "text": '{"key": "k1", "value": "found"}'}]

    @pytest.mark.asyncio
    async def test_exception_becomes_error_result(self, caplog: pytest.LogCaptureFixture) -> None:
        """An exception should become an isError result."""
        converted = convert_tool(Tool(explode))
        with caplog.at_level(logging.ERROR, logger="claudecode_agent.tool_converter"):
            result = await converted.handler({})

        assert result == {
            "content": [{"type": "text", "text": "Error: ValueError: bad input"}],
            "isError": True,
        }
        assert "explode" in caplog.text

    def test_run_context_not_supported(self) -> None:
        """A RunContext tool should be rejected."""
        with pytest.raises(NotImplementedError, match="tool_plain"):
            convert_tool(Tool(with_context))

    def test_blank_name_rejected(self) -> None:
        """A blank tool name should be rejected."""
        with pytest.raises(ToolValidationError):
            convert_tool(Tool(get_weather, name="   "))

    def test_non_tool_rejected(self) -> None:
        """A non-Tool argument should raise TypeError."""
        with pytest.raises(TypeError, match="expected Tool"):
            convert_tool(get_weather)  # type: ignore[arg-type]


# ── Toolsets and servers ─────────────────────────────────────────────────


class TestConvertToolset:
    """Tests for convert_toolset."""

    def test_function_toolset(self) -> None:
        """A FunctionToolset should convert every tool."""
        toolset = FunctionToolset([get_weather, add_numbers])
        assert isinstance(toolset, AgentToolset)

        converted = convert_toolset(toolset)
        assert sorted(t.name for t in converted) == ["add_numbers", "get_weather"]

    def test_rejects_object_without_tools(self) -> None:
        """An object without tools should raise TypeError."""
        with pytest.raises(TypeError):
            convert_toolset(object())  # type: ignore[arg-type]


class TestConvertToolsToMcpServer:
    """Tests for convert_tools_to_mcp_server."""

    @pytest.mark.asyncio
    async def test_server_serves_converted_tools(self) -> None:
        """The server should serve the converted tools."""
        config = convert_tools_to_mcp_server(
            [Tool(get_weather), Tool(add_numbers)], server_name="utils", server_version="0.2.0"
        )

        assert config["type"] == "sdk"
        assert config["name"] == "utils"
        server = config["instance"]
        assert isinstance(server, McpSdkServer)
        assert [t["name"] for t in server.list_tools()] == ["get_weather", "add_numbers"]

        response = await server.handle(
            "tools/call", {"name": "add_numbers", "arguments": {"a": 1, "b": 2}}, 1
        )
        assert response["result"] == {"content": [{"type": "text", "text": "3"}]}

    def test_duplicate_names_rejected(self) -> None:
        """Duplicate converted tool names should be rejected."""
        with pytest.raises(ToolValidationError, match="Duplicate"):
            convert_tools_to_mcp_server([Tool(get_weather), Tool(get_weather)], server_name="x")
