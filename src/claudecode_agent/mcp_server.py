"""In-process MCP server answering requests routed through the control channel.

Tools, resources and prompts are plain records with handler callables. The
CLI reaches them through ``mcp_message`` control requests, which the control
engine forwards to :meth:`McpSdkServer.handle_request`; nothing is exposed
over a socket.

Dispatch::

    Query  ── mcp_message{server_name, message} ──>  McpSdkServer.handle_request
           <── {"jsonrpc": "2.0", "id": ..., "result" | "error": ...} ──
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal, NotRequired, TypedDict

from mcp.types import (
    INTERNAL_ERROR,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    Prompt,
    PromptArgument,
    Tool,
)
from pydantic import BaseModel

from claudecode_agent.exceptions import McpRequestError, ToolValidationError
from claudecode_agent.types import McpSdkServerConfig

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

type ToolHandler = Callable[[dict[str, object]], Awaitable[dict[str, object]] | dict[str, object]]
type ResourceHandler = Callable[[str], Awaitable[dict[str, object]] | dict[str, object]]
type PromptHandler = Callable[[dict[str, str]], Awaitable[dict[str, object]] | dict[str, object]]

# Flat schema values accepted as parameter types
_JSON_SCHEMA_TYPES: dict[object, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    "str": "string",
    "string": "string",
    "int": "integer",
    "integer": "integer",
    "float": "number",
    "number": "number",
    "bool": "boolean",
    "boolean": "boolean",
}


# ── JSON-RPC envelopes ─────────────────────────────────────────────────────


class JsonRpcErrorBody(TypedDict):
    """Error member of a JSON-RPC response."""

    code: int
    message: str


class JsonRpcResponse(TypedDict):
    """JSON-RPC 2.0 response envelope; exactly one of result/error is set."""

    jsonrpc: Literal["2.0"]
    id: str | int | None
    result: NotRequired[dict[str, object]]
    error: NotRequired[JsonRpcErrorBody]


def _success(request_id: str | int | None, result: dict[str, object]) -> JsonRpcResponse:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def _error(request_id: str | int | None, code: int, message: str) -> JsonRpcResponse:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }


# ── Registry records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class SdkMcpTool:
    """A tool served by an in-process MCP server.

    Attributes:
        name: Unique tool name.
        description: Human-readable description shown to the model.
        input_schema: JSON schema, a pydantic model class, or a flat
            ``{param: type}`` mapping.
        handler: Called with the arguments dict; must return
            ``{"content": [...], "isError"?: bool}``. May be sync or async.
    """

    name: str
    description: str
    input_schema: Mapping[str, object] | type[BaseModel]
    handler: ToolHandler


@dataclass(frozen=True)
class SdkMcpResource:
    """A resource served by an in-process MCP server.

    The handler receives the requested URI and must return
    ``{"contents": [...]}``.
    """

    uri: str
    name: str
    handler: ResourceHandler
    description: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class SdkMcpPrompt:
    """A prompt template served by an in-process MCP server.

    The handler receives the prompt arguments and must return
    ``{"messages": [...]}``.
    """

    name: str
    handler: PromptHandler
    description: str | None = None
    arguments: tuple[PromptArgument, ...] = field(default_factory=tuple)


def tool(
    name: str,
    description: str,
    input_schema: Mapping[str, object] | type[BaseModel],
) -> Callable[[ToolHandler], SdkMcpTool]:
    """Decorator defining an :class:`SdkMcpTool`.

    Examples:
        >>> @tool("add", "Add two numbers", {"a": float, "b": float})
        ... async def add(args):
        ...     return {"content": [{"type": "text", "text": str(args["a"] + args["b"])}]}
        >>> add.name
        'add'
    """

    def decorator(handler: ToolHandler) -> SdkMcpTool:
        return SdkMcpTool(
            name=name,
            description=description,
            input_schema=input_schema,
            handler=handler,
        )

    return decorator


def resource(
    uri: str,
    name: str,
    description: str | None = None,
    mime_type: str | None = None,
) -> Callable[[ResourceHandler], SdkMcpResource]:
    """Decorator defining an :class:`SdkMcpResource`."""

    def decorator(handler: ResourceHandler) -> SdkMcpResource:
        return SdkMcpResource(
            uri=uri,
            name=name,
            description=description,
            mime_type=mime_type,
            handler=handler,
        )

    return decorator


def prompt(
    name: str,
    description: str | None = None,
    arguments: Sequence[str | PromptArgument] | None = None,
) -> Callable[[PromptHandler], SdkMcpPrompt]:
    """Decorator defining an :class:`SdkMcpPrompt`.

    Plain strings in ``arguments`` become required arguments.
    """
    prompt_arguments = tuple(
        PromptArgument(name=arg, required=True) if isinstance(arg, str) else arg
        for arg in (arguments or [])
    )

    def decorator(handler: PromptHandler) -> SdkMcpPrompt:
        return SdkMcpPrompt(
            name=name,
            description=description,
            arguments=prompt_arguments,
            handler=handler,
        )

    return decorator


# ── Schema synthesis ───────────────────────────────────────────────────────


def build_input_schema(schema: Mapping[str, object] | type[BaseModel]) -> dict[str, object]:
    """Turn a tool's declared input schema into a JSON schema object.

    A mapping that already has ``type`` and ``properties`` is passed through.
    A pydantic model class uses its ``model_json_schema()``. Any other
    mapping is read as ``{param: type}``; every parameter becomes required
    and unrecognized types are treated as strings.

    Examples:
        >>> build_input_schema({"a": int, "b": "number"})["properties"]
        {'a': {'type': 'integer'}, 'b': {'type': 'number'}}
    """
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()

    if "type" in schema and "properties" in schema:
        return dict(schema)

    properties: dict[str, object] = {
        param: {"type": _JSON_SCHEMA_TYPES.get(param_type, "string")}
        for param, param_type in schema.items()
    }
    return {"type": "object", "properties": properties, "required": list(schema)}


async def _invoke[T](handler: Callable[[T], object], argument: T) -> object:
    result = handler(argument)
    if inspect.isawaitable(result):
        result = await result
    return result


def _require_list_member(result: object, key: str, owner: str) -> Mapping[str, object]:
    if not isinstance(result, Mapping) or not isinstance(result.get(key), list):
        raise McpRequestError(
            f"{owner} must return a dict with a '{key}' list, "
            f"got {type(result).__name__}",
            code=INTERNAL_ERROR,
        )
    return result


def _validate_names(kind: str, names: Sequence[str]) -> None:
    seen: set[str] = set()
    for name in names:
        if not name or not name.strip():
            raise ToolValidationError(f"{kind} name cannot be empty")
        if name in seen:
            raise ToolValidationError(f"Duplicate {kind.lower()} name: {name}")
        seen.add(name)


# ── Server ─────────────────────────────────────────────────────────────────


class McpSdkServer:
    """Registry of tools, resources and prompts with MCP request dispatch.

    Registries are fixed at construction. Handler failures never escape
    :meth:`handle`; they are returned as JSON-RPC error envelopes.

    Args:
        name: Server name, also the key the CLI routes requests by.
        version: Server version reported by ``initialize``.
        tools: Tools to serve.
        resources: Resources to serve.
        prompts: Prompts to serve.

    Raises:
        ToolValidationError: If a name is empty or duplicated, or a handler
            is not callable.
    """

    def __init__(
        self,
        name: str,
        version: str = "1.0.0",
        tools: Sequence[SdkMcpTool] | None = None,
        resources: Sequence[SdkMcpResource] | None = None,
        prompts: Sequence[SdkMcpPrompt] | None = None,
    ) -> None:
        if not name or not name.strip():
            raise ToolValidationError("Server name cannot be empty")

        tools = list(tools or [])
        resources = list(resources or [])
        prompts = list(prompts or [])

        _validate_names("Tool", [t.name for t in tools])
        _validate_names("Resource", [r.uri for r in resources])
        _validate_names("Prompt", [p.name for p in prompts])

        for entry in (*tools, *resources, *prompts):
            if not callable(entry.handler):
                raise ToolValidationError(f"Handler for '{entry.name}' is not callable")

        self.name = name
        self.version = version
        self._tools = {t.name: t for t in tools}
        self._resources = {r.uri: r for r in resources}
        self._prompts = {p.name: p for p in prompts}

        logger.debug(
            "McpSdkServer %s: tools=%s resources=%s prompts=%s",
            name,
            list(self._tools),
            list(self._resources),
            list(self._prompts),
        )

    # ── Direct-call surface ──

    def list_tools(self) -> list[dict[str, object]]:
        """Return ``{name, description, inputSchema}`` for every tool."""
        return [
            Tool(
                name=t.name,
                description=t.description,
                inputSchema=build_input_schema(t.input_schema),
            ).model_dump(mode="json", by_alias=True, exclude_none=True)
            for t in self._tools.values()
        ]

    async def call_tool(self, name: str, arguments: dict[str, object]) -> dict[str, object]:
        """Invoke a tool by exact name.

        Raises:
            McpRequestError: ``-32601`` for an unknown tool, ``-32603`` if the
                handler returns something other than ``{"content": [...]}``.
        """
        sdk_tool = self._tools.get(name)
        if sdk_tool is None:
            raise McpRequestError(f"Tool '{name}' not found", code=METHOD_NOT_FOUND)

        result = _require_list_member(
            await _invoke(sdk_tool.handler, arguments), "content", f"Tool '{name}'"
        )
        response: dict[str, object] = {"content": result["content"]}
        if "isError" in result:
            response["isError"] = bool(result["isError"])
        return response

    def list_resources(self) -> list[dict[str, object]]:
        """Return ``{uri, name, description?, mimeType?}`` for every resource."""
        listed: list[dict[str, object]] = []
        for r in self._resources.values():
            entry: dict[str, object] = {"uri": r.uri, "name": r.name}
            if r.description is not None:
                entry["description"] = r.description
            if r.mime_type is not None:
                entry["mimeType"] = r.mime_type
            listed.append(entry)
        return listed

    async def read_resource(self, uri: str) -> dict[str, object]:
        """Read a resource by exact URI.

        Raises:
            McpRequestError: ``-32601`` for an unknown URI, ``-32603`` if the
                handler does not return ``{"contents": [...]}``.
        """
        sdk_resource = self._resources.get(uri)
        if sdk_resource is None:
            raise McpRequestError(f"Resource '{uri}' not found", code=METHOD_NOT_FOUND)

        result = _require_list_member(
            await _invoke(sdk_resource.handler, uri), "contents", f"Resource '{uri}'"
        )
        return {"contents": result["contents"]}

    def list_prompts(self) -> list[dict[str, object]]:
        """Return ``{name, description?, arguments?}`` for every prompt."""
        return [
            Prompt(
                name=p.name,
                description=p.description,
                arguments=list(p.arguments) or None,
            ).model_dump(mode="json", by_alias=True, exclude_none=True)
            for p in self._prompts.values()
        ]

    async def get_prompt(self, name: str, arguments: dict[str, str] | None = None) -> dict[str, object]:
        """Render a prompt by exact name.

        Raises:
            McpRequestError: ``-32601`` for an unknown prompt, ``-32603`` if
                the handler does not return ``{"messages": [...]}``.
        """
        sdk_prompt = self._prompts.get(name)
        if sdk_prompt is None:
            raise McpRequestError(f"Prompt '{name}' not found", code=METHOD_NOT_FOUND)

        result = _require_list_member(
            await _invoke(sdk_prompt.handler, dict(arguments or {})),
            "messages",
            f"Prompt '{name}'",
        )
        rendered: dict[str, object] = {"messages": result["messages"]}
        description = result.get("description", sdk_prompt.description)
        if description is not None:
            rendered["description"] = description
        return rendered

    # ── RPC dispatch ──

    def _initialize_result(self, params: Mapping[str, object]) -> dict[str, object]:
        capabilities: dict[str, object] = {}
        if self._tools:
            capabilities["tools"] = {}
        if self._resources:
            capabilities["resources"] = {}
        if self._prompts:
            capabilities["prompts"] = {}
        return {
            "protocolVersion": params.get("protocolVersion") or LATEST_PROTOCOL_VERSION,
            "capabilities": capabilities,
            "serverInfo": {"name": self.name, "version": self.version},
        }

    async def handle(
        self,
        method: str | None,
        params: Mapping[str, object] | None = None,
        request_id: str | int | None = None,
    ) -> JsonRpcResponse:
        """Dispatch one MCP method and return its JSON-RPC envelope.

        Never raises: unknown methods and names yield ``-32601``, handler
        failures and malformed handler results yield ``-32603``.
        """
        params = params or {}
        try:
            match method:
                case "initialize":
                    result = self._initialize_result(params)
                case "notifications/initialized":
                    result = {}
                case "tools/list":
                    result = {"tools": self.list_tools()}
                case "tools/call":
                    result = await self.call_tool(
                        str(params.get("name", "")),
                        dict(params.get("arguments") or {}),  # type: ignore[call-overload]
                    )
                case "resources/list":
                    result = {"resources": self.list_resources()}
                case "resources/read":
                    result = await self.read_resource(str(params.get("uri", "")))
                case "prompts/list":
                    result = {"prompts": self.list_prompts()}
                case "prompts/get":
                    result = await self.get_prompt(
                        str(params.get("name", "")),
                        dict(params.get("arguments") or {}),  # type: ignore[call-overload]
                    )
                case _:
                    return _error(request_id, METHOD_NOT_FOUND, f"Method '{method}' not found")
        except McpRequestError as e:
            logger.debug("MCP %s on server %s failed: %s", method, self.name, e)
            return _error(request_id, e.code, str(e))
        except Exception as e:
            logger.error(
                "MCP %s on server %s raised: %s",
                method,
                self.name,
                e,
                exc_info=True,
            )
            return _error(request_id, INTERNAL_ERROR, str(e))

        return _success(request_id, result)

    async def handle_request(self, message: Mapping[str, object]) -> JsonRpcResponse:
        """Dispatch a raw JSON-RPC request object."""
        params = message.get("params")
        return await self.handle(
            message.get("method"),  # type: ignore[arg-type]
            params if isinstance(params, Mapping) else None,
            message.get("id"),  # type: ignore[arg-type]
        )


def create_sdk_mcp_server(
    name: str,
    version: str = "1.0.0",
    tools: Sequence[SdkMcpTool] | None = None,
    resources: Sequence[SdkMcpResource] | None = None,
    prompts: Sequence[SdkMcpPrompt] | None = None,
) -> McpSdkServerConfig:
    """Create an in-process MCP server config for ``ClaudeAgentOptions.mcp_servers``.

    Examples:
        >>> config = create_sdk_mcp_server("calc", tools=[add])
        >>> options = ClaudeAgentOptions(mcp_servers={"calc": config})
    """
    server = McpSdkServer(
        name,
        version=version,
        tools=tools,
        resources=resources,
        prompts=prompts,
    )
    return {"type": "sdk", "name": name, "instance": server}


__all__ = [
    "JsonRpcResponse",
    "McpSdkServer",
    "SdkMcpPrompt",
    "SdkMcpResource",
    "SdkMcpTool",
    "build_input_schema",
    "create_sdk_mcp_server",
    "prompt",
    "resource",
    "tool",
]
