"""Control engine: multiplexes one CLI stream into messages and control traffic.

A single background read loop classifies every decoded frame in arrival
order:

- ``control_response`` resolves the pending outbound request with the same
  ``request_id``;
- ``control_request`` is answered in its own task (permission callback,
  hook callback, or in-process MCP server) so slow callbacks never block
  the loop;
- ``control_cancel_request`` is acknowledged in the log only;
- anything else is parsed into a :class:`Message` and queued for
  :meth:`Query.receive_messages`.

The end of the stream, or a failure of the loop itself, is queued behind
the messages that preceded it.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from contextlib import suppress
from typing import Literal, cast

import anyio
from anyio.abc import TaskGroup
from mcp.types import METHOD_NOT_FOUND
from pydantic import ValidationError

from claudecode_agent.exceptions import (
    CLIConnectionError,
    ControlProtocolError,
    ControlRequestError,
    ControlRequestTimeoutError,
    UnknownMessageTypeError,
)
from claudecode_agent.mcp_server import McpSdkServer
from claudecode_agent.message_parser import parse_message
from claudecode_agent.protocol import (
    CONTROL_CANCEL_REQUEST,
    CONTROL_REQUEST,
    CONTROL_REQUEST_TIMEOUT_SECONDS,
    CONTROL_RESPONSE,
    ControlErrorResponse,
    ControlRequestFrame,
    ControlSuccessResponse,
    encode_frame,
)
from claudecode_agent.transport import Transport
from claudecode_agent.types import (
    BaseHookInput,
    CanUseTool,
    HookCallback,
    HookContext,
    HookInput,
    HookMatcher,
    Message,
    PermissionMode,
    PermissionResultAllow,
    PermissionResultDeny,
    PermissionUpdate,
    PostToolUseHookInput,
    PreCompactHookInput,
    PreToolUseHookInput,
    ResultMessage,
    StopHookInput,
    SubagentStopHookInput,
    ToolPermissionContext,
    UserPromptSubmitHookInput,
)

logger = logging.getLogger(__name__)

type _QueueItem = (
    tuple[Literal["message"], Message]
    | tuple[Literal["end"], None]
    | tuple[Literal["error"], Exception]
)

_HOOK_INPUT_TYPES: dict[str, type[BaseHookInput]] = {
    "PreToolUse": PreToolUseHookInput,
    "PostToolUse": PostToolUseHookInput,
    "UserPromptSubmit": UserPromptSubmitHookInput,
    "Stop": StopHookInput,
    "SubagentStop": SubagentStopHookInput,
    "PreCompact": PreCompactHookInput,
}

# Python-safe spellings of reserved words
_RESERVED_KEYS = {"async_": "async", "continue_": "continue"}


# ── Hook input / output conversion ─────────────────────────────────────────


def build_hook_input(data: Mapping[str, object]) -> HookInput:
    """Build the typed hook input for the event named in *data*.

    Unknown events fall back to :class:`BaseHookInput`.

    Raises:
        ControlProtocolError: If a field required by the event is missing.
    """
    event = data.get("hook_event_name")
    input_type = _HOOK_INPUT_TYPES.get(event, BaseHookInput) if isinstance(event, str) else BaseHookInput
    missing = input_type.__required_keys__ - data.keys()
    if missing:
        raise ControlProtocolError(
            f"Invalid {event or 'hook'} input, missing fields: {sorted(missing)}"
        )
    return cast(HookInput, dict(data))


def _camel_case(key: str) -> str:
    if key in _RESERVED_KEYS:
        return _RESERVED_KEYS[key]
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def convert_hook_output(output: Mapping[str, object] | None) -> dict[str, object]:
    """Convert hook callback output to the CLI's camelCase field names.

    Top-level keys and the keys of ``hookSpecificOutput`` are converted;
    nested values (such as ``updatedInput``) are left alone.

    Examples:
        >>> convert_hook_output({"continue_": False, "stop_reason": "done"})
        {'continue': False, 'stopReason': 'done'}
    """
    if output is None:
        return {}
    if not isinstance(output, Mapping):
        raise ControlProtocolError(
            f"Hook callback must return a dict, got {type(output).__name__}"
        )

    converted: dict[str, object] = {}
    for key, value in output.items():
        wire_key = _camel_case(key)
        if wire_key == "hookSpecificOutput" and isinstance(value, Mapping):
            value = {_camel_case(k): v for k, v in value.items()}
        converted[wire_key] = value
    return converted


def _parse_suggestions(raw: object) -> list[PermissionUpdate]:
    if not isinstance(raw, list):
        return []
    suggestions: list[PermissionUpdate] = []
    for item in raw:
        try:
            suggestions.append(PermissionUpdate.model_validate(item))
        except ValidationError:
            logger.debug("Ignoring unrecognized permission suggestion: %s", item)
    return suggestions


# ── Query ──────────────────────────────────────────────────────────────────


class Query:
    """Control protocol engine on top of a :class:`Transport`.

    Args:
        transport: Connected transport.
        is_streaming_mode: Whether the session has a control channel. A
            one-shot session has none and skips ``initialize``.
        can_use_tool: Permission callback for ``can_use_tool`` requests.
        hooks: Hook subscriptions by event name.
        sdk_mcp_servers: In-process MCP servers by name.
        control_request_timeout: Seconds to wait for each outbound control
            response.
        skip_unknown_message_types: Log and skip unknown message types
            instead of ending the stream with an error.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        is_streaming_mode: bool = True,
        can_use_tool: CanUseTool | None = None,
        hooks: Mapping[str, list[HookMatcher]] | None = None,
        sdk_mcp_servers: Mapping[str, McpSdkServer] | None = None,
        control_request_timeout: float = CONTROL_REQUEST_TIMEOUT_SECONDS,
        skip_unknown_message_types: bool = False,
    ) -> None:
        self.transport = transport
        self.is_streaming_mode = is_streaming_mode
        self.can_use_tool = can_use_tool
        self.hooks = dict(hooks or {})
        self.sdk_mcp_servers = dict(sdk_mcp_servers or {})
        self._control_request_timeout = control_request_timeout
        self._skip_unknown_message_types = skip_unknown_message_types

        # Outbound control requests awaiting a response
        self.pending_control_responses: dict[str, anyio.Event] = {}
        self.pending_control_results: dict[str, Mapping[str, object] | Exception] = {}
        self._request_counter = 0

        # Populated once by initialize(), read-only afterwards
        self.hook_callbacks: dict[str, HookCallback] = {}
        self._next_callback_id = 0

        self._send_stream, self._receive_stream = anyio.create_memory_object_stream[
            _QueueItem
        ](max_buffer_size=math.inf)

        self._tg: TaskGroup | None = None
        self._first_result_event = anyio.Event()
        self._initialization_result: dict[str, object] | None = None
        self._exhausted = False
        self._closed = False
        self._read_loop_done = False

    @property
    def initialization_result(self) -> dict[str, object] | None:
        """Response payload of the ``initialize`` handshake."""
        return self._initialization_result

    async def start(self) -> None:
        """Start the background read loop. Idempotent."""
        if self._tg is not None:
            return
        self._tg = anyio.create_task_group()
        await self._tg.__aenter__()
        self._tg.start_soon(self._read_messages)

    # ── Read loop ──

    def _enqueue(self, item: _QueueItem) -> None:
        try:
            self._send_stream.send_nowait(item)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("Message queue closed; dropping %s item", item[0])

    def _fail_pending(self, error: Exception) -> None:
        for request_id, event in list(self.pending_control_responses.items()):
            self.pending_control_results[request_id] = error
            event.set()

    async def _read_messages(self) -> None:
        try:
            async for frame in self.transport.read_messages():
                if self._closed:
                    break
                self._route_frame(frame)
        except Exception as e:
            logger.error("Error reading CLI messages: %s", e)
            self._read_loop_done = True
            self._fail_pending(e)
            self._enqueue(("error", e))
            return

        self._read_loop_done = True
        self._fail_pending(CLIConnectionError("CLI stream ended before control response"))
        self._enqueue(("end", None))

    def _route_frame(self, frame: Mapping[str, object]) -> None:
        match frame.get("type"):
            case "control_response":
                self._resolve_control_response(frame)
            case "control_request":
                if self._tg is not None:
                    self._tg.start_soon(self._handle_control_request, frame)
            case "control_cancel_request":
                # Cancellation of in-flight handlers is not supported
                logger.debug(
                    "Acknowledged %s for %s without cancelling",
                    CONTROL_CANCEL_REQUEST,
                    frame.get("request_id"),
                )
            case _:
                try:
                    message = parse_message(frame)
                except UnknownMessageTypeError:
                    if not self._skip_unknown_message_types:
                        raise
                    logger.warning("Skipping unknown message type: %s", frame.get("type"))
                    return
                if isinstance(message, ResultMessage):
                    self._first_result_event.set()
                self._enqueue(("message", message))

    def _resolve_control_response(self, frame: Mapping[str, object]) -> None:
        response = frame.get("response")
        if not isinstance(response, Mapping):
            logger.debug("Ignoring control response without payload: %s", frame)
            return

        request_id = response.get("request_id")
        event = self.pending_control_responses.get(request_id) if isinstance(request_id, str) else None
        if event is None:
            logger.debug("Ignoring control response for unknown request %s", request_id)
            return

        self.pending_control_results[request_id] = response  # type: ignore[index]
        event.set()

    # ── Inbound control requests ──

    async def _handle_control_request(self, frame: Mapping[str, object]) -> None:
        """Answer one control request. Always writes exactly one response."""
        request_id = str(frame.get("request_id", ""))
        request = frame.get("request")
        subtype = request.get("subtype") if isinstance(request, Mapping) else None

        response: ControlSuccessResponse | ControlErrorResponse
        try:
            if not isinstance(request, Mapping):
                raise ControlProtocolError("Control request has no 'request' payload")

            match subtype:
                case "can_use_tool":
                    payload = await self._handle_can_use_tool(request)
                case "hook_callback":
                    payload = await self._handle_hook_callback(request)
                case "mcp_message":
                    payload = await self._handle_mcp_message(request)
                case _:
                    raise ControlProtocolError(
                        f"Unsupported control request subtype: {subtype}"
                    )
        except Exception as e:
            logger.warning(
                "Control request %s (%s) failed: %s",
                request_id,
                subtype,
                e,
                exc_info=True,
            )
            response = {"subtype": "error", "request_id": request_id, "error": str(e)}
        else:
            response = {"subtype": "success", "request_id": request_id, "response": payload}

        try:
            await self.transport.write(
                encode_frame({"type": CONTROL_RESPONSE, "response": response})
            )
        except Exception:
            logger.warning(
                "Failed to send control response for %s", request_id, exc_info=True
            )

    async def _handle_can_use_tool(self, request: Mapping[str, object]) -> dict[str, object]:
        if self.can_use_tool is None:
            raise ControlProtocolError("can_use_tool callback is not provided")

        tool_name = request.get("tool_name")
        if not isinstance(tool_name, str):
            raise ControlProtocolError("can_use_tool request is missing 'tool_name'")
        raw_input = request.get("input")
        tool_input: dict[str, object] = dict(raw_input) if isinstance(raw_input, Mapping) else {}

        context = ToolPermissionContext(
            signal=None,
            suggestions=_parse_suggestions(request.get("permission_suggestions")),
            tool_use_id=request.get("tool_use_id"),  # type: ignore[arg-type]
            blocked_path=request.get("blocked_path"),  # type: ignore[arg-type]
        )
        result = await self.can_use_tool(tool_name, tool_input, context)

        match result:
            case PermissionResultAllow():
                allow: dict[str, object] = {
                    "behavior": "allow",
                    "updatedInput": (
                        result.updated_input if result.updated_input is not None else tool_input
                    ),
                }
                if result.updated_permissions is not None:
                    allow["updatedPermissions"] = [
                        update.to_dict() for update in result.updated_permissions
                    ]
                return allow
            case PermissionResultDeny():
                deny: dict[str, object] = {"behavior": "deny", "message": result.message}
                if result.interrupt:
                    deny["interrupt"] = True
                return deny
            case _:
                raise ControlProtocolError(
                    "Tool permission callback must return PermissionResultAllow or "
                    f"PermissionResultDeny, got {type(result).__name__}"
                )

    async def _handle_hook_callback(self, request: Mapping[str, object]) -> dict[str, object]:
        callback_id = request.get("callback_id")
        callback = self.hook_callbacks.get(callback_id) if isinstance(callback_id, str) else None
        if callback is None:
            raise ControlProtocolError(f"No hook callback found for ID: {callback_id}")

        raw_input = request.get("input")
        hook_input = build_hook_input(raw_input if isinstance(raw_input, Mapping) else {})
        context: HookContext = {"signal": None}
        output = await callback(
            hook_input,
            request.get("tool_use_id"),  # type: ignore[arg-type]
            context,
        )
        return convert_hook_output(output)  # type: ignore[arg-type]

    async def _handle_mcp_message(self, request: Mapping[str, object]) -> dict[str, object]:
        server_name = request.get("server_name")
        message = request.get("message")
        if not isinstance(server_name, str) or not isinstance(message, Mapping):
            raise ControlProtocolError("mcp_message request needs 'server_name' and 'message'")

        server = self.sdk_mcp_servers.get(server_name)
        if server is None:
            reply: object = {
                "jsonrpc": "2.0",
                "id": message.get("id"),
                "error": {
                    "code": METHOD_NOT_FOUND,
                    "message": f"Server '{server_name}' not found",
                },
            }
        else:
            reply = await server.handle_request(message)
        return {"mcp_response": reply}

    # ── Outbound control requests ──

    async def _send_control_request(
        self,
        request: dict[str, object],
        timeout: float | None = None,
    ) -> dict[str, object]:
        """Send a control request and wait for its response.

        Raises:
            CLIConnectionError: In one-shot mode, or if the write fails.
            ControlRequestTimeoutError: If no response arrives in time.
            ControlRequestError: If the CLI answers with an error.
        """
        if not self.is_streaming_mode:
            raise CLIConnectionError("Control requests require streaming mode")
        if self._read_loop_done:
            raise CLIConnectionError("CLI stream has ended, cannot send control request")

        subtype = str(request["subtype"])
        timeout = timeout or self._control_request_timeout
        self._request_counter += 1
        request_id = f"req_{self._request_counter}_{os.urandom(4).hex()}"

        event = anyio.Event()
        self.pending_control_responses[request_id] = event
        frame: ControlRequestFrame = {
            "type": CONTROL_REQUEST,  # type: ignore[typeddict-item]
            "request_id": request_id,
            "request": request,  # type: ignore[typeddict-item]
        }

        try:
            await self.transport.write(encode_frame(frame))
            logger.debug("Sent control request %s (%s)", request_id, subtype)
            try:
                with anyio.fail_after(timeout):
                    await event.wait()
            except TimeoutError as e:
                logger.warning(
                    "Control request %s (%s) timed out after %s seconds",
                    request_id,
                    subtype,
                    timeout,
                )
                raise ControlRequestTimeoutError(subtype, timeout) from e
            result = self.pending_control_results[request_id]
        finally:
            self.pending_control_responses.pop(request_id, None)
            self.pending_control_results.pop(request_id, None)

        if isinstance(result, Exception):
            raise result
        if result.get("subtype") == "error":
            raise ControlRequestError(
                str(result.get("error") or "Unknown error"), subtype=subtype
            )

        logger.debug("Control request %s (%s) resolved", request_id, subtype)
        payload = result.get("response")
        return dict(payload) if isinstance(payload, Mapping) else {}

    async def initialize(self) -> dict[str, object] | None:
        """Register hook callbacks and perform the ``initialize`` handshake.

        Returns:
            The CLI's initialization payload, or ``None`` in one-shot mode.
        """
        if not self.is_streaming_mode:
            return None

        hooks_config: dict[str, list[dict[str, object]]] = {}
        for event, matchers in self.hooks.items():
            entries: list[dict[str, object]] = []
            for matcher in matchers:
                callback_ids: list[str] = []
                for callback in matcher.hooks:
                    callback_id = f"hook_{self._next_callback_id}"
                    self._next_callback_id += 1
                    self.hook_callbacks[callback_id] = callback
                    callback_ids.append(callback_id)
                entry: dict[str, object] = {
                    "matcher": matcher.matcher,
                    "hookCallbackIds": callback_ids,
                }
                if matcher.timeout is not None:
                    entry["timeout"] = matcher.timeout
                entries.append(entry)
            if entries:
                hooks_config[event] = entries

        request: dict[str, object] = {
            "subtype": "initialize",
            "hooks": hooks_config or None,
        }
        self._initialization_result = await self._send_control_request(request)
        logger.info("Control protocol initialized")
        return self._initialization_result

    async def interrupt(self) -> None:
        """Interrupt the current turn."""
        await self._send_control_request({"subtype": "interrupt"})

    async def set_permission_mode(self, mode: PermissionMode) -> None:
        """Change the permission mode."""
        await self._send_control_request({"subtype": "set_permission_mode", "mode": mode})

    async def set_model(self, model: str | None = None) -> None:
        """Change the model; ``None`` restores the default."""
        await self._send_control_request({"subtype": "set_model", "model": model})

    async def rewind_files(self, user_message_id: str) -> None:
        """Restore tracked files to their state at a user message checkpoint."""
        await self._send_control_request(
            {"subtype": "rewind_files", "user_message_id": user_message_id}
        )

    # ── Conversation I/O ──

    async def stream_input(self, stream: AsyncIterable[Mapping[str, object]]) -> None:
        """Write every frame from *stream*, then close the CLI's input.

        With hooks, in-process servers or a permission callback configured,
        input stays open until the first result arrives so the CLI can
        still send control requests.
        """
        try:
            async for message in stream:
                if self._closed:
                    break
                await self.transport.write(encode_frame(message))

            if self.sdk_mcp_servers or self.hooks or self.can_use_tool is not None:
                with anyio.move_on_after(self._control_request_timeout):
                    await self._first_result_event.wait()

            await self.transport.end_input()
        except Exception as e:
            logger.warning("Error streaming input: %s", e)
            self._enqueue(("error", e))

    def start_streaming_input(self, stream: AsyncIterable[Mapping[str, object]]) -> None:
        """Run :meth:`stream_input` in the background."""
        if self._tg is None:
            raise CLIConnectionError("Query not started. Call start() first.")
        self._tg.start_soon(self.stream_input, stream)

    def receive_messages(self) -> AsyncIterator[Message]:
        """Yield queued messages until the stream ends.

        Single-pass: once the end of the stream (or an error) has been
        reached, later calls yield nothing.

        Raises:
            Exception: The failure that stopped the read loop, in order
                relative to the messages before it.
        """
        return self._receive_messages_impl()

    async def _receive_messages_impl(self) -> AsyncIterator[Message]:
        if self._exhausted:
            return

        async for kind, payload in self._receive_stream:
            if kind == "message":
                yield payload  # type: ignore[misc]
            elif kind == "end":
                self._exhausted = True
                return
            else:
                self._exhausted = True
                raise payload  # type: ignore[misc]

        self._exhausted = True

    async def close(self) -> None:
        """Stop the read loop and close the transport."""
        if self._closed:
            return
        self._closed = True

        if self._tg is not None:
            self._tg.cancel_scope.cancel()
            with suppress(anyio.get_cancelled_exc_class()):
                await self._tg.__aexit__(None, None, None)
            self._tg = None

        self._send_stream.close()
        await self.transport.close()
        logger.debug("Query closed")


__all__ = ["Query", "build_hook_input", "convert_hook_output"]
