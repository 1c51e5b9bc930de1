"""Session client and one-shot query entrypoint."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from types import TracebackType

from claudecode_agent.cli import validate_prompt
from claudecode_agent.control import Query
from claudecode_agent.exceptions import CLIConnectionError, ToolValidationError
from claudecode_agent.mcp_server import McpSdkServer
from claudecode_agent.protocol import encode_frame, user_message_frame
from claudecode_agent.transport import Transport
from claudecode_agent.transport.subprocess_cli import SubprocessCLITransport
from claudecode_agent.types import (
    ClaudeAgentOptions,
    Message,
    PermissionMode,
    ResultMessage,
)

logger = logging.getLogger(__name__)

type PromptInput = str | AsyncIterable[Mapping[str, object]]


def _sdk_mcp_servers(options: ClaudeAgentOptions) -> dict[str, McpSdkServer]:
    """Pick the in-process server instances out of ``options.mcp_servers``."""
    if not isinstance(options.mcp_servers, dict):
        return {}

    servers: dict[str, McpSdkServer] = {}
    for name, config in options.mcp_servers.items():
        if config.get("type") != "sdk":
            continue
        instance = config.get("instance")
        if not isinstance(instance, McpSdkServer):
            raise ToolValidationError(
                f"MCP server '{name}' has type 'sdk' but no McpSdkServer instance"
            )
        servers[name] = instance
    return servers


def _build_query(
    transport: Transport,
    options: ClaudeAgentOptions,
    *,
    is_streaming_mode: bool,
) -> Query:
    return Query(
        transport,
        is_streaming_mode=is_streaming_mode,
        can_use_tool=options.can_use_tool,
        hooks=options.hooks,
        sdk_mcp_servers=_sdk_mcp_servers(options),
        control_request_timeout=options.control_request_timeout,
        skip_unknown_message_types=options.skip_unknown_message_types,
    )


class ClaudeSDKClient:
    """Interactive, bidirectional session with the claude CLI.

    The session always runs in streaming mode, so control operations such
    as :meth:`interrupt` are available between and during turns.

    Args:
        options: Session options. Defaults to ``ClaudeAgentOptions()``.
        transport: Custom transport; a :class:`SubprocessCLITransport` is
            created from ``options`` when omitted.

    Examples:
        >>> async with ClaudeSDKClient() as client:
        ...     await client.query("List the files in this directory")
        ...     async for message in client.receive_response():
        ...         print(message)
    """

    def __init__(
        self,
        options: ClaudeAgentOptions | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.options = options or ClaudeAgentOptions()
        self._custom_transport = transport
        self._query: Query | None = None

    def _require_query(self) -> Query:
        if self._query is None:
            raise CLIConnectionError("Not connected. Call connect() first.")
        return self._query

    async def connect(self, prompt: PromptInput | None = None) -> None:
        """Start the CLI and perform the control handshake.

        Args:
            prompt: Optional first turn. A string is sent as one user
                message; an async iterable of user frames is streamed in the
                background and closes input when exhausted.

        Raises:
            ValueError: If ``can_use_tool`` is combined with
                ``permission_prompt_tool_name``.
            CLINotFoundError: If the CLI cannot be found.
            CLIConnectionError: If the CLI cannot be started.
        """
        if self._query is not None:
            return

        if self.options.can_use_tool is not None and self.options.permission_prompt_tool_name:
            raise ValueError(
                "can_use_tool callback cannot be used with permission_prompt_tool_name. "
                "Please use one or the other."
            )

        transport = self._custom_transport or SubprocessCLITransport(self.options)
        query = _build_query(transport, self.options, is_streaming_mode=True)
        await transport.connect()

        try:
            await query.start()
            await query.initialize()
        except Exception:
            await query.close()
            raise
        self._query = query
        logger.debug("ClaudeSDKClient connected")

        if isinstance(prompt, str):
            await self.query(prompt)
        elif prompt is not None:
            query.start_streaming_input(prompt)

    async def query(self, prompt: PromptInput, session_id: str = "default") -> None:
        """Send a user turn.

        Raises:
            CLIConnectionError: If not connected.
            ValueError: If a string prompt is empty or too long.
        """
        query = self._require_query()

        if isinstance(prompt, str):
            validate_prompt(prompt)
            await query.transport.write(encode_frame(user_message_frame(prompt, session_id)))
            return

        async for message in prompt:
            frame = dict(message)
            frame.setdefault("session_id", session_id)
            await query.transport.write(encode_frame(frame))

    async def receive_messages(self) -> AsyncIterator[Message]:
        """Yield every message until the session ends."""
        query = self._require_query()
        async for message in query.receive_messages():
            yield message

    async def receive_response(self) -> AsyncIterator[Message]:
        """Yield messages up to and including the next :class:`ResultMessage`."""
        async for message in self.receive_messages():
            yield message
            if isinstance(message, ResultMessage):
                return

    async def interrupt(self) -> None:
        """Interrupt the current turn."""
        await self._require_query().interrupt()

    async def set_permission_mode(self, mode: PermissionMode) -> None:
        """Change the permission mode mid-session."""
        await self._require_query().set_permission_mode(mode)

    async def set_model(self, model: str | None = None) -> None:
        """Change the model mid-session; ``None`` restores the default."""
        await self._require_query().set_model(model)

    async def rewind_files(self, user_message_id: str) -> None:
        """Restore files to a checkpoint taken at a user message.

        Requires ``enable_file_checkpointing=True``. ``user_message_id`` is
        the ``uuid`` of a previously received :class:`UserMessage`.
        """
        await self._require_query().rewind_files(user_message_id)

    async def get_server_info(self) -> dict[str, object] | None:
        """Initialization payload from the CLI (commands, output styles...)."""
        return self._require_query().initialization_result

    async def disconnect(self) -> None:
        """Close the session. Safe to call when not connected."""
        if self._query is None:
            return
        query, self._query = self._query, None
        await query.close()
        logger.debug("ClaudeSDKClient disconnected")

    async def __aenter__(self) -> ClaudeSDKClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()


async def query(
    *,
    prompt: PromptInput,
    options: ClaudeAgentOptions | None = None,
    transport: Transport | None = None,
) -> AsyncIterator[Message]:
    """Run a single prompt and yield its messages.

    A string prompt runs the CLI in one-shot mode without a control
    channel. An async iterable of user frames runs in streaming mode, which
    is required for ``can_use_tool``.

    Raises:
        ValueError: If ``can_use_tool`` is set with a string prompt.

    Examples:
        >>> async for message in query(prompt="What is 2 + 2?"):
        ...     print(message)
    """
    options = options or ClaudeAgentOptions()
    is_streaming_mode = not isinstance(prompt, str)

    if options.can_use_tool is not None and not is_streaming_mode:
        raise ValueError(
            "can_use_tool callback requires streaming mode. "
            "Please provide prompt as an AsyncIterable instead of a string."
        )

    if transport is None:
        transport = SubprocessCLITransport(
            options,
            prompt=None if is_streaming_mode else prompt,  # type: ignore[arg-type]
        )
    engine = _build_query(transport, options, is_streaming_mode=is_streaming_mode)
    await transport.connect()

    try:
        await engine.start()
        if is_streaming_mode:
            await engine.initialize()
            engine.start_streaming_input(prompt)  # type: ignore[arg-type]
        async for message in engine.receive_messages():
            yield message
    finally:
        await engine.close()


__all__ = ["ClaudeSDKClient", "query"]
