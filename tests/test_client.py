"""Tests for ClaudeSDKClient and the one-shot query() entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator

import anyio
import pytest
from conftest import FakeTransport, assistant_frame, result_frame, system_frame

from claudecode_agent.client import ClaudeSDKClient, query
from claudecode_agent.exceptions import (
    CLIConnectionError,
    ControlRequestTimeoutError,
    ToolValidationError,
)
from claudecode_agent.mcp_server import create_sdk_mcp_server, tool
from claudecode_agent.types import (
    AssistantMessage,
    ClaudeAgentOptions,
    PermissionResultAllow,
    ResultMessage,
    SystemMessage,
)


async def _allow_all(name, tool_input, context):  # type: ignore[no-untyped-def]
    return PermissionResultAllow()


async def _user_frames(*texts: str) -> AsyncIterator[dict[str, object]]:
    for text in texts:
        yield {"type": "user", "message": {"role": "user", "content": text}}


# ── Connection lifecycle ─────────────────────────────────────────────────


class TestConnect:
    """Tests for connect / disconnect."""

    @pytest.mark.asyncio
    async def test_connect_performs_handshake(self, fake_transport: FakeTransport) -> None:
        """connect should run the initialize handshake."""
        client = ClaudeSDKClient(transport=fake_transport)
        await client.connect()
        try:
            assert fake_transport.connected
            assert await client.get_server_info() == {"commands": ["/help"]}
            request = fake_transport.frames_of_type("control_request")[0]["request"]
            assert request["subtype"] == "initialize"  # type: ignore[index]
        finally:
            await client.disconnect()

        assert fake_transport.closed

    @pytest.mark.asyncio
    async def test_context_manager(self, fake_transport: FakeTransport) -> None:
        """The context manager should connect and disconnect."""
        async with ClaudeSDKClient(transport=fake_transport) as client:
            assert await client.get_server_info() is not None
        assert fake_transport.closed

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected(self) -> None:
        """disconnect should be a no-op when not connected."""
        await ClaudeSDKClient().disconnect()

    @pytest.mark.asyncio
    async def test_operations_require_connection(self) -> None:
        """Operations before connect should raise CLIConnectionError."""
        client = ClaudeSDKClient()
        with pytest.raises(CLIConnectionError, match="Not connected"):
            await client.query("hello")
        with pytest.raises(CLIConnectionError):
            await client.interrupt()
        with pytest.raises(CLIConnectionError):
            async for _ in client.receive_messages():
                pass

    @pytest.mark.asyncio
    async def test_permission_callback_conflicts_with_prompt_tool(
        self, fake_transport: FakeTransport
    ) -> None:
        """can_use_tool with permission_prompt_tool_name should be rejected."""
        options = ClaudeAgentOptions(
            can_use_tool=_allow_all, permission_prompt_tool_name="mcp__auth__check"
        )
        with pytest.raises(ValueError, match="permission_prompt_tool_name"):
            await ClaudeSDKClient(options, transport=fake_transport).connect()
        assert not fake_transport.connected

    @pytest.mark.asyncio
    async def test_sdk_server_without_instance_rejected(
        self, fake_transport: FakeTransport
    ) -> None:
        """An sdk server without instance should be rejected before spawn."""
        options = ClaudeAgentOptions(
            mcp_servers={"calc": {"type": "sdk", "name": "calc", "instance": None}}
        )
        with pytest.raises(ToolValidationError, match="calc"):
            await ClaudeSDKClient(options, transport=fake_transport).connect()
        assert not fake_transport.connected
        assert fake_transport.written == []

    @pytest.mark.asyncio
    async def test_failed_handshake_closes_transport(self) -> None:
        """A failed handshake should close the transport."""
        transport = FakeTransport()
        options = ClaudeAgentOptions(control_request_timeout=0.1)
        with pytest.raises(ControlRequestTimeoutError):
            await ClaudeSDKClient(options, transport=transport).connect()
        assert transport.closed

    @pytest.mark.asyncio
    async def test_connect_with_string_prompt(self, fake_transport: FakeTransport) -> None:
        """connect with a string prompt should send it."""
        client = ClaudeSDKClient(transport=fake_transport)
        await client.connect("Hello there")
        try:
            users = fake_transport.frames_of_type("user")
        finally:
            await client.disconnect()

        assert users[0]["message"] == {"role": "user", "content": "Hello there"}


# ── Conversation ─────────────────────────────────────────────────────────


class TestConversation:
    """Tests for sending turns and receiving messages."""

    @pytest.mark.asyncio
    async def test_query_writes_user_frame(self, fake_transport: FakeTransport) -> None:
        """query should write a user frame."""
        async with ClaudeSDKClient(transport=fake_transport) as client:
            await client.query("What is 2 + 2?", session_id="s-42")

        assert fake_transport.frames_of_type("user") == [
            {
                "type": "user",
                "message": {"role": "user", "content": "What is 2 + 2?"},
                "parent_tool_use_id": None,
                "session_id": "s-42",
            }
        ]

    @pytest.mark.asyncio
    async def test_query_rejects_empty_prompt(self, fake_transport: FakeTransport) -> None:
        """query should reject an empty prompt."""
        async with ClaudeSDKClient(transport=fake_transport) as client:
            with pytest.raises(ValueError, match="empty"):
                await client.query("   ")

    @pytest.mark.asyncio
    async def test_query_stream_sets_session_id(self, fake_transport: FakeTransport) -> None:
        """Streamed frames should get the session_id."""
        async with ClaudeSDKClient(transport=fake_transport) as client:
            await client.query(_user_frames("one", "two"), session_id="s-7")

        users = fake_transport.frames_of_type("user")
        assert [u["session_id"] for u in users] == ["s-7", "s-7"]
        assert [u["message"]["content"] for u in users] == ["one", "two"]  # type: ignore[index]

    @pytest.mark.asyncio
    async def test_receive_response_stops_after_result(
        self, fake_transport: FakeTransport
    ) -> None:
        """receive_response should stop after the result."""
        async with ClaudeSDKClient(transport=fake_transport) as client:
            fake_transport.push(system_frame())
            fake_transport.push(assistant_frame("4"))
            fake_transport.push(result_frame("4"))
            fake_transport.push(assistant_frame("next turn"))

            with anyio.fail_after(2):
                first_turn = [m async for m in client.receive_response()]
                async for message in client.receive_response():
                    second = message
                    break

        assert [type(m) for m in first_turn] == [SystemMessage, AssistantMessage, ResultMessage]
        assert isinstance(second, AssistantMessage)
        assert second.content[0].text == "next turn"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_receive_messages_until_end(self, fake_transport: FakeTransport) -> None:
        """receive_messages should run until the stream ends."""
        async with ClaudeSDKClient(transport=fake_transport) as client:
            fake_transport.push(result_frame())
            fake_transport.finish()
            messages = [m async for m in client.receive_messages()]

        assert [type(m) for m in messages] == [ResultMessage]


# ── Control operations ───────────────────────────────────────────────────


class TestControlOperations:
    """Tests for mid-session control operations."""

    @pytest.mark.asyncio
    async def test_control_requests_sent(self) -> None:
        """Control operations should send their requests."""
        transport = FakeTransport(
            auto_responses={
                "initialize": {},
                "interrupt": {},
                "set_permission_mode": {},
                "set_model": {},
                "rewind_files": {},
            }
        )
        options = ClaudeAgentOptions(enable_file_checkpointing=True)
        async with ClaudeSDKClient(options, transport=transport) as client:
            await client.interrupt()
            await client.set_permission_mode("plan")
            await client.set_model()
            await client.rewind_files("user-msg-1")

        subtypes = [
            f["request"]["subtype"]  # type: ignore[index]
            for f in transport.frames_of_type("control_request")
        ]
        assert subtypes == [
            "initialize",
            "interrupt",
            "set_permission_mode",
            "set_model",
            "rewind_files",
        ]
        set_model = transport.frames_of_type("control_request")[3]["request"]
        assert set_model == {"subtype": "set_model", "model": None}

    @pytest.mark.asyncio
    async def test_sdk_server_answers_tool_calls(self, fake_transport: FakeTransport) -> None:
        """In-process servers should answer tool calls."""
        @tool("add", "Add two numbers", {"a": int, "b": int})
        async def add(args: dict[str, object]) -> dict[str, object]:
            total = int(args["a"]) + int(args["b"])  # type: ignore[call-overload]
            return {"content": [{"type": "text", "text": str(total)}]}

        options = ClaudeAgentOptions(
            mcp_servers={"calc": create_sdk_mcp_server("calc", tools=[add])}
        )
        async with ClaudeSDKClient(options, transport=fake_transport) as client:
            assert client.options is options
            fake_transport.push(
                {
                    "type": "control_request",
                    "request_id": "cli_1",
                    "request": {
                        "subtype": "mcp_message",
                        "server_name": "calc",
                        "message": {
                            "jsonrpc": "2.0",
                            "id": 1,
                            "method": "tools/call",
                            "params": {"name": "add", "arguments": {"a": 15, "b": 27}},
                        },
                    },
                }
            )
            await fake_transport.wait_for_writes(2)

        response = fake_transport.frames_of_type("control_response")[0]["response"]
        mcp_response = response["response"]["mcp_response"]  # type: ignore[index]
        assert mcp_response["result"]["content"] == [{"type": "text", "text": "42"}]  # type: ignore[index]


# ── One-shot query ───────────────────────────────────────────────────────


class TestQuery:
    """Tests for the one-shot query() entrypoint."""

    @pytest.mark.asyncio
    async def test_string_prompt_runs_without_control_channel(self) -> None:
        """A string prompt should run without a control channel."""
        transport = FakeTransport()
        transport.push(assistant_frame("4"))
        transport.push(result_frame("4"))
        transport.finish()

        messages = [m async for m in query(prompt="What is 2 + 2?", transport=transport)]

        assert [type(m) for m in messages] == [AssistantMessage, ResultMessage]
        assert transport.written == []
        assert transport.closed

    @pytest.mark.asyncio
    async def test_string_prompt_with_permission_callback_rejected(self) -> None:
        """A string prompt with can_use_tool should be rejected."""
        options = ClaudeAgentOptions(can_use_tool=_allow_all)
        with pytest.raises(ValueError, match="streaming mode"):
            async for _ in query(prompt="hi", options=options, transport=FakeTransport()):
                pass

    @pytest.mark.asyncio
    async def test_invalid_sdk_server_rejected_before_spawn(self) -> None:
        """query() should reject an sdk server config before connecting."""
        transport = FakeTransport()
        options = ClaudeAgentOptions(
            mcp_servers={"calc": {"type": "sdk", "name": "calc", "instance": None}}
        )
        with pytest.raises(ToolValidationError, match="calc"):
            async for _ in query(prompt=_user_frames("hi"), options=options, transport=transport):
                pass
        assert not transport.connected

    @pytest.mark.asyncio
    async def test_streaming_prompt(self, fake_transport: FakeTransport) -> None:
        """A streaming prompt should initialize and stream input."""
        async def conversation() -> AsyncIterator[dict[str, object]]:
            yield {"type": "user", "message": {"role": "user", "content": "hi"}}
            fake_transport.push(result_frame("hello"))
            fake_transport.finish()

        messages = [
            m async for m in query(prompt=conversation(), transport=fake_transport)
        ]

        assert [type(m) for m in messages] == [ResultMessage]
        subtypes = [
            f["request"]["subtype"]  # type: ignore[index]
            for f in fake_transport.frames_of_type("control_request")
        ]
        assert subtypes == ["initialize"]
        assert len(fake_transport.frames_of_type("user")) == 1
        assert fake_transport.closed
