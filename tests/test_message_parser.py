"""Tests for message_parser module."""

import pytest

from claudecode_agent.exceptions import MessageParseError, UnknownMessageTypeError
from claudecode_agent.message_parser import parse_content_block, parse_message
from claudecode_agent.types import (
    AssistantMessage,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)


class TestParseContentBlock:
    """Tests for parse_content_block."""

    def test_text(self) -> None:
        """A text block should parse to TextBlock."""
        block = parse_content_block({"type": "text", "text": "hello"})
        assert block == TextBlock(text="hello")

    def test_thinking(self) -> None:
        """A thinking block should parse to ThinkingBlock."""
        block = parse_content_block(
            {"type": "thinking", "thinking": "hmm", "signature": "sig"}
        )
        assert isinstance(block, ThinkingBlock)
        assert block.thinking == "hmm"
        assert block.signature == "sig"

    def test_tool_use(self) -> None:
        """A tool_use block should parse to ToolUseBlock."""
        block = parse_content_block(
            {"type": "tool_use", "id": "tu_1", "name": "Bash", "input": {"command": "ls"}}
        )
        assert isinstance(block, ToolUseBlock)
        assert block.id == "tu_1"
        assert block.input == {"command": "ls"}

    def test_tool_result(self) -> None:
        """A tool_result block should parse to ToolResultBlock."""
        block = parse_content_block(
            {"type": "tool_result", "tool_use_id": "tu_1", "content": "ok", "is_error": False}
        )
        assert isinstance(block, ToolResultBlock)
        assert block.tool_use_id == "tu_1"
        assert block.content == "ok"
        assert block.is_error is False

    def test_tool_result_with_list_content(self) -> None:
        """tool_result content may be a list of blocks."""
        block = parse_content_block(
            {
                "type": "tool_result",
                "tool_use_id": "tu_1",
                "content": [{"type": "text", "text": "ok"}],
            }
        )
        assert isinstance(block, ToolResultBlock)
        assert block.content == [{"type": "text", "text": "ok"}]
        assert block.is_error is None

    def test_unknown_type_raises(self) -> None:
        """An unknown block type should raise MessageParseError."""
        with pytest.raises(MessageParseError, match="Unknown content block type"):
            parse_content_block({"type": "image"})

    def test_missing_field_raises(self) -> None:
        """A block missing a required field should raise."""
        with pytest.raises(MessageParseError):
            parse_content_block({"type": "tool_use", "id": "tu_1"})

    def test_non_object_raises(self) -> None:
        """A non-object block should raise."""
        with pytest.raises(MessageParseError):
            parse_content_block("text")


class TestParseMessage:
    """Tests for parse_message over each message variant."""

    def test_user_text(self) -> None:
        """A user message with string content should parse."""
        message = parse_message(
            {
                "type": "user",
                "uuid": "msg-1",
                "message": {"role": "user", "content": "hello"},
            }
        )
        assert isinstance(message, UserMessage)
        assert message.content == "hello"
        assert message.uuid == "msg-1"
        assert message.parent_tool_use_id is None

    def test_user_blocks(self) -> None:
        """A user message with content blocks should parse."""
        message = parse_message(
            {
                "type": "user",
                "parent_tool_use_id": "tu_9",
                "message": {
                    "role": "user",
                    "content": [
                        {"type": "tool_result", "tool_use_id": "tu_1", "content": "done"}
                    ],
                },
                "tool_use_result": {"stdout": "done"},
            }
        )
        assert isinstance(message, UserMessage)
        assert isinstance(message.content, list)
        assert isinstance(message.content[0], ToolResultBlock)
        assert message.parent_tool_use_id == "tu_9"
        assert message.tool_use_result == {"stdout": "done"}

    @pytest.mark.parametrize("tool_use_result", ["Error: file not found", ["a", "b"], 3])
    def test_user_tool_use_result_any_json(self, tool_use_result: object) -> None:
        """tool_use_result should accept any JSON value the CLI sends."""
        message = parse_message(
            {
                "type": "user",
                "message": {
                    "role": "user",
                    "content": [
                        {"type": "tool_result", "tool_use_id": "tu_1", "content": "failed"}
                    ],
                },
                "tool_use_result": tool_use_result,
            }
        )
        assert isinstance(message, UserMessage)
        assert message.tool_use_result == tool_use_result

    def test_assistant(self) -> None:
        """An assistant message should parse content and model."""
        message = parse_message(
            {
                "type": "assistant",
                "message": {
                    "model": "claude-sonnet-4-5",
                    "content": [
                        {"type": "thinking", "thinking": "plan", "signature": "s"},
                        {"type": "text", "text": "Hi"},
                        {"type": "tool_use", "id": "tu_1", "name": "Read", "input": {}},
                    ],
                },
            }
        )
        assert isinstance(message, AssistantMessage)
        assert message.model == "claude-sonnet-4-5"
        assert [type(b) for b in message.content] == [ThinkingBlock, TextBlock, ToolUseBlock]
        assert message.error is None

    def test_assistant_error(self) -> None:
        """An assistant error field should be kept."""
        message = parse_message(
            {
                "type": "assistant",
                "error": "rate_limit",
                "message": {"model": "m", "content": [{"type": "text", "text": "x"}]},
            }
        )
        assert isinstance(message, AssistantMessage)
        assert message.error == "rate_limit"

    def test_system(self) -> None:
        """A system message should keep its subtype and raw data."""
        raw = {"type": "system", "subtype": "init", "cwd": "/tmp", "tools": ["Bash"]}
        message = parse_message(raw)
        assert isinstance(message, SystemMessage)
        assert message.subtype == "init"
        assert message.data == raw

    def test_result(self) -> None:
        """A result message should parse every field."""
        message = parse_message(
            {
                "type": "result",
                "subtype": "success",
                "duration_ms": 1200,
                "duration_api_ms": 900,
                "is_error": False,
                "num_turns": 2,
                "session_id": "s-1",
                "total_cost_usd": 0.05,
                "usage": {"input_tokens": 10},
                "result": "done",
                "structured_output": {"answer": 4},
            }
        )
        assert isinstance(message, ResultMessage)
        assert message.duration_ms == 1200
        assert message.duration_api_ms == 900
        assert message.num_turns == 2
        assert message.session_id == "s-1"
        assert message.total_cost_usd == 0.05
        assert message.usage == {"input_tokens": 10}
        assert message.result == "done"
        assert message.structured_output == {"answer": 4}

    def test_result_optional_fields_absent(self) -> None:
        """Optional result fields should default to None."""
        message = parse_message(
            {
                "type": "result",
                "subtype": "error_max_turns",
                "duration_ms": 1,
                "duration_api_ms": 1,
                "is_error": True,
                "num_turns": 5,
                "session_id": "s-1",
            }
        )
        assert isinstance(message, ResultMessage)
        assert message.total_cost_usd is None
        assert message.result is None

    def test_stream_event(self) -> None:
        """A stream_event should parse to StreamEvent."""
        message = parse_message(
            {
                "type": "stream_event",
                "uuid": "ev-1",
                "session_id": "s-1",
                "event": {"type": "content_block_delta"},
            }
        )
        assert isinstance(message, StreamEvent)
        assert message.uuid == "ev-1"
        assert message.event == {"type": "content_block_delta"}


class TestParseMessageErrors:
    """parse_message fails loudly on malformed input."""

    def test_unknown_type(self) -> None:
        """An unknown message type should raise UnknownMessageTypeError."""
        with pytest.raises(UnknownMessageTypeError) as exc_info:
            parse_message({"type": "bogus"})
        assert exc_info.value.data == {"type": "bogus"}

    def test_missing_content(self) -> None:
        """A message without content should raise."""
        with pytest.raises(MessageParseError):
            parse_message({"type": "assistant", "message": {}})

    def test_missing_message(self) -> None:
        """A message without the inner message should raise."""
        with pytest.raises(MessageParseError):
            parse_message({"type": "user"})

    def test_assistant_missing_model(self) -> None:
        """An assistant message without model should raise."""
        with pytest.raises(MessageParseError, match="model"):
            parse_message({"type": "assistant", "message": {"content": []}})

    def test_not_an_object(self) -> None:
        """A non-object frame should raise."""
        with pytest.raises(MessageParseError):
            parse_message("not an object")

    def test_missing_type(self) -> None:
        """A frame without type should raise."""
        with pytest.raises(MessageParseError, match="type"):
            parse_message({"subtype": "init"})

    def test_result_missing_required_field(self) -> None:
        """A result missing a required field should raise."""
        with pytest.raises(MessageParseError, match="session_id"):
            parse_message(
                {
                    "type": "result",
                    "subtype": "success",
                    "duration_ms": 1,
                    "duration_api_ms": 1,
                    "is_error": False,
                    "num_turns": 1,
                }
            )

    def test_unknown_content_block_inside_message(self) -> None:
        """An unknown block inside a message should raise."""
        with pytest.raises(MessageParseError):
            parse_message(
                {
                    "type": "assistant",
                    "message": {"model": "m", "content": [{"type": "mystery"}]},
                }
            )

    def test_unknown_type_is_not_plain_parse_error_for_missing_fields(self) -> None:
        """Missing fields should not raise UnknownMessageTypeError."""
        with pytest.raises(MessageParseError) as exc_info:
            parse_message({"type": "assistant", "message": {}})
        assert not isinstance(exc_info.value, UnknownMessageTypeError)
