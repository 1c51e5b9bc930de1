"""Parse decoded CLI frames into typed Message objects.

The parser is the only boundary between untyped JSON and the closed set of
message and content block models in :mod:`claudecode_agent.types`. It
fails loudly: unknown ``type`` values and missing required fields raise
:class:`MessageParseError` rather than being dropped.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ValidationError

from claudecode_agent.exceptions import MessageParseError, UnknownMessageTypeError
from claudecode_agent.types import (
    AssistantMessage,
    ContentBlock,
    Message,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

_BLOCK_TYPES: dict[str, type[BaseModel]] = {
    "text": TextBlock,
    "thinking": ThinkingBlock,
    "tool_use": ToolUseBlock,
    "tool_result": ToolResultBlock,
}


def parse_content_block(data: object) -> ContentBlock:
    """Parse a single content block.

    Args:
        data: Raw content block object.

    Returns:
        The matching content block model.

    Raises:
        MessageParseError: If the block is not an object, its ``type`` is
            missing or unknown, or a required field is missing.
    """
    if not isinstance(data, Mapping):
        raise MessageParseError(
            f"Invalid content block (expected object, got {type(data).__name__})",
            data=data,
        )

    block_type = data.get("type")
    model = _BLOCK_TYPES.get(block_type) if isinstance(block_type, str) else None
    if model is None:
        raise MessageParseError(f"Unknown content block type: {block_type}", data=data)

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise MessageParseError(
            f"Invalid {block_type} content block: {e}", data=data
        ) from e


def _parse_content_blocks(content: object, data: Mapping[str, object]) -> list[ContentBlock]:
    if not isinstance(content, list):
        raise MessageParseError(
            f"Message content must be a list, got {type(content).__name__}",
            data=data,
        )
    return [parse_content_block(block) for block in content]


def _inner_message(data: Mapping[str, object], message_type: str) -> Mapping[str, object]:
    inner = data.get("message")
    if not isinstance(inner, Mapping):
        raise MessageParseError(
            f"Missing required field in {message_type} message: 'message'", data=data
        )
    if "content" not in inner:
        raise MessageParseError(
            f"Missing required field in {message_type} message: 'content'", data=data
        )
    return inner


def _parse_user(data: Mapping[str, object]) -> UserMessage:
    inner = _inner_message(data, "user")
    content = inner["content"]
    if not isinstance(content, str):
        content = _parse_content_blocks(content, data)
    return UserMessage(
        content=content,
        uuid=data.get("uuid"),  # type: ignore[arg-type]
        parent_tool_use_id=data.get("parent_tool_use_id"),  # type: ignore[arg-type]
        tool_use_result=data.get("tool_use_result"),  # type: ignore[arg-type]
    )


def _parse_assistant(data: Mapping[str, object]) -> AssistantMessage:
    inner = _inner_message(data, "assistant")
    if "model" not in inner:
        raise MessageParseError(
            "Missing required field in assistant message: 'model'", data=data
        )
    return AssistantMessage(
        content=_parse_content_blocks(inner["content"], data),
        model=inner["model"],  # type: ignore[arg-type]
        parent_tool_use_id=data.get("parent_tool_use_id"),  # type: ignore[arg-type]
        error=data.get("error"),  # type: ignore[arg-type]
    )


def _parse_system(data: Mapping[str, object]) -> SystemMessage:
    return SystemMessage(subtype=data["subtype"], data=dict(data))  # type: ignore[arg-type]


def _parse_result(data: Mapping[str, object]) -> ResultMessage:
    return ResultMessage(
        subtype=data["subtype"],  # type: ignore[arg-type]
        duration_ms=data["duration_ms"],  # type: ignore[arg-type]
        duration_api_ms=data["duration_api_ms"],  # type: ignore[arg-type]
        is_error=data["is_error"],  # type: ignore[arg-type]
        num_turns=data["num_turns"],  # type: ignore[arg-type]
        session_id=data["session_id"],  # type: ignore[arg-type]
        total_cost_usd=data.get("total_cost_usd"),  # type: ignore[arg-type]
        usage=data.get("usage"),  # type: ignore[arg-type]
        result=data.get("result"),  # type: ignore[arg-type]
        structured_output=data.get("structured_output"),  # type: ignore[arg-type]
    )


def _parse_stream_event(data: Mapping[str, object]) -> StreamEvent:
    return StreamEvent(
        uuid=data["uuid"],  # type: ignore[arg-type]
        session_id=data["session_id"],  # type: ignore[arg-type]
        event=data["event"],  # type: ignore[arg-type]
        parent_tool_use_id=data.get("parent_tool_use_id"),  # type: ignore[arg-type]
    )


def parse_message(data: object) -> Message:
    """Parse a decoded CLI frame into a typed Message.

    Args:
        data: Raw decoded JSON object from CLI output.

    Returns:
        One of UserMessage, AssistantMessage, SystemMessage, ResultMessage,
        or StreamEvent.

    Raises:
        UnknownMessageTypeError: If ``type`` is not a known message type.
        MessageParseError: If ``data`` is not an object, has no ``type``,
            or is missing a required field.
    """
    if not isinstance(data, Mapping):
        raise MessageParseError(
            f"Invalid message data type (expected object, got {type(data).__name__})",
            data=data,
        )

    message_type = data.get("type")
    if not message_type:
        raise MessageParseError("Message missing 'type' field", data=data)

    try:
        match message_type:
            case "user":
                return _parse_user(data)
            case "assistant":
                return _parse_assistant(data)
            case "system":
                return _parse_system(data)
            case "result":
                return _parse_result(data)
            case "stream_event":
                return _parse_stream_event(data)
            case _:
                raise UnknownMessageTypeError(
                    f"Unknown message type: {message_type}", data=data
                )
    except KeyError as e:
        raise MessageParseError(
            f"Missing required field in {message_type} message: {e}", data=data
        ) from e
    except ValidationError as e:
        raise MessageParseError(
            f"Invalid {message_type} message: {e}", data=data
        ) from e
