"""Control protocol: frame types, constants, and newline-delimited JSON framing.

This module defines the wire protocol spoken with the CLI over its
stdin/stdout. Every frame is one JSON object followed by a newline.

Wire format::

    {"type": "control_request", "request_id": "...", "request": {...}}\\n
    {"type": "control_response", "response": {"subtype": "success", ...}}\\n
    {"type": "user", "message": {...}, ...}\\n
"""

import json
from collections.abc import Iterator, Mapping
from typing import Literal, NotRequired, TypedDict

from claudecode_agent.exceptions import CLIJSONDecodeError

# ── Constants ──────────────────────────────────────────────────────────────

DEFAULT_MAX_BUFFER_SIZE: int = 1024 * 1024
"""Maximum size in characters of one buffered JSON frame (1 MiB)."""

CONTROL_REQUEST_TIMEOUT_SECONDS: float = 60.0
"""Default time to wait for the response to an outbound control request."""

CONTROL_REQUEST: str = "control_request"
CONTROL_RESPONSE: str = "control_response"
CONTROL_CANCEL_REQUEST: str = "control_cancel_request"

_PREVIEW_LENGTH = 200


# ── Frame TypedDicts ───────────────────────────────────────────────────────


class ControlRequestBody(TypedDict):
    """The ``request`` payload of a control request; extra keys per subtype."""

    subtype: str


class ControlRequestFrame(TypedDict):
    """A control request, sent in either direction."""

    type: Literal["control_request"]
    request_id: str
    request: ControlRequestBody


class ControlSuccessResponse(TypedDict):
    """Successful control response payload."""

    subtype: Literal["success"]
    request_id: str
    response: NotRequired[dict[str, object] | None]


class ControlErrorResponse(TypedDict):
    """Failed control response payload."""

    subtype: Literal["error"]
    request_id: str
    error: str


class ControlResponseFrame(TypedDict):
    """A control response, answering a control request by ``request_id``."""

    type: Literal["control_response"]
    response: ControlSuccessResponse | ControlErrorResponse


class UserMessageBody(TypedDict):
    """The ``message`` payload of an outbound user turn."""

    role: Literal["user"]
    content: str | list[dict[str, object]]


class UserMessageFrame(TypedDict):
    """An outbound user turn in streaming mode."""

    type: Literal["user"]
    message: UserMessageBody
    parent_tool_use_id: str | None
    session_id: str


# ── Frame encoding ─────────────────────────────────────────────────────────


def encode_frame(message: Mapping[str, object]) -> str:
    """Serialize *message* as one newline-terminated JSON frame."""
    return json.dumps(message) + "\n"


def user_message_frame(content: str, session_id: str = "default") -> UserMessageFrame:
    """Build an outbound user turn frame."""
    return {
        "type": "user",
        "message": {"role": "user", "content": content},
        "parent_tool_use_id": None,
        "session_id": session_id,
    }


def _preview(text: str) -> str:
    return text[:_PREVIEW_LENGTH] + "..." if len(text) > _PREVIEW_LENGTH else text


# ── Frame decoding ─────────────────────────────────────────────────────────


class JsonLineBuffer:
    """Reassemble newline-delimited JSON objects from arbitrary text chunks.

    Chunks are split into physical lines. Complete lines are appended to an
    accumulation buffer and a decode is attempted after each one, so an
    object spread over several physical lines is still recovered. Exceeding
    ``max_buffer_size`` is a protocol desync: the buffer is cleared (along
    with the rest of the oversized physical line) and
    :class:`CLIJSONDecodeError` is raised.

    Args:
        max_buffer_size: Maximum number of characters held for one frame.
    """

    def __init__(self, max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE) -> None:
        self._max_buffer_size = max_buffer_size
        self._partial_line = ""
        self._json_buffer = ""
        self._discard_partial = False

    @property
    def max_buffer_size(self) -> int:
        """Configured maximum frame size."""
        return self._max_buffer_size

    @property
    def pending(self) -> str:
        """Text received but not yet decoded."""
        return self._json_buffer + self._partial_line

    def reset(self) -> None:
        """Drop all buffered text."""
        self._partial_line = ""
        self._json_buffer = ""
        self._discard_partial = False

    def feed(self, chunk: str) -> Iterator[dict[str, object]]:
        """Consume *chunk* and yield every JSON object it completes.

        Raises:
            CLIJSONDecodeError: If the buffered frame exceeds the maximum
                size, or a complete frame decodes to a non-object value.
        """
        lines = (self._partial_line + chunk).split("\n")
        self._partial_line = lines.pop()

        for index, line in enumerate(lines):
            if self._discard_partial:
                # Remainder of an oversized line that was already rejected
                self._discard_partial = False
                continue
            try:
                decoded = self._consume_line(line)
            except CLIJSONDecodeError:
                # Lines after the rejected one are decoded by the next feed()
                self._partial_line = "\n".join([*lines[index + 1 :], self._partial_line])
                raise
            if decoded is not None:
                yield decoded

        if self._discard_partial:
            self._partial_line = ""
        elif len(self._json_buffer) + len(self._partial_line) > self._max_buffer_size:
            size = len(self._json_buffer) + len(self._partial_line)
            self._json_buffer = ""
            self._partial_line = ""
            self._discard_partial = True
            raise CLIJSONDecodeError(
                f"JSON message exceeded maximum buffer size of "
                f"{self._max_buffer_size} characters (buffered {size})",
                line="",
            )

    def flush(self) -> Iterator[dict[str, object]]:
        """Decode whatever remains once the stream has ended.

        Raises:
            CLIJSONDecodeError: If undecodable text remains.
        """
        if self._discard_partial:
            self._partial_line = ""
            self._discard_partial = False
        if self._partial_line:
            # May hold several lines left over from a rejected frame
            yield from self.feed("\n")

        if self._json_buffer:
            remainder, self._json_buffer = self._json_buffer, ""
            raise CLIJSONDecodeError(
                f"Incomplete JSON at end of stream: {_preview(remainder)}",
                line=_preview(remainder),
            )

    def _consume_line(self, line: str) -> dict[str, object] | None:
        stripped = line.strip()
        if not stripped:
            return None

        self._json_buffer += stripped
        if len(self._json_buffer) > self._max_buffer_size:
            size = len(self._json_buffer)
            self._json_buffer = ""
            raise CLIJSONDecodeError(
                f"JSON message exceeded maximum buffer size of "
                f"{self._max_buffer_size} characters (buffered {size})",
                line=_preview(stripped),
            )

        try:
            data = json.loads(self._json_buffer)
        except json.JSONDecodeError:
            # Possibly incomplete; keep accumulating
            return None

        text, self._json_buffer = self._json_buffer, ""
        if not isinstance(data, dict):
            raise CLIJSONDecodeError(
                f"Expected a JSON object frame, got {type(data).__name__}",
                line=_preview(text),
            )
        return data
