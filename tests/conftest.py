"""Shared test fixtures and helpers for claudecode_agent tests."""

from __future__ import annotations

import json
import math
from collections.abc import AsyncIterator

import anyio
import pytest

from claudecode_agent.transport import Transport


class FakeTransport(Transport):
    """In-memory transport driven by the test.

    Frames pushed with :meth:`push` are returned by ``read_messages()``;
    everything the engine writes is recorded in :attr:`written`. Control
    requests whose subtype appears in ``auto_responses`` are answered
    immediately with that payload.
    """

    def __init__(self, auto_responses: dict[str, dict[str, object]] | None = None) -> None:
        self.written: list[str] = []
        self.auto_responses = auto_responses or {}
        self.write_error: Exception | None = None
        self.connected = False
        self.closed = False
        self.input_ended = False
        self._send, self._receive = anyio.create_memory_object_stream[
            dict[str, object] | Exception
        ](max_buffer_size=math.inf)

    async def connect(self) -> None:
        self.connected = True

    async def write(self, data: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.written.append(data)

        frame = json.loads(data)
        if frame.get("type") == "control_request":
            subtype = frame["request"]["subtype"]
            if subtype in self.auto_responses:
                self.push(success_response(frame["request_id"], self.auto_responses[subtype]))

    def push(self, frame: dict[str, object]) -> None:
        """Deliver a frame to the reader."""
        self._send.send_nowait(frame)

    def fail(self, error: Exception) -> None:
        """Make the reader raise *error* after the frames already pushed."""
        self._send.send_nowait(error)

    def finish(self) -> None:
        """End the stream after the frames already pushed."""
        self._send.close()

    async def _read(self) -> AsyncIterator[dict[str, object]]:
        async for item in self._receive:
            if isinstance(item, Exception):
                raise item
            yield item

    def read_messages(self) -> AsyncIterator[dict[str, object]]:
        return self._read()

    async def end_input(self) -> None:
        self.input_ended = True

    async def close(self) -> None:
        self.closed = True
        self._send.close()

    def is_ready(self) -> bool:
        return self.connected and not self.closed

    @property
    def frames(self) -> list[dict[str, object]]:
        """Decoded frames written so far."""
        return [json.loads(line) for line in self.written]

    def frames_of_type(self, frame_type: str) -> list[dict[str, object]]:
        return [f for f in self.frames if f.get("type") == frame_type]

    async def wait_for_writes(self, count: int, timeout: float = 2.0) -> None:
        """Wait until at least *count* frames have been written."""
        with anyio.fail_after(timeout):
            while len(self.written) < count:
                await anyio.sleep(0.01)


# ── Frame builders ─────────────────────────────────────────────────────────


def success_response(request_id: str, response: dict[str, object] | None = None) -> dict[str, object]:
    return {
        "type": "control_response",
        "response": {"subtype": "success", "request_id": request_id, "response": response or {}},
    }


def error_response(request_id: str, error: str) -> dict[str, object]:
    return {
        "type": "control_response",
        "response": {"subtype": "error", "request_id": request_id, "error": error},
    }


def assistant_frame(text: str = "Hello", model: str = "claude-sonnet-4-5") -> dict[str, object]:
    return {
        "type": "assistant",
        "message": {"content": [{"type": "text", "text": text}], "model": model},
    }


def user_frame(content: object = "hi", uuid: str | None = None) -> dict[str, object]:
    frame: dict[str, object] = {"type": "user", "message": {"role": "user", "content": content}}
    if uuid is not None:
        frame["uuid"] = uuid
    return frame


def system_frame(subtype: str = "init") -> dict[str, object]:
    return {"type": "system", "subtype": subtype, "session_id": "test-session"}


def result_frame(
    result: str = "Response from Claude",
    is_error: bool = False,
    session_id: str = "test-session",
) -> dict[str, object]:
    return {
        "type": "result",
        "subtype": "success",
        "duration_ms": 1000,
        "duration_api_ms": 800,
        "is_error": is_error,
        "num_turns": 1,
        "session_id": session_id,
        "total_cost_usd": 0.01,
        "usage": {"input_tokens": 100, "output_tokens": 50},
        "result": result,
    }


def control_request_frame(request_id: str, request: dict[str, object]) -> dict[str, object]:
    return {"type": "control_request", "request_id": request_id, "request": request}


@pytest.fixture
def fake_transport() -> FakeTransport:
    """A FakeTransport that answers the initialize handshake."""
    return FakeTransport(auto_responses={"initialize": {"commands": ["/help"]}})
