"""Subprocess transport: runs the claude CLI and speaks JSON over its stdio.

stdout is decoded with :class:`claudecode_agent.protocol.JsonLineBuffer`;
stderr is always drained by a background task so the pipe never fills,
and its tail is attached to :class:`ProcessError` when the CLI fails.
"""

from __future__ import annotations

import logging
import subprocess
from collections import deque
from collections.abc import AsyncIterator
from contextlib import suppress
from pathlib import Path

import anyio
from anyio.abc import Process, TaskGroup
from anyio.streams.text import TextReceiveStream, TextSendStream

from claudecode_agent.cli import build_command, build_environment, find_cli
from claudecode_agent.exceptions import (
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ProcessError,
)
from claudecode_agent.protocol import DEFAULT_MAX_BUFFER_SIZE, JsonLineBuffer
from claudecode_agent.transport import Transport, TransportState
from claudecode_agent.types import ClaudeAgentOptions

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 100
"""Number of trailing stderr lines kept for ProcessError."""

STDERR_DRAIN_TIMEOUT_SECONDS = 1.0
"""How long to wait for stderr to finish after the process exits."""

TERMINATE_TIMEOUT_SECONDS = 5.0
"""Grace period after SIGTERM before the process is killed."""


class SubprocessCLITransport(Transport):
    """Run the claude CLI as a subprocess and exchange JSON frames over stdio.

    Args:
        options: Session options (CLI path, working directory, environment...).
        prompt: One-shot prompt passed on the command line. When ``None``
            (the default) the transport runs in streaming mode and user
            turns are written to stdin.
    """

    def __init__(
        self,
        options: ClaudeAgentOptions | None = None,
        *,
        prompt: str | None = None,
    ) -> None:
        self._options = options or ClaudeAgentOptions()
        self._prompt = prompt
        self._cwd = str(self._options.cwd) if self._options.cwd is not None else None
        self._max_buffer_size = self._options.max_buffer_size or DEFAULT_MAX_BUFFER_SIZE

        self._process: Process | None = None
        self._stdout_stream: TextReceiveStream | None = None
        self._stdin_stream: TextSendStream | None = None
        self._stderr_stream: TextReceiveStream | None = None
        self._stderr_task_group: TaskGroup | None = None
        self._stderr_done = anyio.Event()
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        self._state: TransportState = "unconnected"
        self._exit_error: Exception | None = None
        self._write_lock = anyio.Lock()

    @property
    def state(self) -> TransportState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_streaming(self) -> bool:
        """Whether user turns are written to stdin."""
        return self._prompt is None

    @property
    def stderr_output(self) -> str:
        """Tail of the CLI's stderr captured so far."""
        return "\n".join(self._stderr_tail)

    def _build_command(self) -> list[str]:
        """Build the argument vector for the CLI process."""
        cli_path = find_cli(self._options.cli_path)
        return build_command(cli_path, self._options, prompt=self._prompt)

    def _fault(self, error: Exception) -> Exception:
        self._state = "faulted"
        self._exit_error = error
        return error

    async def connect(self) -> None:
        """Start the CLI process.

        Raises:
            CLINotFoundError: If the CLI executable cannot be found.
            CLIConnectionError: If the process fails to start, e.g. because
                the working directory does not exist.
        """
        if self._process is not None:
            return

        self._state = "connecting"
        try:
            cmd = self._build_command()
        except CLINotFoundError as e:
            raise self._fault(e)

        spawn_kwargs: dict[str, object] = {}
        if self._options.user:
            spawn_kwargs["user"] = self._options.user

        try:
            self._process = await anyio.open_process(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self._cwd,
                env=build_environment(self._options),
                **spawn_kwargs,  # type: ignore[arg-type]
            )
        except FileNotFoundError as e:
            if self._cwd is not None and not Path(self._cwd).exists():
                raise self._fault(
                    CLIConnectionError(f"Working directory does not exist: {self._cwd}")
                ) from e
            raise self._fault(CLINotFoundError(f"claude CLI not found at: {cmd[0]}")) from e
        except Exception as e:
            raise self._fault(
                CLIConnectionError(f"Failed to start claude CLI: {e}")
            ) from e

        if self._process.stdout is not None:
            self._stdout_stream = TextReceiveStream(self._process.stdout)

        if self._process.stderr is not None:
            self._stderr_stream = TextReceiveStream(self._process.stderr)
            self._stderr_task_group = anyio.create_task_group()
            await self._stderr_task_group.__aenter__()
            self._stderr_task_group.start_soon(self._drain_stderr)
        else:
            self._stderr_done.set()

        if self._process.stdin is not None:
            if self.is_streaming:
                self._stdin_stream = TextSendStream(self._process.stdin)
            else:
                await self._process.stdin.aclose()

        self._state = "ready"
        logger.info("Started claude CLI (pid=%s)", self._process.pid)
        logger.debug("claude CLI command: %s", cmd)

    async def _drain_stderr(self) -> None:
        """Consume stderr line by line until EOF or close."""
        stream = self._stderr_stream
        if stream is None:
            self._stderr_done.set()
            return

        pending = ""
        try:
            async for chunk in stream:
                pending += chunk
                *lines, pending = pending.split("\n")
                for line in lines:
                    self._handle_stderr_line(line)
            if pending:
                self._handle_stderr_line(pending)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("stderr stream closed")
        finally:
            self._stderr_done.set()

    def _handle_stderr_line(self, line: str) -> None:
        line = line.rstrip()
        if not line:
            return

        self._stderr_tail.append(line)
        logger.debug("[CLI stderr] %s", line)

        callback = self._options.stderr
        if callback is not None:
            try:
                callback(line)
            except Exception:
                logger.warning("stderr callback failed", exc_info=True)

    async def write(self, data: str) -> None:
        """Write *data* to the CLI's stdin.

        Raises:
            CLIConnectionError: If the transport is not ready, the process
                has exited, or the write fails. A failed write faults the
                transport so later writes fail fast.
        """
        async with self._write_lock:
            if self._exit_error is not None:
                raise CLIConnectionError(
                    f"Cannot write to process that exited with error: {self._exit_error}"
                ) from self._exit_error

            if self._state != "ready" or self._stdin_stream is None:
                raise CLIConnectionError("Transport is not ready for writing")

            if self._process is not None and self._process.returncode is not None:
                raise self._fault(
                    CLIConnectionError(
                        "Cannot write to terminated process "
                        f"(exit code: {self._process.returncode})"
                    )
                )

            try:
                await self._stdin_stream.send(data)
            except Exception as e:
                raise self._fault(
                    CLIConnectionError(f"Failed to write to process stdin: {e}")
                ) from e

    async def end_input(self) -> None:
        """Close stdin so the CLI sees EOF. Idempotent."""
        async with self._write_lock:
            if self._stdin_stream is None:
                return
            stream, self._stdin_stream = self._stdin_stream, None
            try:
                await stream.aclose()
            except (OSError, anyio.BrokenResourceError, anyio.ClosedResourceError):
                logger.debug("stdin already closed", exc_info=True)

    def read_messages(self) -> AsyncIterator[dict[str, object]]:
        """Read decoded JSON frames from stdout.

        Raises:
            CLIConnectionError: If the transport was never connected.
            CLIJSONDecodeError: If a frame exceeds the buffer limit or
                output cannot be decoded.
            ProcessError: If the CLI exits with a non-zero status.
        """
        return self._read_messages_impl()

    async def _read_messages_impl(self) -> AsyncIterator[dict[str, object]]:
        process = self._process
        stream = self._stdout_stream
        if process is None or stream is None:
            raise CLIConnectionError("Not connected")

        buffer = JsonLineBuffer(self._max_buffer_size)
        try:
            async for chunk in stream:
                for frame in buffer.feed(chunk):
                    yield frame
        except anyio.ClosedResourceError:
            # Closed locally by close(); nothing further to report
            return

        decode_error: CLIJSONDecodeError | None = None
        try:
            for frame in buffer.flush():
                yield frame
        except CLIJSONDecodeError as e:
            decode_error = e

        returncode = await process.wait()
        with anyio.move_on_after(STDERR_DRAIN_TIMEOUT_SECONDS):
            await self._stderr_done.wait()

        if returncode != 0 and self._state not in ("closing", "closed"):
            error = ProcessError(
                "Command failed",
                exit_code=returncode,
                stderr=self.stderr_output,
            )
            self._fault(error)
            if decode_error is not None:
                raise error from decode_error
            raise error

        if decode_error is not None:
            raise decode_error

    async def close(self) -> None:
        """Close streams and terminate the process. Never raises."""
        process = self._process
        if process is None:
            self._state = "closed"
            return

        self._state = "closing"

        async with self._write_lock:
            if self._stdin_stream is not None:
                with suppress(Exception):
                    await self._stdin_stream.aclose()
                self._stdin_stream = None

        for stream in (self._stdout_stream, self._stderr_stream):
            if stream is not None:
                with suppress(Exception):
                    await stream.aclose()
        self._stdout_stream = None
        self._stderr_stream = None

        if self._stderr_task_group is not None:
            self._stderr_task_group.cancel_scope.cancel()
            with suppress(Exception):
                await self._stderr_task_group.__aexit__(None, None, None)
            self._stderr_task_group = None

        if process.returncode is None:
            with suppress(ProcessLookupError, OSError):
                process.terminate()
            with anyio.move_on_after(TERMINATE_TIMEOUT_SECONDS):
                with suppress(Exception):
                    await process.wait()
            if process.returncode is None:
                with suppress(ProcessLookupError, OSError):
                    process.kill()

        with suppress(Exception):
            await process.aclose()

        self._process = None
        self._state = "closed"
        logger.debug("Transport closed")

    def is_ready(self) -> bool:
        """Whether the transport is writable."""
        return (
            self._state == "ready"
            and self._process is not None
            and self._process.returncode is None
        )


__all__ = ["SubprocessCLITransport"]
