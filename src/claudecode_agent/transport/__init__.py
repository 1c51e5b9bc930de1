"""Transport layer: raw duplex I/O with the CLI process.

A transport owns the byte stream and frames it as JSON objects. The
control engine (:class:`claudecode_agent.control.Query`) builds the
control protocol on top of it.

Architecture::

    Query  ── write(frame) ──>  Transport  ── stdin ──>   CLI process
           <── read_messages() ──          <── stdout ──
"""

import abc
from collections.abc import AsyncIterator
from typing import Literal

type TransportState = Literal[
    "unconnected", "connecting", "ready", "closing", "closed", "faulted"
]
"""Lifecycle state of a transport.

``faulted`` behaves like ``closed`` for writes, but already-buffered output
can still be drained with ``read_messages()``.
"""


class Transport(abc.ABC):
    """Abstract transport for communicating with the CLI."""

    @abc.abstractmethod
    async def connect(self) -> None:
        """Start the counterparty and prepare for communication."""

    @abc.abstractmethod
    async def write(self, data: str) -> None:
        """Write raw data (typically one JSON frame plus newline)."""

    @abc.abstractmethod
    def read_messages(self) -> AsyncIterator[dict[str, object]]:
        """Return a single-pass iterator over decoded JSON frames."""

    @abc.abstractmethod
    async def end_input(self) -> None:
        """Close the input side without closing output."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Tear down all resources. Never raises."""

    @abc.abstractmethod
    def is_ready(self) -> bool:
        """Whether the transport is currently writable."""


__all__ = ["Transport", "TransportState"]
