"""Custom exceptions for claudecode-agent."""


class ClaudeCodeError(Exception):
    """Base exception for claudecode-agent."""


class CLIConnectionError(ClaudeCodeError):
    """Raised when the CLI process cannot be started or written to.

    Covers spawn failures, an invalid working directory, writes after the
    transport has faulted, and use of a transport that is not connected.
    """


class CLINotFoundError(CLIConnectionError):
    """Raised when the claude CLI executable cannot be located."""


class ProcessError(ClaudeCodeError):
    """Raised when the CLI process exits with a non-zero status.

    Attributes:
        exit_code: Process exit code, if available.
        stderr: Tail of the captured standard error output.
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr

    def __str__(self) -> str:
        message = super().__str__()
        if self.exit_code is not None:
            message = f"{message} (exit code: {self.exit_code})"
        if self.stderr:
            message = f"{message}\nError output: {self.stderr}"
        return message


class CLIJSONDecodeError(ClaudeCodeError):
    """Raised when CLI output cannot be decoded as JSON frames.

    This is a protocol desync (buffer overflow, trailing garbage, or a
    non-object frame) and is not recoverable by waiting for more data.

    Attributes:
        line: The offending text, truncated for display.
        original_error: The underlying decode error, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        line: str = "",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.line = line
        self.original_error = original_error


class MessageParseError(ClaudeCodeError):
    """Raised when a decoded JSON object is not a known message shape.

    Attributes:
        data: The raw object that failed to parse.
    """

    def __init__(self, message: str, *, data: object = None) -> None:
        super().__init__(message)
        self.data = data


class UnknownMessageTypeError(MessageParseError):
    """Raised when a message carries an unrecognized top-level ``type``."""


class ControlProtocolError(ClaudeCodeError):
    """Raised for faults while answering an incoming control request.

    These never escape the control engine; they are converted into an
    error ``control_response`` for the counterparty.
    """


class ControlRequestError(ClaudeCodeError):
    """Raised when the CLI answers an outbound control request with an error.

    Attributes:
        subtype: The control request subtype (e.g. ``"interrupt"``).
    """

    def __init__(self, message: str, *, subtype: str | None = None) -> None:
        super().__init__(message)
        self.subtype = subtype


class ControlRequestTimeoutError(ControlRequestError, TimeoutError):
    """Raised when an outbound control request receives no response in time.

    Attributes:
        subtype: The control request subtype that timed out.
        timeout: The timeout in seconds that elapsed.
    """

    def __init__(self, subtype: str | None, timeout: float) -> None:
        super().__init__(
            f"Control request timed out after {timeout} seconds: {subtype}",
            subtype=subtype,
        )
        self.timeout = timeout


class ToolValidationError(ClaudeCodeError, ValueError):
    """Raised when a tool, resource, or prompt registration is invalid."""


class McpRequestError(ClaudeCodeError):
    """Raised by an in-process MCP server for a request it cannot satisfy.

    Attributes:
        code: JSON-RPC error code (``-32601`` not found, ``-32603`` internal).
    """

    def __init__(self, message: str, *, code: int) -> None:
        super().__init__(message)
        self.code = code
