"""claudecode-agent: control-protocol binding for the Claude Code CLI."""

import logging
import os
import warnings

# Configure log level from environment variable
# Users can set CLAUDECODE_AGENT_LOG_LEVEL to DEBUG, INFO, WARNING, ERROR, or CRITICAL
# Default is WARNING (suppresses debug/info logs)
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_log_level_env = os.getenv("CLAUDECODE_AGENT_LOG_LEVEL")
_log_level_str = (_log_level_env or "WARNING").upper()

if _log_level_str not in _VALID_LOG_LEVELS:
    warnings.warn(
        f"Invalid CLAUDECODE_AGENT_LOG_LEVEL='{_log_level_str}'. "
        f"Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL. Using WARNING.",
        stacklevel=1,
    )
    _log_level_str = "WARNING"

_logger = logging.getLogger("claudecode_agent")
_logger.setLevel(getattr(logging, _log_level_str))

# Add handler only when env var is explicitly set and no handler exists yet
# (prevents duplicate handlers on module reload)
if _log_level_env is not None and not _logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    _logger.addHandler(_handler)

from claudecode_agent.cli import MAX_PROMPT_LENGTH, build_command, find_cli  # noqa: E402
from claudecode_agent.client import ClaudeSDKClient, query  # noqa: E402
from claudecode_agent.control import Query  # noqa: E402
from claudecode_agent.exceptions import (  # noqa: E402
    ClaudeCodeError,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ControlProtocolError,
    ControlRequestError,
    ControlRequestTimeoutError,
    McpRequestError,
    MessageParseError,
    ProcessError,
    ToolValidationError,
    UnknownMessageTypeError,
)
from claudecode_agent.mcp_server import (  # noqa: E402
    McpSdkServer,
    SdkMcpPrompt,
    SdkMcpResource,
    SdkMcpTool,
    create_sdk_mcp_server,
    prompt,
    resource,
    tool,
)
from claudecode_agent.message_parser import parse_content_block, parse_message  # noqa: E402
from claudecode_agent.tool_converter import (  # noqa: E402
    convert_tool,
    convert_tools_to_mcp_server,
    convert_toolset,
)
from claudecode_agent.transport import Transport  # noqa: E402
from claudecode_agent.transport.subprocess_cli import SubprocessCLITransport  # noqa: E402
from claudecode_agent.types import (  # noqa: E402
    AgentDefinition,
    AssistantMessage,
    CanUseTool,
    ClaudeAgentOptions,
    ContentBlock,
    HookCallback,
    HookContext,
    HookEvent,
    HookInput,
    HookJSONOutput,
    HookMatcher,
    McpSdkServerConfig,
    McpServerConfig,
    Message,
    PermissionMode,
    PermissionResult,
    PermissionResultAllow,
    PermissionResultDeny,
    PermissionRuleValue,
    PermissionUpdate,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolPermissionContext,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

__all__ = [
    # Entry points
    "ClaudeSDKClient",
    "query",
    "Query",
    "ClaudeAgentOptions",
    "AgentDefinition",
    "MAX_PROMPT_LENGTH",
    "build_command",
    "find_cli",
    # Transport
    "Transport",
    "SubprocessCLITransport",
    # Messages
    "Message",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ResultMessage",
    "StreamEvent",
    "ContentBlock",
    "TextBlock",
    "ThinkingBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "parse_message",
    "parse_content_block",
    # Permissions
    "CanUseTool",
    "PermissionMode",
    "PermissionResult",
    "PermissionResultAllow",
    "PermissionResultDeny",
    "PermissionRuleValue",
    "PermissionUpdate",
    "ToolPermissionContext",
    # Hooks
    "HookCallback",
    "HookContext",
    "HookEvent",
    "HookInput",
    "HookJSONOutput",
    "HookMatcher",
    # In-process MCP servers
    "McpSdkServer",
    "McpSdkServerConfig",
    "McpServerConfig",
    "SdkMcpTool",
    "SdkMcpResource",
    "SdkMcpPrompt",
    "create_sdk_mcp_server",
    "tool",
    "resource",
    "prompt",
    # pydantic-ai tool adapter
    "convert_tool",
    "convert_toolset",
    "convert_tools_to_mcp_server",
    # Exceptions
    "ClaudeCodeError",
    "CLIConnectionError",
    "CLINotFoundError",
    "CLIJSONDecodeError",
    "ProcessError",
    "MessageParseError",
    "UnknownMessageTypeError",
    "ControlProtocolError",
    "ControlRequestError",
    "ControlRequestTimeoutError",
    "McpRequestError",
    "ToolValidationError",
]
