"""Type definitions for messages, permissions, hooks, and session options."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Literal, NotRequired, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Recursive JSON-compatible value (avoids Any)
type JsonValue = (
    int | float | str | bool | None | list[JsonValue] | dict[str, JsonValue]
)


# ── Content blocks ─────────────────────────────────────────────────────────


class TextBlock(BaseModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BaseModel):
    """Extended thinking output with its verification signature."""

    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the assistant."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, object]


class ToolResultBlock(BaseModel):
    """The result of a tool invocation, fed back to the assistant."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str | list[dict[str, object]] | None = None
    is_error: bool | None = None


ContentBlock = Annotated[
    TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock,
    Field(discriminator="type"),
]


# ── Messages ───────────────────────────────────────────────────────────────

AssistantMessageError = Literal[
    "authentication_failed",
    "billing_error",
    "rate_limit",
    "invalid_request",
    "server_error",
    "unknown",
]


class UserMessage(BaseModel):
    """A user turn, either plain text or a list of content blocks.

    ``uuid`` is present when the CLI tracks the message as a file
    checkpoint; pass it to ``rewind_files()`` to restore that state.
    """

    type: Literal["user"] = "user"
    content: str | list[ContentBlock]
    uuid: str | None = None
    parent_tool_use_id: str | None = None
    tool_use_result: JsonValue | None = None


class AssistantMessage(BaseModel):
    """An assistant turn made of content blocks."""

    type: Literal["assistant"] = "assistant"
    content: list[ContentBlock]
    model: str
    parent_tool_use_id: str | None = None
    error: AssistantMessageError | None = None


class SystemMessage(BaseModel):
    """A system event; ``data`` holds the full raw frame."""

    type: Literal["system"] = "system"
    subtype: str
    data: dict[str, object]


class ResultMessage(BaseModel):
    """Final message of a turn with timing, cost, and usage information."""

    type: Literal["result"] = "result"
    subtype: str
    duration_ms: int
    duration_api_ms: int
    is_error: bool
    num_turns: int
    session_id: str
    total_cost_usd: float | None = None
    usage: dict[str, object] | None = None
    result: str | None = None
    structured_output: dict[str, object] | None = None


class StreamEvent(BaseModel):
    """Partial message update, emitted only with ``include_partial_messages``."""

    type: Literal["stream_event"] = "stream_event"
    uuid: str
    session_id: str
    event: dict[str, object]
    parent_tool_use_id: str | None = None


Message = UserMessage | AssistantMessage | SystemMessage | ResultMessage | StreamEvent


# ── Permissions ────────────────────────────────────────────────────────────

PermissionMode = Literal["default", "acceptEdits", "plan", "bypassPermissions"]

PermissionUpdateDestination = Literal[
    "userSettings", "projectSettings", "localSettings", "session"
]

PermissionBehavior = Literal["allow", "deny", "ask"]


class PermissionRuleValue(BaseModel):
    """A single permission rule (tool name plus optional rule content)."""

    tool_name: str = Field(alias="toolName")
    rule_content: str | None = Field(default=None, alias="ruleContent")

    model_config = ConfigDict(populate_by_name=True)


class PermissionUpdate(BaseModel):
    """A change to the permission configuration.

    Field names are snake_case internally; ``to_dict()`` produces the
    camelCase shape the CLI expects.
    """

    type: Literal[
        "addRules",
        "replaceRules",
        "removeRules",
        "setMode",
        "addDirectories",
        "removeDirectories",
    ]
    rules: list[PermissionRuleValue] | None = None
    behavior: PermissionBehavior | None = None
    mode: PermissionMode | None = None
    directories: list[str] | None = None
    destination: PermissionUpdateDestination | None = None

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict[str, object]:
        """Serialize to the CLI wire format."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ToolPermissionContext(BaseModel):
    """Context passed to a ``can_use_tool`` callback."""

    signal: object | None = None
    suggestions: list[PermissionUpdate] = Field(default_factory=list)
    tool_use_id: str | None = None
    blocked_path: str | None = None


class PermissionResultAllow(BaseModel):
    """Allow the tool call, optionally rewriting its input."""

    behavior: Literal["allow"] = "allow"
    updated_input: dict[str, object] | None = None
    updated_permissions: list[PermissionUpdate] | None = None


class PermissionResultDeny(BaseModel):
    """Deny the tool call; ``interrupt`` also stops the current turn."""

    behavior: Literal["deny"] = "deny"
    message: str = ""
    interrupt: bool = False


PermissionResult = PermissionResultAllow | PermissionResultDeny

CanUseTool = Callable[
    [str, dict[str, object], ToolPermissionContext],
    Awaitable[PermissionResult],
]


# ── Hooks ──────────────────────────────────────────────────────────────────

HookEvent = Literal[
    "PreToolUse",
    "PostToolUse",
    "PostToolUseFailure",
    "UserPromptSubmit",
    "Stop",
    "SubagentStop",
    "SubagentStart",
    "PreCompact",
    "Notification",
    "PermissionRequest",
]


class BaseHookInput(TypedDict):
    """Fields present on every hook input."""

    session_id: str
    transcript_path: str
    cwd: str
    permission_mode: NotRequired[str]
    hook_event_name: NotRequired[str]


class PreToolUseHookInput(BaseHookInput):
    """Input for ``PreToolUse`` hooks."""

    tool_name: str
    tool_input: dict[str, object]
    tool_use_id: NotRequired[str]


class PostToolUseHookInput(BaseHookInput):
    """Input for ``PostToolUse`` hooks."""

    tool_name: str
    tool_input: dict[str, object]
    tool_response: object
    tool_use_id: NotRequired[str]


class UserPromptSubmitHookInput(BaseHookInput):
    """Input for ``UserPromptSubmit`` hooks."""

    prompt: str


class StopHookInput(BaseHookInput):
    """Input for ``Stop`` hooks."""

    stop_hook_active: bool


class SubagentStopHookInput(BaseHookInput):
    """Input for ``SubagentStop`` hooks."""

    stop_hook_active: bool


class PreCompactHookInput(BaseHookInput):
    """Input for ``PreCompact`` hooks."""

    trigger: Literal["manual", "auto"]
    custom_instructions: str | None


HookInput = (
    PreToolUseHookInput
    | PostToolUseHookInput
    | UserPromptSubmitHookInput
    | StopHookInput
    | SubagentStopHookInput
    | PreCompactHookInput
    | BaseHookInput
)


class PreToolUseHookSpecificOutput(TypedDict):
    """Hook-specific output for ``PreToolUse`` events."""

    hookEventName: Literal["PreToolUse"]
    permissionDecision: NotRequired[Literal["allow", "deny", "ask"]]
    permissionDecisionReason: NotRequired[str]
    updatedInput: NotRequired[dict[str, object]]


class PostToolUseHookSpecificOutput(TypedDict):
    """Hook-specific output for ``PostToolUse`` events."""

    hookEventName: Literal["PostToolUse"]
    additionalContext: NotRequired[str]


class UserPromptSubmitHookSpecificOutput(TypedDict):
    """Hook-specific output for ``UserPromptSubmit`` events."""

    hookEventName: Literal["UserPromptSubmit"]
    additionalContext: NotRequired[str]


HookSpecificOutput = (
    PreToolUseHookSpecificOutput
    | PostToolUseHookSpecificOutput
    | UserPromptSubmitHookSpecificOutput
)


class AsyncHookJSONOutput(TypedDict):
    """Deferred hook output.

    ``async_`` stands in for the reserved word ``async``; it is renamed on
    the wire.
    """

    async_: Literal[True]
    asyncTimeout: NotRequired[int]


class SyncHookJSONOutput(TypedDict, total=False):
    """Synchronous hook output.

    ``continue_`` stands in for the reserved word ``continue``. snake_case
    spellings (``suppress_output``, ``stop_reason``...) are also accepted and
    converted to camelCase before sending.
    """

    continue_: bool
    suppressOutput: bool
    stopReason: str
    decision: Literal["block"]
    systemMessage: str
    reason: str
    hookSpecificOutput: HookSpecificOutput


HookJSONOutput = AsyncHookJSONOutput | SyncHookJSONOutput


class HookContext(TypedDict):
    """Context passed to hook callbacks."""

    signal: object | None


HookCallback = Callable[
    [HookInput, str | None, HookContext],
    Awaitable[HookJSONOutput],
]


class HookMatcher(BaseModel):
    """Callbacks subscribed to one hook event, filtered by a tool-name pattern.

    Attributes:
        matcher: Tool name pattern (e.g. ``"Bash"`` or ``"Write|Edit"``);
            ``None`` matches everything.
        hooks: Callbacks invoked in order when the matcher applies.
        timeout: Per-callback timeout in seconds enforced by the CLI.
    """

    matcher: str | None = None
    hooks: list[HookCallback] = Field(default_factory=list)
    timeout: float | None = None


# ── MCP server configuration ───────────────────────────────────────────────


class McpStdioServerConfig(TypedDict):
    """External MCP server started by the CLI over stdio."""

    type: NotRequired[Literal["stdio"]]
    command: str
    args: NotRequired[list[str]]
    env: NotRequired[dict[str, str]]


class McpSSEServerConfig(TypedDict):
    """External MCP server reached over server-sent events."""

    type: Literal["sse"]
    url: str
    headers: NotRequired[dict[str, str]]


class McpHttpServerConfig(TypedDict):
    """External MCP server reached over streamable HTTP."""

    type: Literal["http"]
    url: str
    headers: NotRequired[dict[str, str]]


class McpSdkServerConfig(TypedDict):
    """In-process MCP server answered through the control channel.

    ``instance`` is a :class:`claudecode_agent.mcp_server.McpSdkServer`.
    """

    type: Literal["sdk"]
    name: str
    instance: object


McpServerConfig = (
    McpStdioServerConfig | McpSSEServerConfig | McpHttpServerConfig | McpSdkServerConfig
)


# ── Session options ────────────────────────────────────────────────────────


class SystemPromptPreset(TypedDict):
    """Use the CLI's built-in system prompt, optionally appending to it."""

    type: Literal["preset"]
    preset: Literal["claude_code"]
    append: NotRequired[str]


SettingSource = Literal["user", "project", "local"]


class AgentDefinition(BaseModel):
    """A custom subagent made available to the CLI."""

    description: str
    prompt: str
    tools: list[str] | None = None
    model: Literal["sonnet", "opus", "haiku", "inherit"] | None = None


class ClaudeAgentOptions(BaseModel):
    """Configuration for a CLI session.

    Attributes:
        allowed_tools: Tools the agent may use without asking.
        disallowed_tools: Tools the agent may never use.
        system_prompt: Replacement system prompt, or a preset.
        append_system_prompt: Text appended to the system prompt.
        mcp_servers: MCP servers by name, or a path / JSON string.
        permission_mode: Initial permission mode.
        continue_conversation: Continue the most recent conversation.
        resume: Session ID to resume.
        fork_session: Fork instead of continuing a resumed session.
        max_turns: Maximum number of agent turns.
        max_budget_usd: Maximum spend in USD.
        max_thinking_tokens: Thinking token budget.
        model: Model name; ``None`` uses the CLI default.
        fallback_model: Model used when the primary one is overloaded.
        permission_prompt_tool_name: MCP tool answering permission prompts.
        cwd: Working directory for the CLI process.
        cli_path: Explicit CLI executable path; discovered when ``None``.
        settings: Settings file path or JSON string.
        add_dirs: Additional directories the agent may access.
        env: Extra environment variables for the CLI process.
        extra_args: Arbitrary extra flags (``None`` value means bare flag).
        max_buffer_size: Maximum size of one buffered JSON frame.
        stderr: Callback receiving each CLI stderr line.
        can_use_tool: Permission callback for tool use requests.
        hooks: Hook subscriptions by event name.
        user: OS user to run the CLI as.
        include_partial_messages: Emit ``StreamEvent`` partial updates.
        agents: Custom subagent definitions.
        setting_sources: Which settings files the CLI loads.
        enable_file_checkpointing: Track file changes for ``rewind_files()``.
        output_format: JSON schema for structured output.
        entrypoint: Identifier reported to the CLI via its environment.
        control_request_timeout: Seconds to wait for control responses.
        skip_unknown_message_types: Log and skip unrecognized message types
            instead of failing the message stream.
    """

    allowed_tools: list[str] = Field(default_factory=list)
    disallowed_tools: list[str] = Field(default_factory=list)
    system_prompt: str | SystemPromptPreset | None = None
    append_system_prompt: str | None = None
    mcp_servers: dict[str, McpServerConfig] | str | Path = Field(default_factory=dict)
    permission_mode: PermissionMode | None = None
    continue_conversation: bool = False
    resume: str | None = None
    fork_session: bool = False
    max_turns: int | None = None
    max_budget_usd: float | None = None
    max_thinking_tokens: int | None = None
    model: str | None = None
    fallback_model: str | None = None
    permission_prompt_tool_name: str | None = None
    cwd: str | Path | None = None
    cli_path: str | Path | None = None
    settings: str | None = None
    add_dirs: list[str | Path] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    extra_args: dict[str, str | None] = Field(default_factory=dict)
    max_buffer_size: int | None = Field(default=None, gt=0)
    stderr: Callable[[str], None] | None = None
    can_use_tool: CanUseTool | None = None
    hooks: dict[HookEvent, list[HookMatcher]] | None = None
    user: str | None = None
    include_partial_messages: bool = False
    agents: dict[str, AgentDefinition] | None = None
    setting_sources: list[SettingSource] | None = None
    enable_file_checkpointing: bool = False
    output_format: dict[str, object] | None = None
    entrypoint: str = "sdk-py"
    control_request_timeout: float = Field(default=60.0, gt=0)
    skip_unknown_message_types: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    @field_validator("max_turns")
    @classmethod
    def _validate_max_turns(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_turns must be a positive integer")
        return value

    @field_validator("max_budget_usd")
    @classmethod
    def _validate_max_budget_usd(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError("max_budget_usd must be non-negative")
        return value
