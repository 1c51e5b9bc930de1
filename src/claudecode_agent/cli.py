"""Claude Code CLI discovery and command line construction."""

from __future__ import annotations

import json
import os
import shutil
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from claudecode_agent.exceptions import CLINotFoundError
from claudecode_agent.types import ClaudeAgentOptions

# Constants
CLI_EXECUTABLE = "claude"
MAX_PROMPT_LENGTH = 1_000_000  # 1MB limit
ENTRYPOINT_ENV_VAR = "CLAUDE_CODE_ENTRYPOINT"
SDK_VERSION_ENV_VAR = "CLAUDE_AGENT_SDK_VERSION"
FILE_CHECKPOINTING_ENV_VAR = "CLAUDE_CODE_ENABLE_SDK_FILE_CHECKPOINTING"


def _package_version() -> str:
    try:
        return version("claudecode-agent")
    except PackageNotFoundError:
        return "0.0.0"


def _install_locations() -> list[Path]:
    home = Path.home()
    return [
        home / ".npm-global" / "bin" / CLI_EXECUTABLE,
        Path("/usr/local/bin") / CLI_EXECUTABLE,
        home / ".local" / "bin" / CLI_EXECUTABLE,
        home / "node_modules" / ".bin" / CLI_EXECUTABLE,
        home / ".yarn" / "bin" / CLI_EXECUTABLE,
        home / ".claude" / "local" / CLI_EXECUTABLE,
    ]


def find_cli(cli_path: str | Path | None = None) -> str:
    """Find the claude CLI executable.

    Args:
        cli_path: Explicit path. Used as-is when given.

    Returns:
        Path to the executable.

    Raises:
        CLINotFoundError: If no executable can be found.
    """
    if cli_path is not None:
        return str(cli_path)

    found = shutil.which(CLI_EXECUTABLE)
    if found is not None:
        return found

    for location in _install_locations():
        if location.exists() and location.is_file():
            return str(location)

    raise CLINotFoundError(
        "claude CLI not found. "
        "Install it with: npm install -g @anthropic-ai/claude-code\n"
        "Or point to it explicitly: ClaudeAgentOptions(cli_path='/path/to/claude')"
    )


def validate_prompt(prompt: str) -> None:
    """Reject empty or oversized prompts.

    Raises:
        ValueError: If prompt is empty or exceeds maximum length.
    """
    if not prompt or not prompt.strip():
        raise ValueError("Prompt cannot be empty")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValueError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters"
        )


def _mcp_config_argument(options: ClaudeAgentOptions) -> str | None:
    servers = options.mcp_servers
    if isinstance(servers, Path):
        return str(servers)
    if isinstance(servers, str):
        return servers or None
    if not servers:
        return None

    # In-process server instances stay in this process; the CLI only
    # needs to know they exist.
    serializable: dict[str, object] = {}
    for name, config in servers.items():
        if config.get("type") == "sdk":
            serializable[name] = {"type": "sdk", "name": name}
        else:
            serializable[name] = dict(config)
    return json.dumps({"mcpServers": serializable})


def build_command(
    cli_path: str,
    options: ClaudeAgentOptions,
    *,
    prompt: str | None = None,
) -> list[str]:
    """Build the CLI command with arguments.

    Args:
        cli_path: Path to the CLI executable.
        options: Session options.
        prompt: One-shot prompt. ``None`` selects streaming mode, where user
            turns are written to stdin as JSON frames.

    Returns:
        List of command arguments.

    Raises:
        ValueError: If a one-shot prompt is empty or too long.
    """
    if prompt is not None:
        validate_prompt(prompt)

    cmd = [cli_path, "--output-format", "stream-json", "--verbose"]

    if options.system_prompt is None:
        cmd.extend(["--system-prompt", ""])
    elif isinstance(options.system_prompt, str):
        cmd.extend(["--system-prompt", options.system_prompt])
    elif "append" in options.system_prompt:
        cmd.extend(["--append-system-prompt", options.system_prompt["append"]])

    if options.append_system_prompt:
        cmd.extend(["--append-system-prompt", options.append_system_prompt])

    if options.allowed_tools:
        cmd.extend(["--allowedTools", ",".join(options.allowed_tools)])

    if options.disallowed_tools:
        cmd.extend(["--disallowedTools", ",".join(options.disallowed_tools)])

    if options.max_turns is not None:
        cmd.extend(["--max-turns", str(options.max_turns)])

    if options.max_budget_usd is not None:
        cmd.extend(["--max-budget-usd", str(options.max_budget_usd)])

    if options.max_thinking_tokens is not None:
        cmd.extend(["--max-thinking-tokens", str(options.max_thinking_tokens)])

    if options.model:
        cmd.extend(["--model", options.model])

    if options.fallback_model:
        cmd.extend(["--fallback-model", options.fallback_model])

    if options.can_use_tool is not None:
        cmd.extend(["--permission-prompt-tool", "stdio"])
    elif options.permission_prompt_tool_name:
        cmd.extend(["--permission-prompt-tool", options.permission_prompt_tool_name])

    if options.permission_mode:
        cmd.extend(["--permission-mode", options.permission_mode])

    if options.continue_conversation:
        cmd.append("--continue")

    if options.resume:
        cmd.extend(["--resume", options.resume])

    if options.fork_session:
        cmd.append("--fork-session")

    if options.settings:
        cmd.extend(["--settings", options.settings])

    for directory in options.add_dirs:
        cmd.extend(["--add-dir", str(directory)])

    mcp_config = _mcp_config_argument(options)
    if mcp_config is not None:
        cmd.extend(["--mcp-config", mcp_config])

    if options.include_partial_messages:
        cmd.append("--include-partial-messages")

    if options.agents:
        agents = {
            name: agent.model_dump(exclude_none=True)
            for name, agent in options.agents.items()
        }
        cmd.extend(["--agents", json.dumps(agents)])

    if options.setting_sources is not None:
        cmd.extend(["--setting-sources", ",".join(options.setting_sources)])

    if options.output_format is not None:
        schema = options.output_format.get("schema", options.output_format)
        cmd.extend(["--json-schema", json.dumps(schema)])

    for flag, value in options.extra_args.items():
        if value is None:
            cmd.append(f"--{flag}")
        else:
            cmd.extend([f"--{flag}", value])

    if prompt is None:
        cmd.extend(["--input-format", "stream-json"])
    else:
        cmd.extend(["--print", "--", prompt])

    return cmd


def build_environment(options: ClaudeAgentOptions) -> dict[str, str]:
    """Build the CLI process environment.

    The host process environment is read but never modified.
    """
    env = {
        **os.environ,
        **options.env,
        ENTRYPOINT_ENV_VAR: options.entrypoint,
        SDK_VERSION_ENV_VAR: _package_version(),
    }
    if options.cwd is not None:
        env["PWD"] = str(options.cwd)
    if options.enable_file_checkpointing:
        env[FILE_CHECKPOINTING_ENV_VAR] = "true"
    return env
