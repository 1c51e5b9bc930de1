"""Permission callback and PreToolUse hook.

Prerequisites:
    - Claude Code CLI installed and available in PATH
    - Valid authentication configured for Claude Code CLI
"""

import asyncio

from claudecode_agent import (
    ClaudeAgentOptions,
    ClaudeSDKClient,
    HookContext,
    HookInput,
    HookMatcher,
    PermissionResultAllow,
    PermissionResultDeny,
    ResultMessage,
    ToolPermissionContext,
)


async def can_use_tool(
    tool_name: str, tool_input: dict[str, object], context: ToolPermissionContext
) -> PermissionResultAllow | PermissionResultDeny:
    if tool_name in ("Write", "Edit"):
        return PermissionResultDeny(message="This session is read-only")
    return PermissionResultAllow()


async def block_rm(
    hook_input: HookInput, tool_use_id: str | None, context: HookContext
) -> dict[str, object]:
    command = str(hook_input.get("tool_input", {}).get("command", ""))  # type: ignore[attr-defined]
    if "rm -rf" in command:
        return {
            "hookSpecificOutput": {
                "hook_event_name": "PreToolUse",
                "permission_decision": "deny",
                "permission_decision_reason": "Destructive command blocked",
            }
        }
    return {}


async def main() -> None:
    """Run one turn with a permission callback and a Bash hook."""
    options = ClaudeAgentOptions(
        can_use_tool=can_use_tool,
        hooks={"PreToolUse": [HookMatcher(matcher="Bash", hooks=[block_rm])]},
    )

    async with ClaudeSDKClient(options) as client:
        await client.query("List the files here, then delete the build directory.")
        async for message in client.receive_response():
            if isinstance(message, ResultMessage):
                print(f"Finished: {message.result}")


if __name__ == "__main__":
    asyncio.run(main())
