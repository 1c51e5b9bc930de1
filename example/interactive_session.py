"""Multi-turn session with mid-session control operations.

Prerequisites:
    - Claude Code CLI installed and available in PATH
    - Valid authentication configured for Claude Code CLI
"""

import asyncio

from claudecode_agent import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    TextBlock,
)


async def print_turn(client: ClaudeSDKClient) -> None:
    async for message in client.receive_response():
        if isinstance(message, AssistantMessage):
            for block in message.content:
                if isinstance(block, TextBlock):
                    print(f"Claude: {block.text}")
        elif isinstance(message, ResultMessage):
            print(f"--- turn finished ({message.subtype}) ---")


async def main() -> None:
    """Run two turns, switching model and permission mode in between."""
    options = ClaudeAgentOptions(permission_mode="plan")

    async with ClaudeSDKClient(options) as client:
        info = await client.get_server_info()
        if info is not None:
            print(f"CLI commands available: {len(info.get('commands', []))}")  # type: ignore[arg-type]

        await client.query("Suggest a name for a Python logging helper.")
        await print_turn(client)

        await client.set_model("claude-sonnet-4-5")
        await client.set_permission_mode("default")

        await client.query("Now explain the name in one sentence.")
        await print_turn(client)


if __name__ == "__main__":
    asyncio.run(main())
