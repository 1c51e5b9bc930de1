"""Basic usage example for claudecode-agent.

Prerequisites:
    - Claude Code CLI installed and available in PATH
    - Valid authentication configured for Claude Code CLI
"""

import asyncio
import sys

from claudecode_agent import (
    AssistantMessage,
    ClaudeAgentOptions,
    CLINotFoundError,
    ProcessError,
    ResultMessage,
    TextBlock,
    query,
)


async def main() -> None:
    """Ask a single question and print the answer."""
    options = ClaudeAgentOptions(
        system_prompt="You are a concise assistant.",
        allowed_tools=["Read", "Glob", "Grep"],
        max_turns=1,
    )

    async for message in query(prompt="What is 1 + 1?", options=options):
        if isinstance(message, AssistantMessage):
            for block in message.content:
                if isinstance(block, TextBlock):
                    print(block.text)
        elif isinstance(message, ResultMessage):
            print()
            print("=== Usage ===")
            print(f"Turns: {message.num_turns}")
            if message.total_cost_usd is not None:
                print(f"Cost: ${message.total_cost_usd:.4f}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except CLINotFoundError as e:
        print(f"CLI not found: {e}", file=sys.stderr)
        sys.exit(1)
    except ProcessError as e:
        print(f"CLI execution failed (exit code {e.exit_code}): {e}", file=sys.stderr)
        sys.exit(1)
