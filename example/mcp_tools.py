"""In-process MCP tools served over the control channel.

The tools run inside this Python process; the CLI reaches them through
``mcp_message`` control requests instead of spawning a separate server.

Prerequisites:
    - Claude Code CLI installed and available in PATH
    - Valid authentication configured for Claude Code CLI
"""

import asyncio

from claudecode_agent import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    TextBlock,
    create_sdk_mcp_server,
    tool,
)


@tool("add", "Add two numbers", {"a": float, "b": float})
async def add(args: dict[str, float]) -> dict[str, object]:
    return {"content": [{"type": "text", "text": str(args["a"] + args["b"])}]}


@tool("divide", "Divide a by b", {"a": float, "b": float})
async def divide(args: dict[str, float]) -> dict[str, object]:
    if args["b"] == 0:
        return {"content": [{"type": "text", "text": "Division by zero"}], "isError": True}
    return {"content": [{"type": "text", "text": str(args["a"] / args["b"])}]}


async def main() -> None:
    """Let Claude use the calculator tools."""
    calculator = create_sdk_mcp_server("calc", version="1.0.0", tools=[add, divide])
    options = ClaudeAgentOptions(
        mcp_servers={"calc": calculator},
        allowed_tools=["mcp__calc__add", "mcp__calc__divide"],
    )

    async with ClaudeSDKClient(options) as client:
        await client.query("What is (15 + 27) / 6? Use the calc tools.")
        async for message in client.receive_response():
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        print(block.text)


if __name__ == "__main__":
    asyncio.run(main())
