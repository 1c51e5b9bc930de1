#!/usr/bin/env python3
"""Example: serving pydantic-ai function tools to Claude.

Tools defined with pydantic-ai's ``Tool`` are converted into an in-process
MCP server, so the same functions can be shared between a pydantic-ai agent
and a Claude Code session.

Requirements:
    - Claude Code CLI installed and authenticated
    - claudecode-agent installed

Usage:
    python example/function_tools.py
"""

import asyncio

from pydantic_ai.tools import Tool

from claudecode_agent import (
    AssistantMessage,
    ClaudeAgentOptions,
    TextBlock,
    convert_tools_to_mcp_server,
    query,
)


def get_weather(city: str) -> str:
    """Get the current weather for a city.

    Args:
        city: Name of the city to get weather for.
    """
    weather_data = {
        "Tokyo": "Sunny, 22°C",
        "New York": "Cloudy, 15°C",
        "London": "Rainy, 12°C",
    }
    return weather_data.get(city, f"Weather data not available for {city}")


async def main() -> None:
    """Ask about the weather through the converted tool."""
    server = convert_tools_to_mcp_server([Tool(get_weather)], server_name="weather")
    options = ClaudeAgentOptions(
        mcp_servers={"weather": server},
        allowed_tools=["mcp__weather__get_weather"],
        max_turns=3,
    )

    async def prompt():  # type: ignore[no-untyped-def]
        yield {
            "type": "user",
            "message": {"role": "user", "content": "What's the weather in Tokyo?"},
        }

    async for message in query(prompt=prompt(), options=options):
        if isinstance(message, AssistantMessage):
            for block in message.content:
                if isinstance(block, TextBlock):
                    print(block.text)


if __name__ == "__main__":
    asyncio.run(main())
