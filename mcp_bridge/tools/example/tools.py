"""Example provider tools - demonstrates the tool implementation pattern."""

from typing import Any, Callable

from mcp_bridge.mcp.context import current_invocation
from mcp_bridge.mcp.models import ToolDescriptor, ToolFailure, ToolParameter, ToolSuccess
from mcp_bridge.mcp.registry import ToolRegistry
from mcp_bridge.tools.example.client import ExampleClient


def make_ping_handler(client: ExampleClient) -> Callable[[dict[str, Any]], Any]:
    async def ping_handler(arguments: dict[str, Any]) -> ToolSuccess:
        """Handle the ping tool call."""
        result = await client.ping()
        return ToolSuccess(value="pong" if result["pong"] else "no pong")

    return ping_handler


def make_echo_handler(client: ExampleClient) -> Callable[[dict[str, Any]], Any]:
    async def echo_handler(arguments: dict[str, Any]) -> ToolSuccess:
        """Handle the echo tool call."""
        result = await client.echo(arguments["text"])
        return ToolSuccess(value=result["echo"])

    return echo_handler


def make_sleep_handler(client: ExampleClient) -> Callable[[dict[str, Any]], Any]:
    async def sleep_handler(arguments: dict[str, Any]) -> ToolSuccess | ToolFailure:
        """Sleep, streaming elapsed seconds as partial results where the transport allows."""
        seconds = arguments["seconds"]
        if seconds < 0:
            return ToolFailure.from_message(
                "seconds must not be negative", {"seconds": seconds}
            )

        context = current_invocation()

        async def on_tick(elapsed: float) -> None:
            if context is not None and arguments["progress"]:
                await context.emit_partial({"elapsed": elapsed})

        result = await client.sleep(seconds, on_tick=on_tick)
        return ToolSuccess(value=result)

    return sleep_handler


def make_add_handler(client: ExampleClient) -> Callable[[dict[str, Any]], Any]:
    def add_handler(arguments: dict[str, Any]) -> float:
        """Handle the add tool call (synchronous)."""
        return client.add(arguments["a"], arguments["b"])

    return add_handler


def build_tools(client: ExampleClient) -> list[ToolDescriptor]:
    """Descriptors for every example tool, bound to one client."""
    return [
        # Tool: ping
        ToolDescriptor(
            name="ping",
            description="Returns a simple pong response. Use this to test if the MCP server is working.",
            returns="string",
            handler=make_ping_handler(client),
        ),
        # Tool: echo
        ToolDescriptor(
            name="echo",
            description="Echoes back the provided text. Use this to test tool argument passing.",
            parameters=(
                ToolParameter(name="text", type="string", description="The text to echo back"),
            ),
            returns="string",
            handler=make_echo_handler(client),
        ),
        # Tool: sleep
        ToolDescriptor(
            name="sleep",
            description="Waits for the given number of seconds, then reports how long it slept.",
            parameters=(
                ToolParameter(name="seconds", type="number", description="How long to wait"),
                ToolParameter(
                    name="progress",
                    type="boolean",
                    required=False,
                    default=False,
                    description="Stream elapsed seconds as partial results",
                ),
            ),
            returns="object",
            handler=make_sleep_handler(client),
        ),
        # Tool: add
        ToolDescriptor(
            name="add",
            description="Adds two numbers.",
            parameters=(
                ToolParameter(name="a", type="number"),
                ToolParameter(name="b", type="number"),
            ),
            returns="number",
            handler=make_add_handler(client),
        ),
    ]


def register_tools(registry: ToolRegistry, config: dict[str, Any] | None = None) -> None:
    """Register all example provider tools with the registry."""
    config = config or {}
    client = ExampleClient(max_sleep_seconds=float(config.get("max_sleep_seconds", 60)))
    for descriptor in build_tools(client):
        registry.register(descriptor)
