"""Example provider client - no external API calls needed."""

# A stand-in for the upstream service a real provider would wrap. It is
# built once at startup and handed to the tool handlers.

import asyncio
import math
from typing import Awaitable, Callable


class ExampleClient:
    """Client for the example provider (no external calls)."""

    def __init__(self, max_sleep_seconds: float = 60.0):
        self.max_sleep_seconds = max_sleep_seconds

    async def ping(self) -> dict:
        """Return a pong response."""
        return {"pong": True}

    async def echo(self, text: str) -> dict:
        """Echo back a message."""
        return {"echo": text}

    async def sleep(
        self,
        seconds: float,
        on_tick: Callable[[float], Awaitable[object]] | None = None,
    ) -> dict:
        """Wait for ``seconds``, reporting elapsed whole seconds along the way."""
        if seconds > self.max_sleep_seconds:
            raise ValueError(
                f"seconds must be at most {self.max_sleep_seconds:g}, got {seconds:g}"
            )
        elapsed = 0.0
        while elapsed < seconds:
            step = min(1.0, seconds - elapsed)
            await asyncio.sleep(step)
            elapsed += step
            if on_tick is not None and not math.isclose(elapsed, seconds):
                await on_tick(elapsed)
        return {"slept": seconds}

    def add(self, a: float, b: float) -> float:
        """Blocking arithmetic, served from a worker thread."""
        return a + b
