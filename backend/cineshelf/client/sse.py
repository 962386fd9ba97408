"""
Minimal Server-Sent Events reader over an httpx streaming response.
"""
from dataclasses import dataclass
from typing import AsyncIterator

import httpx


@dataclass
class SSEEvent:
    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[SSEEvent]:
    """Yield one SSEEvent per dispatched frame. Comment lines are skipped."""
    event = SSEEvent()
    data_lines: list[str] = []
    touched = False

    async for line in response.aiter_lines():
        if not line:
            if touched:
                event.data = "\n".join(data_lines)
                yield event
            event = SSEEvent()
            data_lines = []
            touched = False
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            data_lines.append(value)
            touched = True
        elif field == "event":
            event.event = value
            touched = True
        elif field == "id":
            event.id = value
            touched = True
        elif field == "retry" and value.isdigit():
            event.retry = int(value)
            touched = True

    if touched:
        event.data = "\n".join(data_lines)
        yield event
