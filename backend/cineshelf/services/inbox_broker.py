"""
In-memory pub/sub feeding the live inbox stream (GET /notifications/stream).

One broker lives on app.state for the whole process. It only reaches
subscribers connected to this worker; clients that miss a message catch
up on reconnect through the Last-Event-ID backfill.
"""
import asyncio
import json
from collections import defaultdict
from dataclasses import dataclass
from typing import Any


def format_sse(*, data: Any, event: str = "notification", event_id: str | None = None) -> str:
    """Format one Server-Sent Event frame."""
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=str)
    lines: list[str] = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    if event:
        lines.append(f"event: {event}")
    # Compact JSON keeps the payload on a single data line
    lines.append(f"data: {payload}")
    return "\n".join(lines) + "\n\n"


@dataclass(frozen=True)
class Subscriber:
    user_id: str
    queue: "asyncio.Queue[dict[str, Any]]"


class InboxBroker:
    def __init__(self, max_queue_size: int = 200) -> None:
        self._lock = asyncio.Lock()
        self._subs: defaultdict[str, set[asyncio.Queue]] = defaultdict(set)
        self.max_queue_size = max_queue_size

    async def subscribe(self, user_id: str) -> Subscriber:
        q: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self.max_queue_size)
        async with self._lock:
            self._subs[user_id].add(q)
        return Subscriber(user_id=user_id, queue=q)

    async def unsubscribe(self, sub: Subscriber) -> None:
        async with self._lock:
            queues = self._subs.get(sub.user_id)
            if not queues:
                return
            queues.discard(sub.queue)
            if not queues:
                self._subs.pop(sub.user_id, None)

    async def publish(self, user_id: str, message: dict[str, Any]) -> int:
        """Queue *message* for every stream *user_id* has open. Returns the fan-out."""
        async with self._lock:
            queues = list(self._subs.get(user_id, ()))

        delivered = 0
        for q in queues:
            # Slow consumer: drop its oldest message to make room
            if q.full():
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            try:
                q.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                continue
        return delivered

    async def subscriber_count(self, user_id: str) -> int:
        async with self._lock:
            return len(self._subs.get(user_id, ()))
