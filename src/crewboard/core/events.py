from __future__ import annotations

import asyncio
import threading
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any

from crewboard.db.models import DomainEvent

ALL_SESSIONS = 0


def serialize_event(event: DomainEvent) -> dict[str, Any]:
    return {
        "event_id": event.id,
        "kind": event.kind,
        "session_id": event.session_id,
        "template_id": event.template_id,
        "actor_id": event.actor_id,
        "actor_role": event.actor_role,
        "from_status": event.from_status,
        "to_status": event.to_status,
        "payload": event.payload_json,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }


class EventBus:
    """Fan-out of domain events to async subscribers.

    Publishers are plain synchronous service calls that may run on any
    thread; each subscriber queue is fed through its own event loop.
    Channel ``ALL_SESSIONS`` receives every event.
    """

    def __init__(self) -> None:
        self._queues: dict[int, list[tuple[asyncio.AbstractEventLoop, asyncio.Queue[dict[str, Any]]]]] = (
            defaultdict(list)
        )
        self._lock = threading.Lock()

    def publish(self, session_id: int | None, event: dict[str, Any]) -> int:
        channels = [ALL_SESSIONS] if session_id is None else [session_id, ALL_SESSIONS]
        with self._lock:
            targets = [target for channel in channels for target in self._queues.get(channel, [])]

        delivered = 0
        for loop, queue in targets:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(queue.put_nowait, event)
            delivered += 1
        return delivered

    def subscriber_count(self, session_id: int = ALL_SESSIONS) -> int:
        with self._lock:
            return len(self._queues.get(session_id, []))

    async def subscribe(self, session_id: int = ALL_SESSIONS) -> AsyncIterator[dict[str, Any]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        entry = (loop, queue)
        with self._lock:
            self._queues[session_id].append(entry)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            with self._lock:
                if entry in self._queues.get(session_id, []):
                    self._queues[session_id].remove(entry)
