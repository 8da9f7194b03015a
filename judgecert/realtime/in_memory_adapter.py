"""
In-Memory Broadcast Adapter

Local-only broadcast implementation using asyncio.Queue.
Default adapter for single-process deployments and tests.
"""
import asyncio
import json
from typing import Dict, Any, Set

from .broadcast_adapter import BroadcastAdapter


class InMemoryAdapter(BroadcastAdapter):
    """In-memory broadcast adapter backed by one bounded queue per subscriber."""

    def __init__(self, max_queue_size: int = 100):
        self._channels: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        self.validate_message(message)
        serialized = self._serialize_message(message)

        async with self._lock:
            queues = list(self._channels.get(channel, ()))
        for queue in queues:
            try:
                queue.put_nowait(serialized)
            except asyncio.QueueFull:
                # Slow subscriber: drop rather than block the publisher
                pass

    async def subscribe(self, channel: str):
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)

        async with self._lock:
            self._channels.setdefault(channel, set()).add(queue)

        try:
            while True:
                serialized = await queue.get()
                if serialized is None:
                    return
                yield json.loads(serialized)
        finally:
            async with self._lock:
                if channel in self._channels:
                    self._channels[channel].discard(queue)

    def get_subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def close(self) -> None:
        """Close all channels."""
        async with self._lock:
            for queues in self._channels.values():
                for queue in queues:
                    try:
                        queue.put_nowait(None)  # Signal shutdown
                    except asyncio.QueueFull:
                        pass
            self._channels.clear()
