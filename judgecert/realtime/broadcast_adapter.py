"""
Broadcast Adapter Interface

Abstract base class for delivering certification events.
Delivery only: the database stays the source of truth, and a message that
never arrives must not change any outcome.
"""
import abc
import json
import hashlib
from typing import Dict, Any


class BroadcastAdapter(abc.ABC):
    """
    Abstract base class for broadcast adapters.

    Guarantees:
    - Deterministic message serialization (sort_keys=True)
    - Every message carries an event_hash so consumers can de-duplicate
    """

    @abc.abstractmethod
    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        """
        Publish message to channel.

        Args:
            channel: Channel name (e.g., "category:42")
            message: Message payload (must contain event, category_id, event_hash)
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(self, channel: str):
        """
        Subscribe to channel and yield messages.

        Args:
            channel: Channel name to subscribe to
        Yields:
            Parsed message dict
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        """Close adapter connections."""
        raise NotImplementedError

    def _serialize_message(self, message: Dict[str, Any]) -> str:
        return json.dumps(message, sort_keys=True, separators=(',', ':'), default=str)

    def _compute_message_hash(self, message: Dict[str, Any]) -> str:
        """SHA256 of the serialized message, excluding any existing event_hash."""
        body = {k: v for k, v in message.items() if k != "event_hash"}
        return hashlib.sha256(self._serialize_message(body).encode()).hexdigest()

    def validate_message(self, message: Dict[str, Any]) -> bool:
        """
        Validate message has required fields.

        Raises:
            ValueError: If required fields missing
        """
        required = ["event", "category_id", "event_hash"]
        missing = [f for f in required if f not in message]
        if missing:
            raise ValueError(f"Message missing required fields: {missing}")
        return True
