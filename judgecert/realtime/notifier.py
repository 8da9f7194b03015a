"""
Certification change notifications.

Publishes ``certification.changed`` with the category and its new stage after
a transition has been committed. Delivery is best effort: failures are logged
and never reach the caller, whose transaction has already succeeded.
"""
import logging
from datetime import datetime
from typing import Optional

from judgecert.config.feature_flags import FeatureFlags
from judgecert.realtime.broadcast_adapter import BroadcastAdapter
from judgecert.realtime.in_memory_adapter import InMemoryAdapter

logger = logging.getLogger(__name__)

CERTIFICATION_CHANGED = "certification.changed"


def category_channel(category_id: int) -> str:
    return f"category:{category_id}"


class CertificationNotifier:
    """Fire-and-forget emitter for certification state changes."""

    def __init__(self, adapter: Optional[BroadcastAdapter] = None):
        self.adapter = adapter or InMemoryAdapter()

    async def certification_changed(self, category_id: int, new_stage: str) -> None:
        if not FeatureFlags.FEATURE_CERTIFICATION_EVENTS:
            return

        message = {
            "event": CERTIFICATION_CHANGED,
            "category_id": category_id,
            "new_stage": new_stage,
            "emitted_at": datetime.utcnow().isoformat(),
        }
        message["event_hash"] = self.adapter._compute_message_hash(message)

        try:
            await self.adapter.publish(category_channel(category_id), message)
        except Exception as e:
            logger.warning(
                f"Failed to publish {CERTIFICATION_CHANGED} for category {category_id}: {e}",
                extra={"category_id": category_id, "new_stage": new_stage}
            )


_notifier: Optional[CertificationNotifier] = None


def get_notifier() -> CertificationNotifier:
    """Process-wide notifier, created on first use."""
    global _notifier
    if _notifier is None:
        _notifier = CertificationNotifier()
    return _notifier


def set_notifier(notifier: Optional[CertificationNotifier]) -> None:
    """Swap the process-wide notifier (e.g. for a Redis-backed adapter)."""
    global _notifier
    _notifier = notifier
