from __future__ import annotations

from datetime import datetime, timezone
import json
import logging

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


EARNING_POSTED = "earning.posted"
PLACEHOLDER_MATERIALIZED = "placeholder.materialized"
PLACEHOLDER_RESOLVED = "placeholder.resolved"
WITHDRAWAL_COMPLETED = "withdrawal.completed"
WITHDRAWAL_REFUNDED = "withdrawal.refunded"
WITHDRAWAL_PENDING_RECONCILIATION = "withdrawal.pending_reconciliation"


class EventPublisher:
    """Pushes ledger events onto a Redis list for downstream workers.

    Publication happens after the owning transaction has committed and is
    best effort: a missing or failing Redis never affects ledger state.
    """

    def __init__(self, redis: Redis | None, queue_key: str) -> None:
        self._redis = redis
        self._queue_key = queue_key

    async def publish(self, event_type: str, payload: dict) -> None:
        if self._redis is None:
            logger.debug("Dropping %s event, no Redis configured", event_type)
            return

        message = json.dumps(
            {
                "type": event_type,
                "published_at": datetime.now(timezone.utc).isoformat(),
                "payload": payload,
            },
            separators=(",", ":"),
            sort_keys=True,
        )

        try:
            await self._redis.rpush(self._queue_key, message)
        except Exception as exc:
            logger.warning("Failed to publish %s event: %s", event_type, exc)

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
