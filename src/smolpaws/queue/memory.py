"""In-process dispatch queue.

Used for local development and tests. Messages survive redelivery but not a
process restart. Retried messages become visible again after their delay;
a message delivered ``max_deliveries`` times and retried again is dropped
(the in-memory equivalent of a dead-letter cutoff).
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from src.smolpaws.queue.base import Delivery, DispatchQueue
from src.smolpaws.webhook.models import QueueMessage

logger = logging.getLogger(__name__)


@dataclass(order=True)
class _Entry:
    visible_at: float
    sequence: int
    message: QueueMessage = field(compare=False)
    attempts: int = field(default=0, compare=False)


class InMemoryDelivery(Delivery):
    """Delivery handle for InMemoryDispatchQueue."""

    def __init__(self, queue: "InMemoryDispatchQueue", entry: _Entry):
        super().__init__(body=entry.message, attempts=entry.attempts)
        self._queue = queue
        self._entry = entry
        self.acked = False
        self.retry_delays: List[int] = []

    async def ack(self) -> None:
        self.acked = True
        self._queue._settle(self._entry)

    async def retry(self, delay_seconds: int) -> None:
        self.retry_delays.append(delay_seconds)
        self._queue._requeue(self._entry, delay_seconds)


class InMemoryDispatchQueue(DispatchQueue):
    """Dispatch queue backed by an in-process list.

    Attributes:
        max_deliveries: Maximum number of deliveries per message; 0 means
            unlimited.
    """

    def __init__(self, max_deliveries: int = 5):
        self.max_deliveries = max_deliveries
        self._pending: List[_Entry] = []
        self._in_flight: dict[int, _Entry] = {}
        self._dropped: List[QueueMessage] = []
        self._sequence = 0
        self._available = asyncio.Event()

    async def send(self, message: QueueMessage) -> None:
        self._sequence += 1
        self._pending.append(
            _Entry(visible_at=time.monotonic(), sequence=self._sequence, message=message)
        )
        self._pending.sort()
        self._available.set()

    async def receive_batch(
        self,
        max_messages: int,
        wait_seconds: float,
    ) -> List[Delivery]:
        deadline = time.monotonic() + max(0.0, wait_seconds)
        while True:
            batch = self._take_visible(max_messages)
            if batch:
                return batch

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []

            next_visible = self._next_visible_in()
            timeout = remaining if next_visible is None else min(remaining, next_visible)
            self._available.clear()
            try:
                await asyncio.wait_for(self._available.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    @property
    def pending_count(self) -> int:
        """Messages waiting to be delivered, including delayed ones."""
        return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        """Messages delivered but neither acknowledged nor retried."""
        return len(self._in_flight)

    @property
    def dropped(self) -> List[QueueMessage]:
        """Messages discarded after exhausting their delivery budget."""
        return list(self._dropped)

    def _take_visible(self, max_messages: int) -> List[Delivery]:
        now = time.monotonic()
        batch: List[Delivery] = []
        while self._pending and len(batch) < max_messages:
            if self._pending[0].visible_at > now:
                break
            entry = self._pending.pop(0)
            entry.attempts += 1
            self._in_flight[entry.sequence] = entry
            batch.append(InMemoryDelivery(self, entry))
        return batch

    def _next_visible_in(self) -> Optional[float]:
        if not self._pending:
            return None
        return max(0.0, self._pending[0].visible_at - time.monotonic())

    def _settle(self, entry: _Entry) -> None:
        self._in_flight.pop(entry.sequence, None)

    def _requeue(self, entry: _Entry, delay_seconds: int) -> None:
        self._settle(entry)
        if self.max_deliveries and entry.attempts >= self.max_deliveries:
            logger.error(
                "Dropping message after maximum deliveries",
                extra={
                    "delivery_id": entry.message.delivery_id,
                    "attempts": entry.attempts,
                },
            )
            self._dropped.append(entry.message)
            return
        entry.visible_at = time.monotonic() + delay_seconds
        self._pending.append(entry)
        self._pending.sort()
        self._available.set()
