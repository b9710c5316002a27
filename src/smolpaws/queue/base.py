"""Dispatch queue interface.

The dispatch queue carries accepted webhook events from the ingress to the
queue processor with at-least-once delivery. A consumer receives messages in
batches; each delivery is either acknowledged (removed for good) or
scheduled for redelivery after a delay. The backend enforces its own
maximum delivery count.
"""

from abc import ABC, abstractmethod
from typing import List

from src.smolpaws.webhook.models import QueueMessage


class QueueError(Exception):
    """Raised when the queue backend cannot send or receive messages."""

    pass


class Delivery(ABC):
    """One delivery of a queue message to a consumer.

    Attributes:
        body: The delivered message.
        attempts: How many times this message has been delivered,
            including this delivery (starts at 1).
    """

    def __init__(self, body: QueueMessage, attempts: int = 1):
        self.body = body
        self.attempts = attempts

    @abstractmethod
    async def ack(self) -> None:
        """Acknowledge the message so it is never delivered again."""
        ...

    @abstractmethod
    async def retry(self, delay_seconds: int) -> None:
        """Make the message visible again after ``delay_seconds``."""
        ...


class DispatchQueue(ABC):
    """Abstract durable message channel between ingress and processing."""

    @abstractmethod
    async def send(self, message: QueueMessage) -> None:
        """Enqueue a message.

        Raises:
            QueueError: If the backend rejects the message.
        """
        ...

    @abstractmethod
    async def receive_batch(
        self,
        max_messages: int,
        wait_seconds: float,
    ) -> List[Delivery]:
        """Receive up to ``max_messages`` deliveries.

        Waits up to ``wait_seconds`` for at least one message and returns
        an empty list if none arrives.
        """
        ...

    async def close(self) -> None:
        """Release backend resources. The default implementation does nothing."""
        pass
