"""Amazon SQS dispatch queue.

SQS gives the delivery semantics smolpaws relies on: at-least-once
delivery, batched receives, per-message redelivery delay through the
visibility timeout, and a maximum receive count enforced by the queue's
redrive policy.

- ack: ``DeleteMessage``
- retry: ``ChangeMessageVisibility`` to the requested delay

boto3 is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from src.smolpaws.queue.base import Delivery, DispatchQueue, QueueError
from src.smolpaws.webhook.models import QueueMessage

logger = logging.getLogger(__name__)

# SQS caps the visibility timeout at 12 hours
MAX_VISIBILITY_TIMEOUT_SECONDS = 43200
MAX_WAIT_SECONDS = 20


class SqsDelivery(Delivery):
    """Delivery handle wrapping one SQS message."""

    def __init__(
        self,
        queue: "SqsDispatchQueue",
        body: QueueMessage,
        receipt_handle: str,
        attempts: int,
    ):
        super().__init__(body=body, attempts=attempts)
        self._queue = queue
        self.receipt_handle = receipt_handle

    async def ack(self) -> None:
        await self._queue._call(
            "delete_message",
            QueueUrl=self._queue.queue_url,
            ReceiptHandle=self.receipt_handle,
        )

    async def retry(self, delay_seconds: int) -> None:
        await self._queue._call(
            "change_message_visibility",
            QueueUrl=self._queue.queue_url,
            ReceiptHandle=self.receipt_handle,
            VisibilityTimeout=min(max(0, delay_seconds), MAX_VISIBILITY_TIMEOUT_SECONDS),
        )


class SqsDispatchQueue(DispatchQueue):
    """Dispatch queue backed by an SQS queue.

    Attributes:
        queue_url: URL of the SQS queue.
    """

    def __init__(self, queue_url: str, sqs_client: Optional[Any] = None):
        """Initialize the queue.

        Args:
            queue_url: URL of the SQS queue.
            sqs_client: Optional boto3 SQS client (for testing).
        """
        self.queue_url = queue_url
        self._sqs = sqs_client or boto3.client("sqs")

    async def send(self, message: QueueMessage) -> None:
        await self._call(
            "send_message",
            QueueUrl=self.queue_url,
            MessageBody=message.to_json(),
        )

    async def receive_batch(
        self,
        max_messages: int,
        wait_seconds: float,
    ) -> List[Delivery]:
        response = await self._call(
            "receive_message",
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max(1, min(10, max_messages)),
            WaitTimeSeconds=int(max(0, min(MAX_WAIT_SECONDS, wait_seconds))),
            AttributeNames=["ApproximateReceiveCount"],
        )

        deliveries: List[Delivery] = []
        for raw in response.get("Messages", []):
            receipt_handle = raw["ReceiptHandle"]
            try:
                body = QueueMessage.from_json(raw["Body"])
            except ValidationError:
                # A body that cannot be parsed will never parse on retry.
                logger.error(
                    "Discarding unparsable queue message",
                    extra={"message_id": raw.get("MessageId")},
                )
                await self._call(
                    "delete_message",
                    QueueUrl=self.queue_url,
                    ReceiptHandle=receipt_handle,
                )
                continue

            attempts = int(
                raw.get("Attributes", {}).get("ApproximateReceiveCount", "1")
            )
            deliveries.append(
                SqsDelivery(self, body, receipt_handle, attempts)
            )
        return deliveries

    async def _call(self, operation: str, **kwargs: Any) -> Any:
        method = getattr(self._sqs, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"SQS {operation} failed: {exc}") from exc
