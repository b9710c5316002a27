"""Queue processor and retry coordinator.

Each delivered message moves through:

    received → authenticating → dispatching → replying → acknowledged

A failure while authenticating, dispatching or replying moves it to
retry_scheduled instead: the message is handed back to the queue with a
fixed 30-second delay and the queue's maximum delivery count bounds the
total number of attempts. Messages missing their repository context are
acknowledged straight away, since no retry can repair them.

Messages in a batch are processed concurrently with no ordering guarantee.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence

from src.smolpaws.config import DEFAULT_RETRY_DELAY_SECONDS
from src.smolpaws.github.auth import CredentialBroker
from src.smolpaws.github.client import GitHubClient
from src.smolpaws.metrics import SmolpawsMetrics
from src.smolpaws.queue.base import Delivery, DispatchQueue, QueueError
from src.smolpaws.runner.client import RunnerClient

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "🐾 smolpaws heard you and is waking up. Runner is not configured yet."
)


class MessageState(str, Enum):
    """Processing states of a single queue message.

    Attributes:
        RECEIVED: Delivered by the queue, not yet inspected.
        AUTHENTICATING: Obtaining an installation token.
        DISPATCHING: Waiting on the runner.
        REPLYING: Posting the reply comment.
        ACKNOWLEDGED: Done; the queue will not redeliver it.
        RETRY_SCHEDULED: Failed; the queue will redeliver it after a delay.
    """

    RECEIVED = "received"
    AUTHENTICATING = "authenticating"
    DISPATCHING = "dispatching"
    REPLYING = "replying"
    ACKNOWLEDGED = "acknowledged"
    RETRY_SCHEDULED = "retry_scheduled"


GitHubClientFactory = Callable[[str], GitHubClient]


class QueueProcessor:
    """Consumes queue deliveries and posts the runner's reply as a comment.

    Attributes:
        credential_broker: Issues a fresh installation token per message.
        runner_client: Calls the execution backend.
        github_client_factory: Builds a GitHubClient for a token.
        retry_delay_seconds: Redelivery delay after a failure.
        metrics: Optional metrics sink.
    """

    def __init__(
        self,
        credential_broker: CredentialBroker,
        runner_client: RunnerClient,
        github_client_factory: GitHubClientFactory,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SECONDS,
        metrics: Optional[SmolpawsMetrics] = None,
    ):
        self.credential_broker = credential_broker
        self.runner_client = runner_client
        self.github_client_factory = github_client_factory
        self.retry_delay_seconds = retry_delay_seconds
        self.metrics = metrics

    async def process_batch(self, deliveries: Sequence[Delivery]) -> List[MessageState]:
        """Process every delivery in a batch concurrently.

        Returns:
            The final state of each delivery, in input order.
        """
        return list(
            await asyncio.gather(*(self.process_message(d) for d in deliveries))
        )

    async def process_message(self, delivery: Delivery) -> MessageState:
        """Process one delivery and acknowledge it or schedule a retry.

        Args:
            delivery: The queue delivery.

        Returns:
            ACKNOWLEDGED or RETRY_SCHEDULED.
        """
        start_time = time.monotonic()
        message = delivery.body
        payload = message.payload
        installation_id = payload.installation_id
        repo_full_name = payload.repo_full_name
        issue_number = payload.issue_number

        if not installation_id or not repo_full_name or not issue_number:
            logger.error(
                "Queue message missing repository context",
                extra={"delivery_id": message.delivery_id},
            )
            await self._settle(delivery, {"delivery_id": message.delivery_id})
            self._record("malformed", start_time)
            return MessageState.ACKNOWLEDGED

        log_context = {
            "delivery_id": message.delivery_id,
            "repository": repo_full_name,
            "issue_number": issue_number,
            "attempts": delivery.attempts,
        }
        state = MessageState.RECEIVED

        try:
            state = MessageState.AUTHENTICATING
            token = await self.credential_broker.get_installation_token(installation_id)

            state = MessageState.DISPATCHING
            reply = await self.runner_client.dispatch(message, github_token=token.token)
            reply_body = reply or FALLBACK_REPLY

            state = MessageState.REPLYING
            async with self.github_client_factory(token.token) as github:
                await github.create_comment(repo_full_name, issue_number, reply_body)
        except Exception:
            logger.exception(
                "Queue message processing failed",
                extra={**log_context, "state": state.value},
            )
            await self._settle(delivery, log_context, retry=True)
            self._record(MessageState.RETRY_SCHEDULED.value, start_time)
            return MessageState.RETRY_SCHEDULED

        await self._settle(delivery, log_context)
        logger.info("Queue message acknowledged", extra=log_context)
        self._record(MessageState.ACKNOWLEDGED.value, start_time)
        return MessageState.ACKNOWLEDGED

    async def _settle(self, delivery: Delivery, log_context: dict, retry: bool = False) -> None:
        """Acknowledge or hand back a delivery.

        A failed settle call is logged, not raised: an unsettled delivery
        becomes visible again once its visibility timeout lapses.
        """
        try:
            if retry:
                await delivery.retry(delay_seconds=self.retry_delay_seconds)
            else:
                await delivery.ack()
        except QueueError:
            logger.exception(
                "Failed to settle queue message",
                extra={**log_context, "retry": retry},
            )

    def _record(self, outcome: str, start_time: float) -> None:
        if self.metrics is not None:
            self.metrics.record_message(outcome, time.monotonic() - start_time)


class QueueConsumer:
    """Polls the dispatch queue and feeds batches to the processor.

    Attributes:
        queue: Queue to poll.
        processor: Processor that handles each batch.
        batch_size: Maximum messages per receive call.
        wait_seconds: Long-poll duration per receive call.
        error_backoff_seconds: Pause after a failed receive.
    """

    def __init__(
        self,
        queue: DispatchQueue,
        processor: QueueProcessor,
        batch_size: int = 10,
        wait_seconds: float = 20.0,
        error_backoff_seconds: float = 5.0,
    ):
        self.queue = queue
        self.processor = processor
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self._stopping = asyncio.Event()

    async def run(self) -> None:
        """Poll until stop() is called."""
        logger.info("Queue consumer started")
        while not self._stopping.is_set():
            await self.poll_once()
        logger.info("Queue consumer stopped")

    async def poll_once(self) -> int:
        """Receive one batch and process it.

        Returns:
            Number of deliveries processed.
        """
        try:
            deliveries = await self.queue.receive_batch(
                max_messages=self.batch_size,
                wait_seconds=self.wait_seconds,
            )
        except Exception:
            logger.exception("Failed to receive from dispatch queue")
            await self._sleep(self.error_backoff_seconds)
            return 0

        if deliveries:
            try:
                await self.processor.process_batch(deliveries)
            except Exception:
                # Unsettled deliveries reappear after their visibility timeout
                logger.exception(
                    "Queue batch processing failed",
                    extra={"batch_size": len(deliveries)},
                )
        return len(deliveries)

    def stop(self) -> None:
        self._stopping.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
