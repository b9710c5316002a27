"""GitHub webhook ingress for smolpaws.

This module provides the WebhookHandler class, which turns a raw webhook
delivery into either a queued QueueMessage or a neutral response. Checks run
in this order:

1. webhook secret configured, else 500
2. ``X-Hub-Signature-256`` present and valid, else 401
3. ``X-GitHub-Event`` is a comment event, else 200 "Ignored"
4. body parses as JSON, else 400
5. action, mention and allow-list pass, else 200 "Ignored"
6. installation id, repository and issue number present, else 400
7. enqueue, 202 "Queued"

The signature is verified on the raw bytes before anything is parsed.

GitHub Webhook Payload Structure (issue_comment event):
{
  "action": "created",
  "comment": {"id": 1, "body": "@smolpaws please help"},
  "issue": {"number": 7},
  "repository": {"full_name": "org/repo", "owner": {"login": "org"}},
  "sender": {"login": "alice"},
  "installation": {"id": 42}
}
"""

import json
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from pydantic import ValidationError

from src.smolpaws.queue.base import DispatchQueue
from src.smolpaws.webhook.filters import AllowListPolicy, classify_event, is_in_scope
from src.smolpaws.webhook.models import GithubEventPayload, QueueMessage
from src.smolpaws.webhook.signature import verify_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"


@dataclass(frozen=True)
class WebhookResponse:
    """Outcome of handling one delivery.

    Attributes:
        status_code: HTTP status to return to GitHub.
        message: Short plain-text body.
        message_queued: The message that was enqueued, if any.
    """

    status_code: int
    message: str
    message_queued: Optional[QueueMessage] = None

    @property
    def result(self) -> str:
        """Label used for metrics."""
        if self.status_code == 202:
            return "queued"
        if self.status_code == 200:
            return "ignored"
        return "rejected"


IGNORED = WebhookResponse(200, "Ignored")


class WebhookHandler:
    """Verifies, filters and enqueues GitHub webhook deliveries.

    Attributes:
        secret: The GitHub webhook secret; None when not configured.
        policy: Allow-list applied to in-scope events.
        queue: Dispatch queue that receives accepted events.
    """

    def __init__(
        self,
        secret: Optional[str],
        policy: AllowListPolicy,
        queue: DispatchQueue,
    ) -> None:
        self.secret = secret
        self.policy = policy
        self.queue = queue

    async def handle(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> WebhookResponse:
        """Handle one webhook delivery.

        Args:
            raw_body: The unparsed request body.
            headers: Request headers; lookups are case-insensitive.

        Returns:
            WebhookResponse describing the HTTP answer.

        Raises:
            QueueError: If the queue rejects an accepted message. The caller
                answers 5xx so GitHub records a failed delivery.
        """
        lowered = {key.lower(): value for key, value in headers.items()}

        if not self.secret:
            logger.error("Webhook secret not configured")
            return WebhookResponse(500, "Webhook secret not configured")

        signature = lowered.get(SIGNATURE_HEADER)
        if not signature:
            return WebhookResponse(401, "Missing signature")

        if not verify_signature(raw_body, self.secret, signature):
            logger.warning(
                "Rejected delivery with invalid signature",
                extra={"delivery_id": lowered.get(DELIVERY_HEADER)},
            )
            return WebhookResponse(401, "Invalid signature")

        event = classify_event(lowered.get(EVENT_HEADER))
        if event is None:
            return IGNORED

        payload = self._parse_payload(raw_body)
        if payload is None:
            return WebhookResponse(400, "Invalid payload")

        if not is_in_scope(payload, self.policy):
            return IGNORED

        if not payload.has_repository_context():
            logger.warning(
                "Delivery missing repository context",
                extra={"delivery_id": lowered.get(DELIVERY_HEADER)},
            )
            return WebhookResponse(400, "Missing repository context")

        message = QueueMessage(
            event=event,
            payload=payload,
            delivery_id=lowered.get(DELIVERY_HEADER) or None,
        )
        await self.queue.send(message)

        logger.info(
            "Queued webhook event",
            extra={
                "event": event.value,
                "delivery_id": message.delivery_id,
                "repository": payload.repo_full_name,
                "issue_number": payload.issue_number,
            },
        )
        return WebhookResponse(202, "Queued", message_queued=message)

    def _parse_payload(self, raw_body: bytes) -> Optional[GithubEventPayload]:
        """Parse the raw body into a GithubEventPayload.

        Returns:
            The payload, or None if the body is not a JSON object of the
            expected shape.
        """
        try:
            data = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Invalid JSON in webhook body")
            return None

        if not isinstance(data, dict):
            logger.warning("Invalid payload: expected object, got %s", type(data).__name__)
            return None

        try:
            return GithubEventPayload.model_validate(data)
        except ValidationError as exc:
            logger.warning("Webhook payload failed validation: %s", exc.error_count())
            return None
