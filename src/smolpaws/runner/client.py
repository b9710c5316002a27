"""HTTP client the queue processor uses to call the runner."""

import logging
from typing import Optional

import httpx

from src.smolpaws.webhook.models import QueueMessage, RunnerRequest

logger = logging.getLogger(__name__)


class RunnerError(Exception):
    """Raised when the runner call fails or returns a non-success status.

    Attributes:
        status_code: HTTP status from the runner, if a response arrived.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RunnerClient:
    """Posts queue messages to the runner and returns its reply.

    Attributes:
        url: Runner endpoint (``SMOLPAWS_RUNNER_URL``); None disables the call.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        url: Optional[str],
        token: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self._token = token
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def dispatch(
        self,
        message: QueueMessage,
        github_token: Optional[str] = None,
    ) -> Optional[str]:
        """Send a message to the runner.

        Args:
            message: The queue message to process.
            github_token: Installation token forwarded for repository access.

        Returns:
            The reply text, or None when no runner is configured or the
            runner returned no reply.

        Raises:
            RunnerError: On transport failure or a non-success response.
        """
        if not self.url:
            return None

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        body = RunnerRequest.from_message(message, github_token=github_token)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.url, headers=headers, content=body.to_json()
                )
        except httpx.HTTPError as exc:
            raise RunnerError(f"Runner request failed: {exc}") from exc

        if not response.is_success:
            raise RunnerError(
                f"Runner error: {response.text[:500]}",
                status_code=response.status_code,
            )

        data = response.json()
        reply = data.get("reply") if isinstance(data, dict) else None
        if not isinstance(reply, str) or not reply:
            logger.info(
                "Runner returned no reply",
                extra={"delivery_id": message.delivery_id},
            )
            return None
        return reply
