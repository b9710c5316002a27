"""FastAPI application entry point for the smolpaws dispatcher.

The dispatcher receives GitHub webhooks, enqueues accepted mentions, and
runs the queue consumer that turns each message into a reply comment.

Endpoints:
- ``GET /health``: liveness, plain-text ``ok``
- ``POST /webhooks/github``: webhook ingress
- ``GET /metrics``: Prometheus text format
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from src.smolpaws.config import SmolpawsSettings, get_settings
from src.smolpaws.github.auth import CredentialBroker
from src.smolpaws.github.client import GitHubClient
from src.smolpaws.metrics import SmolpawsMetrics, generate_metrics_output, get_metrics
from src.smolpaws.queue.base import DispatchQueue, QueueError
from src.smolpaws.queue.memory import InMemoryDispatchQueue
from src.smolpaws.queue.processor import QueueConsumer, QueueProcessor
from src.smolpaws.runner.client import RunnerClient
from src.smolpaws.webhook.filters import AllowListPolicy
from src.smolpaws.webhook.handler import WebhookHandler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact; None renders as "<unset>".
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if not value:
        return "<unset>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: SmolpawsSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("smolpaws configuration:")
    logger.info(f"  GitHub API URL: {settings.github_api_url}")
    logger.info(f"  GitHub App ID: {settings.github_app_id or '<unset>'}")
    private_key_state = "<set>" if settings.github_app_private_key else "<unset>"
    logger.info(f"  GitHub App Private Key: {private_key_state}")
    logger.info(
        f"  GitHub Webhook Secret: {_redact_secret(settings.github_webhook_secret)}"
    )
    logger.info(f"  Allowed Actors: {settings.allowed_actors or '<all>'}")
    logger.info(f"  Allowed Owners: {settings.allowed_owners or '<all>'}")
    logger.info(f"  Allowed Repos: {settings.allowed_repos or '<all>'}")
    logger.info(f"  Allowed Installations: {settings.allowed_installations or '<all>'}")
    logger.info(f"  Runner URL: {settings.smolpaws_runner_url or '<unset>'}")
    logger.info(f"  Runner Token: {_redact_secret(settings.smolpaws_runner_token)}")
    logger.info(f"  Queue Backend: {settings.smolpaws_queue_backend}")
    logger.info(f"  Queue URL: {settings.smolpaws_queue_url or '<unset>'}")
    logger.info(f"  Queue Batch Size: {settings.smolpaws_queue_batch_size}")
    logger.info(f"  Retry Delay Seconds: {settings.smolpaws_retry_delay_seconds}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


def build_queue(settings: SmolpawsSettings) -> DispatchQueue:
    """Create the configured dispatch queue backend.

    Raises:
        ValueError: If the SQS backend is selected without a queue URL.
    """
    if settings.smolpaws_queue_backend == "sqs":
        if not settings.smolpaws_queue_url:
            raise ValueError("SMOLPAWS_QUEUE_URL is required for the sqs backend")
        from src.smolpaws.queue.sqs import SqsDispatchQueue

        return SqsDispatchQueue(queue_url=settings.smolpaws_queue_url)
    return InMemoryDispatchQueue(max_deliveries=settings.smolpaws_queue_max_deliveries)


def build_processor(
    settings: SmolpawsSettings,
    metrics: Optional[SmolpawsMetrics] = None,
) -> QueueProcessor:
    """Wire the credential broker, runner client and GitHub client factory."""
    credential_broker = CredentialBroker(
        app_id=settings.github_app_id,
        private_key_pem=settings.github_app_private_key,
        base_url=settings.github_api_url,
    )
    runner_client = RunnerClient(
        url=settings.smolpaws_runner_url,
        token=settings.smolpaws_runner_token,
        timeout=settings.smolpaws_http_timeout_seconds,
    )

    def github_client_factory(token: str) -> GitHubClient:
        return GitHubClient(token=token, base_url=settings.github_api_url)

    return QueueProcessor(
        credential_broker=credential_broker,
        runner_client=runner_client,
        github_client_factory=github_client_factory,
        retry_delay_seconds=settings.smolpaws_retry_delay_seconds,
        metrics=metrics,
    )


def create_app(
    settings: Optional[SmolpawsSettings] = None,
    dispatch_queue: Optional[DispatchQueue] = None,
    processor: Optional[QueueProcessor] = None,
    metrics: Optional[SmolpawsMetrics] = None,
    start_consumer: bool = True,
) -> FastAPI:
    """Build the dispatcher application.

    Args:
        settings: Settings; read from the environment when omitted.
        dispatch_queue: Queue backend; built from settings when omitted.
        processor: Queue processor; built from settings when omitted.
        metrics: Metrics sink; the global instance by default.
        start_consumer: Run the queue consumer as a background task.

    Returns:
        The FastAPI application.
    """
    settings = settings or get_settings()
    metrics = metrics or get_metrics()
    if dispatch_queue is None:
        dispatch_queue = build_queue(settings)
    if processor is None:
        processor = build_processor(settings, metrics)

    webhook_handler = WebhookHandler(
        secret=settings.github_webhook_secret,
        policy=AllowListPolicy.from_settings(settings),
        queue=dispatch_queue,
    )
    consumer = QueueConsumer(
        queue=dispatch_queue,
        processor=processor,
        batch_size=settings.smolpaws_queue_batch_size,
        wait_seconds=settings.smolpaws_queue_wait_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("smolpaws dispatcher starting up...")
        _log_configuration(settings)

        consumer_task = None
        if start_consumer:
            consumer_task = asyncio.create_task(consumer.run())

        logger.info("smolpaws dispatcher started successfully")

        yield

        logger.info("smolpaws dispatcher shutting down...")
        consumer.stop()
        if consumer_task is not None:
            consumer_task.cancel()
            with suppress(asyncio.CancelledError):
                await consumer_task
        await dispatch_queue.close()
        logger.info("smolpaws dispatcher shutdown complete")

    app = FastAPI(
        title="smolpaws",
        description="GitHub App that answers @smolpaws mentions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.queue = dispatch_queue
    app.state.processor = processor
    app.state.consumer = consumer

    @app.get("/health", response_class=PlainTextResponse)
    async def health():
        """Liveness probe endpoint."""
        return "ok"

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return PlainTextResponse(generate_metrics_output(metrics.registry))

    @app.post("/webhooks/github", response_class=PlainTextResponse)
    async def github_webhook(request: Request):
        """GitHub webhook receiver.

        The body is read as raw bytes so the signature is checked against
        exactly what GitHub signed.
        """
        raw_body = await request.body()
        try:
            result = await webhook_handler.handle(raw_body, request.headers)
        except QueueError:
            logger.exception("Failed to enqueue webhook event")
            metrics.record_webhook("rejected")
            return PlainTextResponse("Queue unavailable", status_code=500)

        metrics.record_webhook(result.result)
        return PlainTextResponse(result.message, status_code=result.status_code)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.smolpaws.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
