"""Unit tests for the dispatcher application endpoints."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from conftest import make_payload_dict
from src.smolpaws.config import SmolpawsSettings
from src.smolpaws.main import _redact_secret, build_queue, create_app
from src.smolpaws.metrics import SmolpawsMetrics
from src.smolpaws.queue.base import QueueError
from src.smolpaws.queue.memory import InMemoryDispatchQueue
from src.smolpaws.webhook.signature import compute_signature

SECRET = "hook-secret"


def _settings(**overrides) -> SmolpawsSettings:
    return SmolpawsSettings(_env_file=None, github_webhook_secret=SECRET, **overrides)


def _signed(body: bytes, event: str = "issue_comment"):
    return {
        "X-Hub-Signature-256": compute_signature(body, SECRET),
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "abc-123",
        "Content-Type": "application/json",
    }


@pytest.fixture
def metrics():
    return SmolpawsMetrics(registry=CollectorRegistry())


@pytest.fixture
def queue():
    return InMemoryDispatchQueue()


@pytest.fixture
def client(queue, metrics):
    app = create_app(
        settings=_settings(),
        dispatch_queue=queue,
        processor=MagicMock(),
        metrics=metrics,
        start_consumer=False,
    )
    with TestClient(app) as client:
        yield client


class TestHelpers:
    def test_redact_secret(self):
        assert _redact_secret(None) == "<unset>"
        assert _redact_secret("abc") == "***"
        assert _redact_secret("abcdefgh") == "abcd****"

    def test_build_queue_memory(self):
        queue = build_queue(_settings(smolpaws_queue_max_deliveries=3))
        assert isinstance(queue, InMemoryDispatchQueue)
        assert queue.max_deliveries == 3

    def test_sqs_requires_url(self):
        with pytest.raises(ValueError):
            build_queue(_settings(smolpaws_queue_backend="sqs"))


class TestDispatcherEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.text == "ok"

    def test_mention_is_queued(self, client, queue, metrics):
        body = json.dumps(make_payload_dict()).encode("utf-8")

        response = client.post("/webhooks/github", content=body, headers=_signed(body))

        assert response.status_code == 202
        assert response.text == "Queued"
        assert queue.pending_count == 1
        assert metrics.registry.get_sample_value(
            "smolpaws_webhook_deliveries_total", {"result": "queued"}
        ) == 1.0

    def test_bad_signature(self, client, queue):
        body = json.dumps(make_payload_dict()).encode("utf-8")
        headers = _signed(body)
        headers["X-Hub-Signature-256"] = "sha256=" + "0" * 64

        response = client.post("/webhooks/github", content=body, headers=headers)

        assert response.status_code == 401
        assert queue.pending_count == 0

    def test_other_event_ignored(self, client, queue, metrics):
        body = json.dumps({"zen": "Keep it logically awesome."}).encode("utf-8")

        response = client.post("/webhooks/github", content=body, headers=_signed(body, "ping"))

        assert response.status_code == 200
        assert response.text == "Ignored"
        assert metrics.registry.get_sample_value(
            "smolpaws_webhook_deliveries_total", {"result": "ignored"}
        ) == 1.0

    def test_queue_failure_is_server_error(self, metrics):
        failing_queue = MagicMock()
        failing_queue.send = AsyncMock(side_effect=QueueError("down"))
        failing_queue.close = AsyncMock()
        app = create_app(
            settings=_settings(),
            dispatch_queue=failing_queue,
            processor=MagicMock(),
            metrics=metrics,
            start_consumer=False,
        )
        body = json.dumps(make_payload_dict()).encode("utf-8")

        with TestClient(app) as client:
            response = client.post("/webhooks/github", content=body, headers=_signed(body))

        assert response.status_code == 500
        assert response.text == "Queue unavailable"

    def test_missing_secret_is_server_error(self, queue, metrics):
        app = create_app(
            settings=SmolpawsSettings(_env_file=None),
            dispatch_queue=queue,
            processor=MagicMock(),
            metrics=metrics,
            start_consumer=False,
        )
        body = b"{}"

        with TestClient(app) as client:
            response = client.post("/webhooks/github", content=body, headers=_signed(body))

        assert response.status_code == 500

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "smolpaws_webhook_deliveries_total" in response.text
