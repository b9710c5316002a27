"""End-to-end flow: signed webhook -> queue -> runner -> reply comment.

GitHub is replaced by an ``httpx.MockTransport``; the runner application is
called in-process through ``httpx.ASGITransport``.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
from prometheus_client import CollectorRegistry

from conftest import make_payload_dict
from fakes import FakeProvider, agent_responder
from src.smolpaws.config import SmolpawsSettings
from src.smolpaws.github.auth import CredentialBroker
from src.smolpaws.github.client import GitHubClient
from src.smolpaws.metrics import SmolpawsMetrics
from src.smolpaws.queue.memory import InMemoryDispatchQueue
from src.smolpaws.queue.processor import QueueConsumer, QueueProcessor
from src.smolpaws.runner.app import create_app as create_runner_app
from src.smolpaws.runner.client import RunnerClient
from src.smolpaws.sandbox.orchestrator import SandboxOrchestrator
from src.smolpaws.webhook.filters import AllowListPolicy
from src.smolpaws.webhook.handler import WebhookHandler
from src.smolpaws.webhook.signature import compute_signature

WEBHOOK_SECRET = "hook-secret"
RUNNER_TOKEN = "runner-secret"
INSTALLATION_TOKEN = "ghs_installation"


def run_async(coro):
    return asyncio.run(coro)


class FakeGitHubApi:
    """Just enough of the GitHub REST API for one mention round trip."""

    def __init__(self, pull_request: Optional[Dict[str, Any]] = None, comment_status: int = 201):
        self.pull_request = pull_request
        self.comment_status = comment_status
        self.comments: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/app/installations/42/access_tokens":
            return httpx.Response(
                201, json={"token": INSTALLATION_TOKEN, "expires_at": "2030-01-01T00:00:00Z"}
            )
        if path == "/repos/acme/widgets/pulls/7":
            if self.pull_request is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=self.pull_request)
        if path == "/repos/acme/widgets/issues/7/comments":
            if self.comment_status >= 400:
                return httpx.Response(self.comment_status, json={"message": "nope"})
            self.comments.append(
                {
                    "body": json.loads(request.content)["body"],
                    "authorization": request.headers["authorization"],
                }
            )
            return httpx.Response(201, json={"id": len(self.comments)})
        return httpx.Response(404, json={"message": "Not Found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def _wire(github: FakeGitHubApi, private_key_pem: str, provider=None):
    metrics = SmolpawsMetrics(registry=CollectorRegistry())

    def github_client_factory(token: str) -> GitHubClient:
        return GitHubClient(token=token, transport=github.transport)

    orchestrator = SandboxOrchestrator(
        provider=provider,
        github_client_factory=github_client_factory,
        metrics=metrics,
    )
    runner_app = create_runner_app(
        settings=SmolpawsSettings(_env_file=None, smolpaws_runner_token=RUNNER_TOKEN),
        orchestrator=orchestrator,
        metrics=metrics,
    )

    queue = InMemoryDispatchQueue()
    handler = WebhookHandler(secret=WEBHOOK_SECRET, policy=AllowListPolicy(), queue=queue)

    processor = QueueProcessor(
        credential_broker=CredentialBroker(
            app_id="1234",
            private_key_pem=private_key_pem,
            transport=github.transport,
        ),
        runner_client=RunnerClient(
            url="http://runner/run",
            token=RUNNER_TOKEN,
            transport=httpx.ASGITransport(app=runner_app),
        ),
        github_client_factory=github_client_factory,
        metrics=metrics,
    )
    consumer = QueueConsumer(queue=queue, processor=processor, wait_seconds=0)
    return handler, queue, consumer, metrics


async def _deliver(handler: WebhookHandler, body_text: str):
    body = json.dumps(make_payload_dict(body=body_text)).encode("utf-8")
    headers = {
        "X-Hub-Signature-256": compute_signature(body, WEBHOOK_SECRET),
        "X-GitHub-Event": "issue_comment",
        "X-GitHub-Delivery": "delivery-e2e",
    }
    return await handler.handle(body, headers)


class TestMentionRoundTrip:
    def test_greeting_reply_without_sandbox(self, private_key_pem):
        github = FakeGitHubApi()
        handler, queue, consumer, metrics = _wire(github, private_key_pem)

        async def scenario():
            response = await _deliver(handler, "@smolpaws fix the tests")
            processed = await consumer.poll_once()
            return response, processed

        response, processed = run_async(scenario())

        assert response.status_code == 202
        assert processed == 1
        assert github.comments == [
            {
                "body": '🐾 Hey octocat! smolpaws is warming up in acme/widgets.\n'
                'Request: "fix the tests"',
                "authorization": f"Bearer {INSTALLATION_TOKEN}",
            }
        ]
        assert queue.pending_count == 0
        assert queue.in_flight_count == 0
        assert metrics.registry.get_sample_value(
            "smolpaws_messages_processed_total", {"outcome": "acknowledged"}
        ) == 1.0

    def test_sandbox_reply_on_pull_request(self, private_key_pem):
        github = FakeGitHubApi(
            pull_request={
                "number": 7,
                "head": {"ref": "feature/x", "repo": {"full_name": "acme/widgets"}},
            }
        )
        provider = FakeProvider(responder=agent_responder("Fixed the flaky test."))
        handler, _, consumer, metrics = _wire(github, private_key_pem, provider=provider)

        async def scenario():
            await _deliver(handler, "@smolpaws fix the flaky test")
            await consumer.poll_once()

        run_async(scenario())

        assert [c["body"] for c in github.comments] == ["Fixed the flaky test."]
        assert len(provider.created) == 1
        assert provider.created[0].deleted is False
        clone = next(c for c in provider.created[0].commands if "clone" in c)
        assert INSTALLATION_TOKEN in clone
        assert metrics.registry.get_sample_value(
            "smolpaws_sandbox_runs_total", {"mode": "per_pr"}
        ) == 1.0

    def test_comment_failure_schedules_retry(self, private_key_pem):
        github = FakeGitHubApi(comment_status=502)
        handler, queue, consumer, metrics = _wire(github, private_key_pem)

        async def scenario():
            await _deliver(handler, "@smolpaws hi")
            await consumer.poll_once()

        run_async(scenario())

        assert github.comments == []
        assert queue.pending_count == 1
        assert metrics.registry.get_sample_value(
            "smolpaws_messages_processed_total", {"outcome": "retry_scheduled"}
        ) == 1.0
