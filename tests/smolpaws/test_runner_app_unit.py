"""Unit tests for the runner application: auth, greeting and sandbox replies."""

from typing import Optional

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from conftest import make_payload_dict
from src.smolpaws.config import SmolpawsSettings
from src.smolpaws.metrics import SmolpawsMetrics
from src.smolpaws.runner.app import check_authorization, create_app
from src.smolpaws.runner.replies import build_greeting, extract_prompt
from src.smolpaws.sandbox.models import AgentRunResult, RunMode
from src.smolpaws.sandbox.provider import SandboxCommandError

TOKEN = "runner-secret"


class FakeOrchestrator:
    def __init__(self, result: Optional[AgentRunResult] = None, configured: bool = True, error=None):
        self.provider = None
        self.configured = configured
        self.result = result
        self.error = error
        self.calls = []

    async def run(self, request, prompt, llm):
        self.calls.append((request, prompt, llm))
        if self.error is not None:
            raise self.error
        return self.result


def _client(orchestrator=None, token: Optional[str] = TOKEN) -> TestClient:
    settings = SmolpawsSettings(_env_file=None, smolpaws_runner_token=token, llm_model="m")
    app = create_app(
        settings=settings,
        orchestrator=orchestrator or FakeOrchestrator(configured=False),
        metrics=SmolpawsMetrics(registry=CollectorRegistry()),
    )
    return TestClient(app, raise_server_exceptions=False)


def _run_body(**payload_kwargs):
    return {
        "event": "issue_comment",
        "payload": make_payload_dict(**payload_kwargs),
        "delivery_id": "d-1",
        "github_token": "ghs_tok",
    }


AUTH = {"Authorization": f"Bearer {TOKEN}"}


class TestReplies:
    @pytest.mark.parametrize(
        "body,expected",
        [
            ("@smolpaws fix the tests", "fix the tests"),
            ("@SmolPaws  ", ""),
            ("hey @smolpaws and @smolpaws again", "hey  and  again"),
            (None, ""),
        ],
    )
    def test_extract_prompt(self, body, expected):
        assert extract_prompt(body) == expected

    def test_greeting_with_prompt(self):
        assert build_greeting("octocat", "acme/widgets", "fix it") == (
            '🐾 Hey octocat! smolpaws is warming up in acme/widgets.\nRequest: "fix it"'
        )

    def test_greeting_defaults(self):
        assert build_greeting(None, None, "") == (
            "🐾 Hey there! smolpaws is warming up in your repo.\nRequest: (none)"
        )


class TestCheckAuthorization:
    def test_no_token_configured_allows_everything(self):
        assert check_authorization(None, None) is None
        assert check_authorization("Bearer whatever", "") is None

    def test_missing_header(self):
        assert check_authorization(None, "t") == "Missing Authorization header"

    @pytest.mark.parametrize("header", ["Bearer wrong", "t", "Basic t", "Bearer  t", "bearer t"])
    def test_invalid_header(self, header):
        assert check_authorization(header, "t") == "Invalid Authorization token"

    def test_exact_bearer_accepted(self):
        assert check_authorization("Bearer t", "t") is None


class TestRunEndpoint:
    def test_health(self):
        with _client() as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_missing_authorization_rejected(self):
        with _client() as client:
            response = client.post("/run", json=_run_body())
        assert response.status_code == 401
        assert response.json() == {"reply": "Missing Authorization header"}

    def test_wrong_token_rejected(self):
        with _client() as client:
            response = client.post(
                "/run", json=_run_body(), headers={"Authorization": "Bearer nope"}
            )
        assert response.status_code == 401
        assert response.json() == {"reply": "Invalid Authorization token"}

    def test_auth_disabled_without_token(self):
        with _client(token=None) as client:
            response = client.post("/run", json=_run_body())
        assert response.status_code == 200

    def test_greeting_without_sandbox(self):
        with _client() as client:
            response = client.post(
                "/run", json=_run_body(body="@smolpaws fix the tests"), headers=AUTH
            )
        assert response.status_code == 200
        assert response.json() == {
            "reply": '🐾 Hey octocat! smolpaws is warming up in acme/widgets.\n'
            'Request: "fix the tests"'
        }

    def test_empty_prompt_skips_sandbox(self):
        orchestrator = FakeOrchestrator(AgentRunResult("agent", RunMode.PER_JOB))
        with _client(orchestrator) as client:
            response = client.post("/run", json=_run_body(body="@smolpaws"), headers=AUTH)

        assert response.json()["reply"].endswith("Request: (none)")
        assert orchestrator.calls == []

    def test_sandbox_reply_returned(self):
        orchestrator = FakeOrchestrator(AgentRunResult("Fixed in abc123.", RunMode.PER_PR))
        with _client(orchestrator) as client:
            response = client.post(
                "/run", json=_run_body(body="@smolpaws fix it"), headers=AUTH
            )

        assert response.json() == {"reply": "Fixed in abc123."}
        request, prompt, llm = orchestrator.calls[0]
        assert prompt == "fix it"
        assert request.github_token == "ghs_tok"
        assert llm.model == "m"

    def test_not_applicable_falls_back_to_greeting(self):
        orchestrator = FakeOrchestrator(result=None)
        with _client(orchestrator) as client:
            response = client.post(
                "/run", json=_run_body(body="@smolpaws fix it"), headers=AUTH
            )

        assert response.json()["reply"].startswith("🐾 Hey octocat!")
        assert len(orchestrator.calls) == 1

    def test_sandbox_failure_is_server_error(self):
        orchestrator = FakeOrchestrator(error=SandboxCommandError("git clone", 128, "denied"))
        with _client(orchestrator) as client:
            response = client.post(
                "/run", json=_run_body(body="@smolpaws fix it"), headers=AUTH
            )

        assert response.status_code == 500

    def test_metrics_endpoint(self):
        with _client() as client:
            response = client.get("/metrics")
        assert response.status_code == 200
        assert "smolpaws_sandbox_runs_total" in response.text
