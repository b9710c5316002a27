"""Unit tests for the conversation store and its HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from src.smolpaws.config import SmolpawsSettings
from src.smolpaws.metrics import SmolpawsMetrics
from src.smolpaws.runner.app import create_app
from src.smolpaws.runner.conversations import (
    MAX_PAGE_LIMIT,
    ConversationEvent,
    ConversationNotFoundError,
    ConversationStore,
    ExecutionStatus,
    clamp_limit,
    parse_page_id,
)


def run_async(coro):
    return asyncio.run(coro)


class FailingRuntime:
    async def send_message(self, conversation, text):
        yield ConversationEvent.message("agent", "partial")
        raise RuntimeError("agent crashed")

    async def pause(self, conversation):
        return None

    async def resume(self, conversation):
        return None

    async def set_policy(self, conversation, name, value):
        return None


def _filled_store(count: int):
    store = ConversationStore()
    conversation = store.get_or_create("c-1")
    for i in range(count):
        conversation.append(ConversationEvent.message("user", f"m{i}"))
    return store, conversation


class TestPaging:
    @pytest.mark.parametrize("raw,expected", [(None, 0), ("", 0), ("0", 0), ("25", 25)])
    def test_parse_page_id(self, raw, expected):
        assert parse_page_id(raw) == expected

    @pytest.mark.parametrize("raw", ["-1", "abc", "1.5"])
    def test_parse_page_id_rejects(self, raw):
        with pytest.raises(ValueError):
            parse_page_id(raw)

    @pytest.mark.parametrize(
        "limit,expected", [(None, 100), (0, 100), (-5, 100), (10, 10), (500, 100)]
    )
    def test_clamp_limit(self, limit, expected):
        assert clamp_limit(limit) == expected

    def test_pages_walk_all_events(self):
        store, conversation = _filled_store(5)

        first = store.search_events(conversation, limit=2)
        second = store.search_events(conversation, page_id=first.next_page_id, limit=2)
        last = store.search_events(conversation, page_id=second.next_page_id, limit=2)

        assert [e.text for e in first.items] == ["m0", "m1"]
        assert first.next_page_id == "2"
        assert [e.text for e in second.items] == ["m2", "m3"]
        assert [e.text for e in last.items] == ["m4"]
        assert last.next_page_id is None
        assert "next_page_id" not in last.to_response()

    def test_exact_fit_has_no_next_page(self):
        store, conversation = _filled_store(2)
        assert store.search_events(conversation, limit=2).next_page_id is None

    def test_limit_is_capped(self):
        store, conversation = _filled_store(MAX_PAGE_LIMIT + 5)
        page = store.search_events(conversation, limit=1000)
        assert len(page.items) == MAX_PAGE_LIMIT
        assert page.next_page_id == str(MAX_PAGE_LIMIT)


class TestConversationStore:
    def test_unknown_conversation(self):
        with pytest.raises(ConversationNotFoundError):
            ConversationStore().get("missing")

    def test_get_or_create_is_idempotent(self):
        store = ConversationStore()
        assert store.get_or_create("c") is store.get_or_create("c")
        assert len(store) == 1

    def test_generated_id_when_omitted(self):
        conversation = ConversationStore().get_or_create()
        assert conversation.id

    def test_send_message_runs_greeting_runtime(self):
        store = ConversationStore()
        conversation = store.get_or_create("c")

        events = run_async(store.send_message(conversation, " fix it "))

        assert [e.source for e in events] == ["user", "agent"]
        assert events[1].text == (
            '🐾 Hey there! smolpaws is warming up in your repo.\nRequest: "fix it"'
        )
        assert conversation.execution_status == ExecutionStatus.FINISHED

    def test_send_without_run_only_records(self):
        store = ConversationStore()
        conversation = store.get_or_create("c")

        events = run_async(store.send_message(conversation, "later", run=False))

        assert len(events) == 1
        assert conversation.execution_status == ExecutionStatus.IDLE

    def test_paused_conversation_does_not_run(self):
        store = ConversationStore()
        conversation = store.get_or_create("c")

        async def scenario():
            await store.pause(conversation)
            paused = await store.send_message(conversation, "hello")
            await store.resume(conversation)
            resumed = await store.send_message(conversation, "hello")
            return paused, resumed

        paused, resumed = run_async(scenario())

        assert len(paused) == 1
        assert len(resumed) == 2
        kinds = [e.kind for e in conversation.events]
        assert kinds == ["PauseEvent", "MessageEvent", "ResumeEvent", "MessageEvent", "MessageEvent"]

    def test_runtime_failure_marks_error(self):
        store = ConversationStore(runtime=FailingRuntime())
        conversation = store.get_or_create("c")

        with pytest.raises(RuntimeError):
            run_async(store.send_message(conversation, "go"))

        assert conversation.execution_status == ExecutionStatus.ERROR
        assert [e.text for e in conversation.events] == ["go", "partial"]

    def test_policies(self):
        store = ConversationStore()
        conversation = store.get_or_create("c")

        async def scenario():
            await store.set_policy(conversation, "secrets", {"GITHUB_TOKEN": "s3cr3t-value"})
            await store.set_policy(conversation, "confirmation_policy", {"kind": "NeverConfirm"})
            await store.set_policy(conversation, "security_analyzer", None)

        run_async(scenario())

        info = conversation.info()
        assert info["secret_names"] == ["GITHUB_TOKEN"]
        assert "s3cr3t-value" not in str(info)
        assert info["confirmation_policy"] == {"kind": "NeverConfirm"}
        assert info["security_analyzer"] is None

    def test_unknown_policy(self):
        store = ConversationStore()
        with pytest.raises(ValueError):
            run_async(store.set_policy(store.get_or_create("c"), "budget", 1))


class TestConversationApi:
    @pytest.fixture
    def client(self):
        settings = SmolpawsSettings(_env_file=None, smolpaws_runner_token="t")
        app = create_app(
            settings=settings,
            conversations=ConversationStore(),
            metrics=SmolpawsMetrics(registry=CollectorRegistry()),
        )
        with TestClient(app, headers={"Authorization": "Bearer t"}) as client:
            yield client

    def test_requires_token(self, client):
        response = client.get("/api/conversations/c", headers={"Authorization": ""})
        assert response.status_code == 401

    def test_start_with_initial_message(self, client):
        response = client.post(
            "/api/conversations",
            json={
                "conversation_id": "c-1",
                "agent": {"llm": {"model": "m"}},
                "initial_message": {"content": [{"type": "text", "text": "hi"}], "run": True},
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "c-1"
        assert body["event_count"] == 2
        assert body["execution_status"] == "finished"

    def test_unknown_conversation_is_404(self, client):
        response = client.get("/api/conversations/nope")
        assert response.status_code == 404

    def test_events_created_on_first_message(self, client):
        response = client.post(
            "/api/conversations/new-one/events",
            json={"role": "user", "content": [{"type": "text", "text": "hello"}], "run": True},
        )

        assert response.json() == {"success": True, "event_count": 2}
        info = client.get("/api/conversations/new-one").json()
        assert info["event_count"] == 2

    def test_search_pagination(self, client):
        for i in range(3):
            client.post(
                "/api/conversations/c/events",
                json={"content": [{"type": "text", "text": f"m{i}"}]},
            )

        first = client.get("/api/conversations/c/events/search", params={"limit": 2}).json()
        rest = client.get(
            "/api/conversations/c/events/search",
            params={"page_id": first["next_page_id"], "limit": 2},
        ).json()

        assert [item["text"] for item in first["items"]] == ["m0", "m1"]
        assert first["next_page_id"] == "2"
        assert [item["text"] for item in rest["items"]] == ["m2"]
        assert "next_page_id" not in rest

    def test_bad_page_id(self, client):
        client.post("/api/conversations/c/events", json={"content": []})
        response = client.get("/api/conversations/c/events/search", params={"page_id": "x"})
        assert response.status_code == 400

    def test_pause_resume_and_policies(self, client):
        client.post("/api/conversations", json={"conversation_id": "c"})

        assert client.post("/api/conversations/c/pause").json() == {"success": True}
        assert client.get("/api/conversations/c").json()["execution_status"] == "paused"
        client.post("/api/conversations/c/resume")
        client.post("/api/conversations/c/secrets", json={"secrets": {"API": "v"}})
        client.post(
            "/api/conversations/c/confirmation_policy",
            json={"policy": {"kind": "AlwaysConfirm"}},
        )
        client.post(
            "/api/conversations/c/security_analyzer",
            json={"security_analyzer": {"kind": "LLMSecurityAnalyzer"}},
        )

        info = client.get("/api/conversations/c").json()
        assert info["execution_status"] == "idle"
        assert info["secret_names"] == ["API"]
        assert info["confirmation_policy"] == {"kind": "AlwaysConfirm"}
        assert info["security_analyzer"] == {"kind": "LLMSecurityAnalyzer"}
