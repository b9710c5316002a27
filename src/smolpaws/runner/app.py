"""FastAPI application for the smolpaws runner (execution backend).

The runner turns a queue message into a reply string:

- ``POST /run``: bearer-authenticated; returns ``{reply}``. Requests with
  no prompt get the warm-up greeting, others run the agent in a sandbox
  when one is configured.
- ``GET /health``: ``{"ok": true}``.
- ``GET /metrics``: Prometheus text format.
- ``/api/conversations``: conversation API over the agent runtime.
"""

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from src.smolpaws.config import SmolpawsSettings, get_settings
from src.smolpaws.github.client import GitHubClient
from src.smolpaws.metrics import SmolpawsMetrics, generate_metrics_output, get_metrics
from src.smolpaws.runner.conversations import (
    ConversationNotFoundError,
    ConversationStore,
)
from src.smolpaws.runner.replies import build_greeting, extract_prompt
from src.smolpaws.sandbox.agent import SandboxAgentRunner
from src.smolpaws.sandbox.models import LlmConfig
from src.smolpaws.sandbox.orchestrator import SandboxOrchestrator
from src.smolpaws.sandbox.workspace import WorkspaceProvisioner
from src.smolpaws.webhook.models import RunnerRequest

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class RunnerAuthError(Exception):
    """Raised when a request fails the runner's bearer check."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def check_authorization(header: Optional[str], token: Optional[str]) -> Optional[str]:
    """Validate an Authorization header against the shared runner token.

    Returns:
        None when the request is allowed, otherwise the rejection reason.
    """
    if not token:
        return None
    if not header:
        return "Missing Authorization header"
    if not hmac.compare_digest(header.encode(), f"Bearer {token}".encode()):
        return "Invalid Authorization token"
    return None


# -----------------------------------------------------------------------------
# Conversation API request bodies
# -----------------------------------------------------------------------------


class ContentPart(BaseModel):
    type: str = "text"
    text: str = ""


class MessageRequest(BaseModel):
    role: str = "user"
    content: List[ContentPart] = Field(default_factory=list)
    run: bool = False

    @property
    def text(self) -> str:
        return "\n".join(part.text for part in self.content if part.type == "text")


class AgentSpec(BaseModel):
    llm: Dict[str, Any] = Field(default_factory=dict, repr=False)


class StartConversationRequest(BaseModel):
    conversation_id: Optional[str] = None
    agent: AgentSpec = Field(default_factory=AgentSpec)
    initial_message: Optional[MessageRequest] = None


class SecretsRequest(BaseModel):
    secrets: Dict[str, str] = Field(repr=False)


class ConfirmationPolicyRequest(BaseModel):
    policy: Dict[str, Any]


class SecurityAnalyzerRequest(BaseModel):
    security_analyzer: Optional[Dict[str, Any]] = None


# -----------------------------------------------------------------------------
# Wiring
# -----------------------------------------------------------------------------


def llm_config_from_settings(settings: SmolpawsSettings) -> LlmConfig:
    return LlmConfig(
        model=settings.llm_model,
        provider=settings.llm_provider,
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
    )


def build_orchestrator(
    settings: SmolpawsSettings,
    metrics: Optional[SmolpawsMetrics] = None,
) -> SandboxOrchestrator:
    """Wire the sandbox orchestrator; without a Daytona key it stays disabled."""
    provider = None
    if settings.sandbox_enabled:
        from src.smolpaws.sandbox.daytona import DaytonaProvider

        provider = DaytonaProvider(
            api_key=settings.daytona_api_key,
            api_url=settings.daytona_api_url,
            target=settings.daytona_target,
        )

    command_timeout = int(settings.smolpaws_sandbox_command_timeout_seconds)

    def github_client_factory(token: str) -> GitHubClient:
        return GitHubClient(
            token=token,
            base_url=settings.github_api_url,
            user_agent="smolpaws-runner",
        )

    return SandboxOrchestrator(
        provider=provider,
        github_client_factory=github_client_factory,
        provisioner=WorkspaceProvisioner(command_timeout_seconds=command_timeout),
        agent_runner=SandboxAgentRunner(
            agent_packages=settings.smolpaws_agent_packages,
            command_timeout_seconds=command_timeout,
            persistence_dir=settings.smolpaws_persistence_dir,
        ),
        auto_stop_minutes=settings.smolpaws_daytona_auto_stop_minutes,
        metrics=metrics,
    )


def create_app(
    settings: Optional[SmolpawsSettings] = None,
    orchestrator: Optional[SandboxOrchestrator] = None,
    conversations: Optional[ConversationStore] = None,
    metrics: Optional[SmolpawsMetrics] = None,
) -> FastAPI:
    """Build the runner application.

    Args:
        settings: Runner settings; read from the environment when omitted.
        orchestrator: Sandbox orchestrator; built from settings when omitted.
        conversations: Conversation store; a greeting-backed one by default.
        metrics: Metrics sink; the global instance by default.

    Returns:
        The FastAPI application.
    """
    settings = settings or get_settings()
    metrics = metrics or get_metrics()
    orchestrator = orchestrator or build_orchestrator(settings, metrics)
    if conversations is None:
        conversations = ConversationStore()
    llm = llm_config_from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "smolpaws runner starting",
            extra={
                "sandbox_enabled": orchestrator.configured,
                "auth_enabled": bool(settings.smolpaws_runner_token),
                "llm_model": llm.model,
            },
        )
        yield
        provider = orchestrator.provider
        close = getattr(provider, "close", None)
        if close is not None:
            await close()
        logger.info("smolpaws runner shutdown complete")

    app = FastAPI(
        title="smolpaws runner",
        description="Execution backend that turns GitHub mentions into replies",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.conversations = conversations

    async def require_token(request: Request) -> None:
        reason = check_authorization(
            request.headers.get("authorization"), settings.smolpaws_runner_token
        )
        if reason is not None:
            raise RunnerAuthError(reason)

    @app.exception_handler(RunnerAuthError)
    async def auth_error_handler(request: Request, exc: RunnerAuthError):
        logger.warning("Runner request rejected", extra={"reason": exc.reason})
        return JSONResponse(status_code=401, content={"reply": exc.reason})

    @app.exception_handler(ConversationNotFoundError)
    async def not_found_handler(request: Request, exc: ConversationNotFoundError):
        return JSONResponse(
            status_code=404,
            content={"detail": f"Conversation not found: {exc.conversation_id}"},
        )

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint():
        return PlainTextResponse(generate_metrics_output(metrics.registry))

    @app.post("/run", dependencies=[Depends(require_token)])
    async def run(body: RunnerRequest):
        """Turn a queue message into a reply.

        Sandbox and GitHub failures propagate as a 500 so the caller
        schedules a retry.
        """
        payload = body.payload
        prompt = extract_prompt(payload.comment_body)
        if prompt and orchestrator.configured:
            result = await orchestrator.run(body, prompt, llm)
            if result is not None:
                logger.info(
                    "Agent reply ready",
                    extra={"delivery_id": body.delivery_id, "mode": result.mode.value},
                )
                return {"reply": result.reply}

        return {"reply": build_greeting(payload.actor_login, payload.repo_full_name, prompt)}

    @app.post("/api/conversations", dependencies=[Depends(require_token)])
    async def start_conversation(body: StartConversationRequest):
        conversation = conversations.get_or_create(
            body.conversation_id, llm=body.agent.llm
        )
        initial = body.initial_message
        if initial is not None:
            await conversations.send_message(conversation, initial.text, run=initial.run)
        return conversation.info()

    @app.get("/api/conversations/{conversation_id}", dependencies=[Depends(require_token)])
    async def get_conversation(conversation_id: str):
        return conversations.get(conversation_id).info()

    @app.post(
        "/api/conversations/{conversation_id}/events",
        dependencies=[Depends(require_token)],
    )
    async def send_message(conversation_id: str, body: MessageRequest):
        conversation = conversations.get_or_create(conversation_id)
        events = await conversations.send_message(conversation, body.text, run=body.run)
        return {"success": True, "event_count": len(events)}

    @app.get(
        "/api/conversations/{conversation_id}/events/search",
        dependencies=[Depends(require_token)],
    )
    async def search_events(
        conversation_id: str,
        page_id: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        conversation = conversations.get(conversation_id)
        try:
            page = conversations.search_events(conversation, page_id=page_id, limit=limit)
        except ValueError:
            return JSONResponse(
                status_code=400, content={"detail": f"Invalid page_id: {page_id}"}
            )
        return page.to_response()

    @app.post(
        "/api/conversations/{conversation_id}/pause",
        dependencies=[Depends(require_token)],
    )
    async def pause(conversation_id: str):
        await conversations.pause(conversations.get(conversation_id))
        return {"success": True}

    @app.post(
        "/api/conversations/{conversation_id}/resume",
        dependencies=[Depends(require_token)],
    )
    async def resume(conversation_id: str):
        await conversations.resume(conversations.get(conversation_id))
        return {"success": True}

    @app.post(
        "/api/conversations/{conversation_id}/secrets",
        dependencies=[Depends(require_token)],
    )
    async def update_secrets(conversation_id: str, body: SecretsRequest):
        conversation = conversations.get(conversation_id)
        await conversations.set_policy(conversation, "secrets", body.secrets)
        return {"success": True}

    @app.post(
        "/api/conversations/{conversation_id}/confirmation_policy",
        dependencies=[Depends(require_token)],
    )
    async def set_confirmation_policy(conversation_id: str, body: ConfirmationPolicyRequest):
        conversation = conversations.get(conversation_id)
        await conversations.set_policy(conversation, "confirmation_policy", body.policy)
        return {"success": True}

    @app.post(
        "/api/conversations/{conversation_id}/security_analyzer",
        dependencies=[Depends(require_token)],
    )
    async def set_security_analyzer(conversation_id: str, body: SecurityAnalyzerRequest):
        conversation = conversations.get(conversation_id)
        await conversations.set_policy(
            conversation, "security_analyzer", body.security_analyzer
        )
        return {"success": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    runner_settings = get_settings()
    uvicorn.run(
        "src.smolpaws.runner.app:app",
        host=runner_settings.host,
        port=runner_settings.runner_port,
    )
