"""Sandbox orchestration for runner requests.

Decides which sandbox a request runs in, provisions the repository, and
runs the agent:

- Pull request with a resolvable head branch: the sandbox is cached under
  ``pr:<head repo>#<number>`` and reused for every later message on that
  pull request (``per_pr``).
- Anything else: a one-shot sandbox deleted once the run ends (``per_job``).

A cached sandbox that fails a run is evicted so the next message starts over.
"""

import logging
from typing import Callable, Optional

from src.smolpaws.config import DEFAULT_AUTO_STOP_MINUTES
from src.smolpaws.github.client import GitHubClient
from src.smolpaws.metrics import SmolpawsMetrics
from src.smolpaws.sandbox.agent import SandboxAgentRunner
from src.smolpaws.sandbox.cache import SandboxCache
from src.smolpaws.sandbox.models import AgentRunResult, LlmConfig, RepoContext, RunMode
from src.smolpaws.sandbox.provider import Sandbox, SandboxProvider
from src.smolpaws.sandbox.workspace import WorkspaceProvisioner
from src.smolpaws.webhook.models import RunnerRequest

logger = logging.getLogger(__name__)

GitHubClientFactory = Callable[[str], GitHubClient]


class SandboxOrchestrator:
    """Runs the agent for a runner request inside a (possibly reused) sandbox.

    Attributes:
        provider: Sandbox provider; None disables sandboxed runs.
        cache: Reuse-key map of running sandboxes.
        provisioner: Repository checkout step.
        agent_runner: Agent install and run step.
        github_client_factory: Builds a GitHubClient for the forwarded token.
        auto_stop_minutes: Idle interval after which sandboxes stop.
        metrics: Optional metrics sink.
    """

    def __init__(
        self,
        provider: Optional[SandboxProvider],
        github_client_factory: GitHubClientFactory,
        cache: Optional[SandboxCache] = None,
        provisioner: Optional[WorkspaceProvisioner] = None,
        agent_runner: Optional[SandboxAgentRunner] = None,
        auto_stop_minutes: int = DEFAULT_AUTO_STOP_MINUTES,
        metrics: Optional[SmolpawsMetrics] = None,
    ):
        self.provider = provider
        self.github_client_factory = github_client_factory
        self.cache = cache if cache is not None else SandboxCache()
        self.provisioner = provisioner or WorkspaceProvisioner()
        self.agent_runner = agent_runner or SandboxAgentRunner()
        self.auto_stop_minutes = auto_stop_minutes
        self.metrics = metrics

    @property
    def configured(self) -> bool:
        return self.provider is not None

    async def run(
        self,
        request: RunnerRequest,
        prompt: str,
        llm: LlmConfig,
    ) -> Optional[AgentRunResult]:
        """Run the agent for a request.

        Args:
            request: Runner request carrying the event and installation token.
            prompt: Request text with mentions removed.
            llm: LLM settings for the driver.

        Returns:
            The agent's reply and run mode, or None when no provider is
            configured or the request lacks repository, issue number or token.

        Raises:
            GitHubAPIError: If the pull request lookup fails with anything but 404.
            SandboxError: If sandbox creation or any sandbox command fails. A
                cached sandbox is evicted when provisioning or the agent
                run fails on it.
        """
        if self.provider is None:
            return None

        payload = request.payload
        repo_full_name = payload.repo_full_name
        issue_number = payload.issue_number
        token = request.github_token
        if not repo_full_name or not issue_number or not token:
            return None

        async with self.github_client_factory(token) as github:
            pr_context = await github.get_pull_request(repo_full_name, issue_number)

        if pr_context is not None:
            reuse_key: Optional[str] = pr_context.reuse_key
            mode = RunMode.PER_PR
            repo = RepoContext(
                full_name=pr_context.head_repo_full_name,
                ref=pr_context.head_ref,
            )
            sandbox = await self.cache.get_or_create(reuse_key, self._create_sandbox)
        else:
            reuse_key = None
            mode = RunMode.PER_JOB
            repo = RepoContext(full_name=repo_full_name)
            sandbox = await self._create_sandbox()

        logger.info(
            "Running agent in sandbox",
            extra={
                "repository": repo.full_name,
                "ref": repo.ref,
                "mode": mode.value,
                "delivery_id": request.delivery_id,
            },
        )

        try:
            workspace_root = await self.provisioner.ensure_workspace(sandbox, repo, token)
            reply = await self.agent_runner.run(sandbox, prompt, workspace_root, llm)
        except Exception:
            if reuse_key is not None:
                # The next message on this pull request starts from a fresh sandbox
                self.cache.evict(reuse_key, sandbox)
            raise
        finally:
            if reuse_key is None:
                await self._delete(sandbox, repo)

        if self.metrics is not None:
            self.metrics.record_sandbox_run(mode.value)
        return AgentRunResult(reply=reply, mode=mode)

    async def _create_sandbox(self) -> Sandbox:
        return await self.provider.create(auto_stop_minutes=self.auto_stop_minutes)

    async def _delete(self, sandbox: Sandbox, repo: RepoContext) -> None:
        """Delete a one-shot sandbox without masking the run's own outcome.

        The provider's auto-stop interval reclaims a sandbox whose deletion
        failed.
        """
        try:
            await sandbox.delete()
        except Exception:
            logger.exception(
                "Failed to delete sandbox", extra={"repository": repo.full_name}
            )
