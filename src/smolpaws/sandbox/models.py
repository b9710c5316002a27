"""Data models for sandboxed agent runs."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RunMode(str, Enum):
    """How the sandbox behind a run is scoped.

    Attributes:
        PER_PR: Sandbox cached and reused for every message on one pull request.
        PER_JOB: One-shot sandbox, deleted after the run.
    """

    PER_PR = "per_pr"
    PER_JOB = "per_job"


@dataclass(frozen=True)
class RepoContext:
    """Repository to check out and the optional branch to track."""

    full_name: str
    ref: Optional[str] = None


@dataclass(frozen=True)
class LlmConfig:
    """LLM settings passed to the in-sandbox driver.

    Attributes:
        model: Model identifier (required by the driver).
        provider: Optional provider name.
        base_url: Optional API base URL.
        api_key: Optional API key; never logged.
    """

    model: str
    provider: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"LlmConfig(model={self.model!r}, provider={self.provider!r}, "
            f"base_url={self.base_url!r})"
        )


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    output: str


@dataclass(frozen=True)
class AgentRunResult:
    """Reply produced by a sandboxed agent run and the sandbox mode used."""

    reply: str
    mode: RunMode
