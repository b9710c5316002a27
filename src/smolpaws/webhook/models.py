"""GitHub webhook event models for smolpaws.

This module defines the wire models shared by the webhook ingress, the
dispatch queue and the runner:

- EventKind: the two GitHub event names smolpaws reacts to
- GithubEventPayload: the subset of the GitHub payload smolpaws reads,
  with every other key preserved so the raw event survives the queue
- QueueMessage: the self-contained unit of durable, retryable work
- RunnerRequest: a QueueMessage plus the installation token handed to
  the runner

The models use Pydantic for validation, consistent with the configuration
approach in config.py.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """GitHub event names that can carry a smolpaws mention.

    Attributes:
        ISSUE_COMMENT: A comment on an issue or on a pull request's
            conversation tab.
        PULL_REQUEST_REVIEW_COMMENT: A comment on a pull request diff.
    """

    ISSUE_COMMENT = "issue_comment"
    PULL_REQUEST_REVIEW_COMMENT = "pull_request_review_comment"


class _PayloadPart(BaseModel):
    """Base for nested payload objects; unknown GitHub keys are kept."""

    model_config = ConfigDict(extra="allow", frozen=True)


class GithubUser(_PayloadPart):
    login: Optional[str] = None
    id: Optional[int] = None


class GithubComment(_PayloadPart):
    body: Optional[str] = None
    id: Optional[int] = None


class GithubOwner(_PayloadPart):
    login: Optional[str] = None


class GithubRepository(_PayloadPart):
    full_name: Optional[str] = None
    owner: Optional[GithubOwner] = None


class GithubNumbered(_PayloadPart):
    number: Optional[int] = None


class GithubInstallation(_PayloadPart):
    id: Optional[int] = None


class GithubEventPayload(_PayloadPart):
    """Parsed GitHub ``issue_comment`` / ``pull_request_review_comment`` payload.

    Every field is optional because GitHub omits parts of the payload
    depending on the event; callers decide which fields they require.

    Attributes:
        action: Event action, e.g. "created", "edited", "deleted".
        sender: The user who triggered the event.
        comment: The comment that was created.
        repository: Repository the comment belongs to.
        issue: Issue (or PR conversation) the comment was made on.
        pull_request: Pull request the review comment was made on.
        installation: GitHub App installation that delivered the event.
    """

    action: Optional[str] = None
    sender: Optional[GithubUser] = None
    comment: Optional[GithubComment] = None
    repository: Optional[GithubRepository] = None
    issue: Optional[GithubNumbered] = None
    pull_request: Optional[GithubNumbered] = None
    installation: Optional[GithubInstallation] = None

    @property
    def actor_login(self) -> Optional[str]:
        return self.sender.login if self.sender else None

    @property
    def owner_login(self) -> Optional[str]:
        if self.repository is None or self.repository.owner is None:
            return None
        return self.repository.owner.login

    @property
    def repo_full_name(self) -> Optional[str]:
        return self.repository.full_name if self.repository else None

    @property
    def installation_id(self) -> Optional[int]:
        return self.installation.id if self.installation else None

    @property
    def issue_number(self) -> Optional[int]:
        """Issue number, falling back to the pull request number."""
        if self.issue is not None and self.issue.number:
            return self.issue.number
        if self.pull_request is not None and self.pull_request.number:
            return self.pull_request.number
        return None

    @property
    def comment_body(self) -> str:
        if self.comment is None or self.comment.body is None:
            return ""
        return self.comment.body

    def has_repository_context(self) -> bool:
        """Check that installation, repository and issue number are present."""
        return bool(
            self.installation_id and self.repo_full_name and self.issue_number
        )


class QueueMessage(BaseModel):
    """Unit of durable, retryable work carried by the dispatch queue.

    The message is fully self-contained: the queue may redeliver it to a
    different process, so it must not reference in-process state.

    Wire shape: ``{"event": ..., "payload": {...}, "delivery_id": ...}``
    with ``delivery_id`` omitted when unknown.

    Attributes:
        event: Which GitHub event produced the payload.
        payload: The raw GitHub payload.
        delivery_id: ``X-GitHub-Delivery`` header, for idempotency and tracing.
    """

    model_config = ConfigDict(frozen=True)

    event: EventKind
    payload: GithubEventPayload
    delivery_id: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the JSON-compatible queue wire shape.

        Only keys that were present on input are emitted, so the GitHub
        payload is forwarded as received.
        """
        data = self.model_dump(mode="json", exclude_unset=True)
        if data.get("delivery_id") is None:
            data.pop("delivery_id", None)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_wire())

    @classmethod
    def from_json(cls, data: str) -> "QueueMessage":
        return cls.model_validate_json(data)


class RunnerRequest(QueueMessage):
    """Body sent to the runner: the queue message plus a GitHub token.

    The installation token lets the runner clone the repository inside a
    sandbox. It is excluded from ``repr`` so it never lands in logs.
    """

    github_token: Optional[str] = Field(default=None, repr=False)

    @classmethod
    def from_message(
        cls, message: QueueMessage, github_token: Optional[str] = None
    ) -> "RunnerRequest":
        return cls(
            event=message.event,
            payload=message.payload,
            delivery_id=message.delivery_id,
            github_token=github_token,
        )
