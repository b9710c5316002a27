"""Event filtering for smolpaws webhooks.

Decides whether a verified GitHub delivery is in scope:

- the ``X-GitHub-Event`` header names an ``issue_comment`` or
  ``pull_request_review_comment`` event
- the action is absent or ``created``
- the comment mentions ``@smolpaws`` as a whole handle
- the actor, owner, repository and installation pass the allow-list

Rejections are silent; the ingress answers 200 so an unauthenticated caller
cannot probe allow-list membership.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from src.smolpaws.config import SmolpawsSettings, parse_allow_list
from src.smolpaws.webhook.models import EventKind, GithubEventPayload

logger = logging.getLogger(__name__)

MENTION = "@smolpaws"

# GitHub handles may contain letters, digits, "-" and "_"; any of those
# directly after the mention means a longer handle such as @smolpawsbot.
_MENTION_PATTERN = re.compile(
    r"(?:^|\s)" + re.escape(MENTION) + r"(?![A-Za-z0-9_-])",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class AllowListPolicy:
    """Allow-list evaluated as a logical AND across non-empty dimensions.

    Each dimension holds lowercase strings; an empty set allows everything
    for that dimension.

    Attributes:
        actors: Allowed ``sender.login`` values.
        owners: Allowed ``repository.owner.login`` values.
        repos: Allowed ``repository.full_name`` values.
        installations: Allowed installation ids, as strings.
    """

    actors: frozenset[str] = field(default_factory=frozenset)
    owners: frozenset[str] = field(default_factory=frozenset)
    repos: frozenset[str] = field(default_factory=frozenset)
    installations: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_strings(
        cls,
        actors: Optional[str] = None,
        owners: Optional[str] = None,
        repos: Optional[str] = None,
        installations: Optional[str] = None,
    ) -> "AllowListPolicy":
        """Build a policy from comma-separated environment strings."""
        return cls(
            actors=parse_allow_list(actors),
            owners=parse_allow_list(owners),
            repos=parse_allow_list(repos),
            installations=parse_allow_list(installations),
        )

    @classmethod
    def from_settings(cls, settings: SmolpawsSettings) -> "AllowListPolicy":
        return cls.from_strings(
            actors=settings.allowed_actors,
            owners=settings.allowed_owners,
            repos=settings.allowed_repos,
            installations=settings.allowed_installations,
        )

    def allows(self, payload: GithubEventPayload) -> bool:
        """Check the payload against every non-empty dimension."""
        installation_id = payload.installation_id
        checks = (
            (self.actors, payload.actor_login),
            (self.owners, payload.owner_login),
            (self.repos, payload.repo_full_name),
            (
                self.installations,
                str(installation_id) if installation_id is not None else None,
            ),
        )
        for allowed, value in checks:
            if allowed and (not value or value.lower() not in allowed):
                return False
        return True


def classify_event(header_event_name: Optional[str]) -> Optional[EventKind]:
    """Map an ``X-GitHub-Event`` header to an in-scope event kind.

    Args:
        header_event_name: Raw header value.

    Returns:
        EventKind for the two comment events, None for anything else.
    """
    if not header_event_name:
        return None
    try:
        return EventKind(header_event_name)
    except ValueError:
        return None


def contains_mention(body: str) -> bool:
    """Check whether a comment body mentions ``@smolpaws`` as a whole handle.

    Matching is case-insensitive. The mention must start the text or follow
    whitespace, and must not continue into a longer handle.
    """
    if not body:
        return False
    return _MENTION_PATTERN.search(body) is not None


def is_action_in_scope(payload: GithubEventPayload) -> bool:
    """Only newly created comments trigger smolpaws."""
    return payload.action is None or payload.action == "created"


def is_in_scope(payload: GithubEventPayload, policy: AllowListPolicy) -> bool:
    """Decide whether a parsed payload should be queued.

    Args:
        payload: Parsed GitHub payload.
        policy: Allow-list to evaluate.

    Returns:
        True when the action, the mention and the allow-list all pass.
    """
    if not is_action_in_scope(payload):
        logger.debug("Ignoring action", extra={"action": payload.action})
        return False

    if not contains_mention(payload.comment_body):
        return False

    if not policy.allows(payload):
        logger.info(
            "Ignoring event outside allow-list",
            extra={
                "actor": payload.actor_login,
                "repository": payload.repo_full_name,
            },
        )
        return False

    return True
