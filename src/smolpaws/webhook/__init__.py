"""GitHub webhook ingress.

This module verifies and filters GitHub webhook deliveries:
- issue_comment - comment on an issue or pull request
- pull_request_review_comment - comment on a pull request diff

Only newly created comments that mention @smolpaws and pass the allow-lists
are turned into queue messages.
"""

from .filters import AllowListPolicy, classify_event, contains_mention, is_in_scope
from .models import EventKind, GithubEventPayload, QueueMessage, RunnerRequest
from .signature import compute_signature, verify_signature

__all__ = [
    "AllowListPolicy",
    "EventKind",
    "GithubEventPayload",
    "QueueMessage",
    "RunnerRequest",
    "classify_event",
    "compute_signature",
    "contains_mention",
    "is_in_scope",
    "verify_signature",
]
