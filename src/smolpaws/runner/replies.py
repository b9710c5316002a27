"""Prompt extraction and the warm-up greeting."""

import re
from typing import Optional

_MENTION_TOKEN = re.compile(r"@smolpaws", re.IGNORECASE)

DEFAULT_ACTOR = "there"
DEFAULT_REPO = "your repo"


def extract_prompt(comment_body: Optional[str]) -> str:
    """Remove every ``@smolpaws`` from a comment body and trim it."""
    return _MENTION_TOKEN.sub("", comment_body or "").strip()


def build_greeting(
    actor: Optional[str],
    repo: Optional[str],
    prompt: str,
) -> str:
    """Deterministic reply used when no agent runs.

    >>> build_greeting("octocat", "acme/widgets", "")
    '🐾 Hey octocat! smolpaws is warming up in acme/widgets.\\nRequest: (none)'
    """
    request_line = f'Request: "{prompt}"' if prompt else "Request: (none)"
    return (
        f"🐾 Hey {actor or DEFAULT_ACTOR}! smolpaws is warming up in "
        f"{repo or DEFAULT_REPO}.\n{request_line}"
    )

