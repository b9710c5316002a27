"""GitHub API response models."""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PullRequestContext:
    """Head branch of a pull request, used to check out its code.

    Attributes:
        number: Pull request number.
        head_ref: Branch name on the head repository.
        head_repo_full_name: Repository the head branch lives in (the fork
            for cross-repository pull requests).
    """

    number: int
    head_ref: str
    head_repo_full_name: str

    @property
    def reuse_key(self) -> str:
        """Key grouping every message about this pull request."""
        return f"pr:{self.head_repo_full_name}#{self.number}"

    @classmethod
    def from_github_response(
        cls, data: Dict[str, Any], fallback_number: int
    ) -> Optional["PullRequestContext"]:
        """Build from a ``GET /repos/{repo}/pulls/{number}`` response.

        Returns:
            The context, or None when the head ref or head repository is
            missing.
        """
        head = data.get("head") or {}
        head_repo = head.get("repo") or {}
        head_ref = head.get("ref")
        head_repo_full_name = head_repo.get("full_name")
        if not head_ref or not head_repo_full_name:
            return None
        return cls(
            number=data.get("number") or fallback_number,
            head_ref=head_ref,
            head_repo_full_name=head_repo_full_name,
        )
