"""GitHub App authentication and REST API access.

This module provides:
- App assertion (JWT) minting and installation token exchange
- Posting comments on issues and pull requests
- Resolving a pull request's head branch and repository
"""

from src.smolpaws.github.auth import CredentialBroker, CredentialError, InstallationToken
from src.smolpaws.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.smolpaws.github.models import PullRequestContext

__all__ = [
    "CredentialBroker",
    "CredentialError",
    "GitHubAPIError",
    "GitHubClient",
    "InstallationToken",
    "PullRequestContext",
    "RateLimitError",
]
