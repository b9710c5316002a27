"""GitHub API client for smolpaws comment and pull request lookups.

This module provides an async wrapper around the GitHub REST API for:
- Posting issue / pull request comments
- Resolving a pull request's head branch and repository

Requests are made with an installation token. Failures surface as
GitHubAPIError and are never retried here: the dispatch queue's redelivery
is the only retry mechanism.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from src.smolpaws.github.models import PullRequestContext

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
    """

    def __init__(self, message: str, reset_at: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at


class GitHubClient:
    """Async GitHub API client bound to one installation token.

    Attributes:
        base_url: Base URL for GitHub API (default: https://api.github.com).
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token=installation_token.token) as client:
        ...     await client.create_comment("owner/repo", 123, "Hello!")
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        user_agent: str = "smolpaws-webhook",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": self.user_agent,
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[httpx.Response]:
        """Make a single HTTP request.

        Args:
            method: HTTP method.
            path: API path (e.g., /repos/owner/repo/issues/1/comments).
            json_data: Optional JSON body for the request.
            allow_not_found: Return None instead of raising on 404.

        Returns:
            The HTTP response, or None for an allowed 404.

        Raises:
            RateLimitError: If the rate limit is exhausted.
            GitHubAPIError: On any other non-success status or transport error.
        """
        try:
            response = await self.client.request(method=method, url=path, json=json_data)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(
                message=f"GitHub API request failed: {exc}",
                request_url=f"{self.base_url}{path}",
            ) from exc

        if response.status_code == 404 and allow_not_found:
            return None

        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            reset_header = response.headers.get("x-ratelimit-reset")
            raise RateLimitError(
                message="GitHub API rate limit exceeded",
                reset_at=int(reset_header) if reset_header and reset_header.isdigit() else None,
                status_code=response.status_code,
                request_url=str(response.url),
            )

        if response.status_code >= 400:
            error_body = response.text
            logger.error(
                "GitHub API error",
                extra={
                    "status_code": response.status_code,
                    "path": path,
                    "method": method,
                    "response_body": error_body[:500],
                },
            )
            raise GitHubAPIError(
                message=f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                response_body=error_body,
                request_url=str(response.url),
            )

        return response

    async def create_comment(
        self,
        repo_full_name: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Create a comment on an issue or pull request.

        Args:
            repo_full_name: Repository in "owner/repo" form.
            issue_number: Issue or pull request number.
            body: Comment body in markdown format.

        Returns:
            The created comment data from GitHub API.

        Raises:
            GitHubAPIError: If the request fails.
        """
        path = f"/repos/{repo_full_name}/issues/{issue_number}/comments"
        response = await self._request("POST", path, json_data={"body": body})
        result = response.json()
        logger.info(
            "Comment created",
            extra={
                "repository": repo_full_name,
                "issue_number": issue_number,
                "comment_id": result.get("id"),
                "body_length": len(body),
            },
        )
        return result

    async def get_pull_request(
        self,
        repo_full_name: str,
        number: int,
    ) -> Optional[PullRequestContext]:
        """Resolve the pull request behind an issue number.

        Args:
            repo_full_name: Repository in "owner/repo" form.
            number: Issue or pull request number.

        Returns:
            PullRequestContext, or None when the number is a plain issue
            (404) or the head branch / repository is unavailable (e.g. a
            deleted fork).

        Raises:
            GitHubAPIError: For any non-success status other than 404.
        """
        path = f"/repos/{repo_full_name}/pulls/{number}"
        response = await self._request("GET", path, allow_not_found=True)
        if response is None:
            logger.debug(
                "Issue is not a pull request",
                extra={"repository": repo_full_name, "number": number},
            )
            return None
        return PullRequestContext.from_github_response(response.json(), number)
