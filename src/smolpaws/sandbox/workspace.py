"""Repository checkout inside a sandbox.

The provisioner clones a repository once per sandbox and refreshes it on
every run, so a reused sandbox always works on the latest head of the
tracked branch.
"""

import logging
import re
from urllib.parse import quote

from src.smolpaws.sandbox.models import RepoContext
from src.smolpaws.sandbox.provider import Sandbox, run_shell
from src.smolpaws.sandbox.shell import shell_join, shell_quote

logger = logging.getLogger(__name__)

REPOS_ROOT = "/workspace/repos"
DEFAULT_COMMAND_TIMEOUT_SECONDS = 1800

_UNSAFE_REPO_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


def sanitize_repo_name(full_name: str) -> str:
    """Turn ``owner/repo`` into a single safe directory name."""
    return _UNSAFE_REPO_CHARS.sub("-", full_name)


def build_clone_url(full_name: str, token: str) -> str:
    """HTTPS clone URL authenticated with an installation token.

    The result embeds the token and must never be logged.
    """
    return f"https://x-access-token:{quote(token, safe='')}@github.com/{full_name}.git"


class WorkspaceProvisioner:
    """Clones and updates repositories inside sandboxes.

    Attributes:
        repos_root: Directory holding one checkout per repository.
        command_timeout_seconds: Deadline for each git command.
    """

    def __init__(
        self,
        repos_root: str = REPOS_ROOT,
        command_timeout_seconds: int = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ):
        self.repos_root = repos_root
        self.command_timeout_seconds = command_timeout_seconds

    def repo_dir(self, repo: RepoContext) -> str:
        return f"{self.repos_root}/{sanitize_repo_name(repo.full_name)}"

    async def ensure_workspace(
        self,
        sandbox: Sandbox,
        repo: RepoContext,
        token: str,
    ) -> str:
        """Make sure the repository is checked out and up to date.

        Clones only when the checkout is missing. With a ref, the local
        branch is reset to ``origin/<ref>``; without one, origin is fetched.

        Args:
            sandbox: Sandbox to provision.
            repo: Repository and optional branch.
            token: Installation token used for the clone.

        Returns:
            Absolute path of the checkout inside the sandbox.

        Raises:
            ValueError: If no token is given.
            SandboxCommandError: If any git step fails.
        """
        if not token:
            raise ValueError("GitHub token is required for workspace clone")

        repo_dir = self.repo_dir(repo)
        clone_url = build_clone_url(repo.full_name, token)

        await self._run(sandbox, shell_join(["mkdir", "-p", self.repos_root]), "mkdir repos")
        await self._run(
            sandbox,
            f"if [ ! -d {shell_quote(repo_dir + '/.git')} ]; then "
            f"{shell_join(['git', 'clone', clone_url, repo_dir])}; fi",
            "git clone",
        )

        if repo.ref:
            await self._run(
                sandbox,
                shell_join(["git", "-C", repo_dir, "fetch", "origin", repo.ref]),
                "git fetch",
            )
            await self._run(
                sandbox,
                shell_join(
                    ["git", "-C", repo_dir, "checkout", "-B", repo.ref, f"origin/{repo.ref}"]
                ),
                "git checkout",
            )
        else:
            await self._run(
                sandbox,
                shell_join(["git", "-C", repo_dir, "fetch", "origin"]),
                "git fetch",
            )

        logger.info(
            "Workspace ready",
            extra={"repository": repo.full_name, "ref": repo.ref, "path": repo_dir},
        )
        return repo_dir

    async def _run(self, sandbox: Sandbox, command: str, command_name: str) -> str:
        return await run_shell(
            sandbox, command, command_name, self.command_timeout_seconds
        )
