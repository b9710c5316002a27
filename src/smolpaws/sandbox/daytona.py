"""Daytona implementation of the sandbox provider."""

import logging
from typing import Any, Optional

from daytona import AsyncDaytona, CreateSandboxFromSnapshotParams, DaytonaConfig

from src.smolpaws.sandbox.models import ExecResult
from src.smolpaws.sandbox.provider import SandboxError

logger = logging.getLogger(__name__)


class DaytonaSandbox:
    """Adapts a Daytona sandbox to the ``Sandbox`` protocol."""

    def __init__(self, client: AsyncDaytona, sandbox: Any):
        self._client = client
        self._sandbox = sandbox

    @property
    def id(self) -> str:
        return self._sandbox.id

    async def exec(self, command: str, timeout: Optional[int] = None) -> ExecResult:
        response = await self._sandbox.process.exec(command, timeout=timeout)
        exit_code = response.exit_code if isinstance(response.exit_code, int) else 0
        return ExecResult(exit_code=exit_code, output=response.result or "")

    async def delete(self) -> None:
        logger.info("Deleting Daytona sandbox", extra={"sandbox_id": self.id})
        await self._client.delete(self._sandbox)


class DaytonaProvider:
    """Creates Daytona sandboxes.

    Attributes:
        language: Sandbox language image.
    """

    def __init__(
        self,
        api_key: str,
        api_url: Optional[str] = None,
        target: Optional[str] = None,
        language: str = "python",
    ):
        self._client = AsyncDaytona(
            DaytonaConfig(api_key=api_key, api_url=api_url, target=target)
        )
        self.language = language

    async def create(self, auto_stop_minutes: int) -> DaytonaSandbox:
        """Create a sandbox.

        Raises:
            SandboxError: If Daytona rejects the request.
        """
        params = CreateSandboxFromSnapshotParams(
            language=self.language,
            auto_stop_interval=auto_stop_minutes,
        )
        try:
            sandbox = await self._client.create(params)
        except Exception as exc:
            raise SandboxError(f"Failed to create Daytona sandbox: {exc}") from exc

        logger.info(
            "Daytona sandbox created",
            extra={"sandbox_id": sandbox.id, "auto_stop_minutes": auto_stop_minutes},
        )
        return DaytonaSandbox(self._client, sandbox)

    async def close(self) -> None:
        await self._client.close()
