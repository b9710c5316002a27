"""Reuse-key → sandbox map with single-flight creation.

Concurrent requests for the same reuse key wait on a per-key lock, so at
most one sandbox is ever created per key. Entries live for the process
lifetime or until a run on them fails; the provider's auto-stop interval
reclaims idle sandboxes.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from src.smolpaws.sandbox.provider import Sandbox

logger = logging.getLogger(__name__)

SandboxFactory = Callable[[], Awaitable[Sandbox]]


class SandboxCache:
    """Process-local cache of running sandboxes keyed by reuse key."""

    def __init__(self) -> None:
        self._sandboxes: Dict[str, Sandbox] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sandboxes)

    def __contains__(self, reuse_key: object) -> bool:
        return reuse_key in self._sandboxes

    def get(self, reuse_key: str) -> Optional[Sandbox]:
        return self._sandboxes.get(reuse_key)

    async def get_or_create(self, reuse_key: str, factory: SandboxFactory) -> Sandbox:
        """Return the cached sandbox for a key, creating it at most once.

        Args:
            reuse_key: Key grouping the messages that share a sandbox.
            factory: Coroutine function creating a new sandbox.

        Returns:
            The sandbox bound to the key.

        Raises:
            Exception: Whatever the factory raises; nothing is cached then and
                the next caller tries again.
        """
        cached = self._sandboxes.get(reuse_key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(reuse_key, asyncio.Lock())
        async with lock:
            cached = self._sandboxes.get(reuse_key)
            if cached is not None:
                return cached

            sandbox = await factory()
            self._sandboxes[reuse_key] = sandbox
            logger.info("Sandbox cached", extra={"reuse_key": reuse_key})
            return sandbox

    def evict(self, reuse_key: str, sandbox: Optional[Sandbox] = None) -> Optional[Sandbox]:
        """Drop a key from the cache and return its sandbox, if any.

        When ``sandbox`` is given the entry is only dropped while it still
        maps to that sandbox, so a replacement created meanwhile survives.
        The per-key lock is kept for callers already waiting on it.
        """
        cached = self._sandboxes.get(reuse_key)
        if cached is None or (sandbox is not None and cached is not sandbox):
            return None
        del self._sandboxes[reuse_key]
        logger.info("Sandbox evicted", extra={"reuse_key": reuse_key})
        return cached
