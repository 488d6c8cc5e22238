from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from swarm.errors import SwarmError


class BackendExecutionError(SwarmError):
    """Raised when a backend process execution fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code


class BackendTimeoutError(BackendExecutionError):
    """Raised when backend execution exceeds configured timeout."""


class BackendProcessError(BackendExecutionError):
    """Raised when backend process lifecycle fails."""


class AgentBackend(ABC):
    """Text generation service prompted by role agents.

    Instances travel to worker processes with the agent that owns them, so
    they hold plain configuration only.
    """

    name: str = "backend"

    @abstractmethod
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        """Execute an agent and stream textual chunks."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
        *,
        timeout_seconds: float | None = None,
    ) -> str:
        async def _consume() -> list[str]:
            chunks: list[str] = []
            async for chunk in self.execute(system_prompt, user_prompt, context):
                chunks.append(chunk)
            return chunks

        try:
            chunks = await asyncio.wait_for(_consume(), timeout=timeout_seconds)
        except TimeoutError as exc:
            raise BackendTimeoutError(
                f"Backend request timed out after {timeout_seconds:.1f}s",
                backend=self.name,
            ) from exc
        return "".join(chunks).strip()
