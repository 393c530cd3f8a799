"""HTTP client for prompt sets (the source of agent prompt templates).

Results are cached per ``(workspace_id, skill)`` to avoid repeated network
calls while an agent runs.
"""

from __future__ import annotations

import httpx

from semflow.config import get_settings
from semflow.models.services import PromptSet


class PromptSetsError(Exception):
    """Exception raised when prompt sets cannot be loaded."""
    pass


class HttpPromptSetsClient:
    """``PromptSetsService`` over the prompt sets HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: Base URL of the prompt sets server
            timeout: HTTP request timeout in seconds
            transport: optional httpx transport, e.g. for a mock server
        """
        settings = get_settings()
        self.base_url = (base_url or settings.prompt_sets_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self.transport = transport
        self._cache: dict[tuple[int | None, str], list[PromptSet]] = {}

    async def get_prompt_sets_by_skill(self, workspace_id: int | None, skill: str) -> list[PromptSet]:
        cache_key = (workspace_id, skill)
        if cache_key in self._cache:
            return self._cache[cache_key]

        url = f"{self.base_url}/api/workspaces/{workspace_id}/prompt-sets"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, params={"skill": skill})
                if response.status_code == 404:
                    return []
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise PromptSetsError(
                f"Failed to load prompt sets for skill {skill!r}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise PromptSetsError(
                f"Failed to connect to server at {self.base_url}: {e}"
            ) from e

        prompt_sets = [PromptSet.model_validate(item) for item in data]
        self._cache[cache_key] = prompt_sets
        return prompt_sets

    def clear_cache(self) -> None:
        self._cache.clear()
