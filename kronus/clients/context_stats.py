"""Client for the per-section token cost collaborator."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from kronus.chat.token_budget import FALLBACK_CONTEXT_STATS, ContextStats

logger = logging.getLogger(__name__)


class ContextStatsClient:
    """Fetches ContextStats, degrading to the fallback figures on failure."""

    def __init__(self, http_client: httpx.AsyncClient, url: str | None) -> None:
        self.http_client = http_client
        self.url = url
        self._last_stats: ContextStats | None = None

    async def get_stats(self) -> ContextStats:
        """
        Get current section costs.

        Returns:
            Fresh stats, else the last good response, else FALLBACK_CONTEXT_STATS.
        """
        if not self.url:
            return self._last_stats or FALLBACK_CONTEXT_STATS

        try:
            response = await self.http_client.get(self.url)
            response.raise_for_status()
            stats = ContextStats.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.warning(f"Context stats unavailable, using fallback: {e}")
            return self._last_stats or FALLBACK_CONTEXT_STATS

        self._last_stats = stats
        return stats
