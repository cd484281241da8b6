"""Per-run cache of project labels and content.

A project can be processed by more than one phase in a run (e.g. active and
initiative-linked). Its labels/content are fetched from Linear at most once.
"""

import asyncio
import logging

from pulse.connectors.linear.client import LinearClient, ProjectData

logger = logging.getLogger("pulse.sync.project_cache")

__all__ = ["ProjectDataCache"]


class ProjectDataCache:
    def __init__(self) -> None:
        self._data: dict[str, ProjectData] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._data

    def __len__(self) -> int:
        return len(self._data)

    async def get(self, client: LinearClient, project_id: str) -> ProjectData:
        """Return cached data, fetching it from Linear on first use.

        Concurrent callers for the same project share one fetch. Errors
        (including RateLimitError) propagate and nothing is cached.
        """
        if project_id in self._data:
            return self._data[project_id]
        lock = self._locks.setdefault(project_id, asyncio.Lock())
        async with lock:
            if project_id not in self._data:
                self._data[project_id] = await client.fetch_project_data(project_id)
        return self._data[project_id]

    def labels_map(self) -> dict[str, list[str]]:
        return {pid: list(data.labels) for pid, data in self._data.items()}

    def content_map(self) -> dict[str, str | None]:
        return {pid: data.content for pid, data in self._data.items()}
