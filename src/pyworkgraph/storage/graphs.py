"""
GraphStore - persists WorkGraphs in a KeyValueStore.

Key layout (project-scoped):
- workgraph:{project}:graph:{graph_id}   snapshot dict of the graph
- workgraph:{project}:graphs             list of known graph ids
"""

from __future__ import annotations

import asyncio
import logging

from pyworkgraph.models import WorkGraph
from pyworkgraph.storage.base import KeyValueStore
from pyworkgraph.storage.codec import graph_from_dict, graph_to_dict

logger = logging.getLogger(__name__)


class GraphStore:
    """Save and load graphs by id within one project namespace."""

    def __init__(self, storage: KeyValueStore, project_id: str = "default"):
        self._storage = storage
        self._project_id = project_id
        self._index_lock = asyncio.Lock()

    @property
    def project_id(self) -> str:
        return self._project_id

    # Key builders

    @staticmethod
    def graph_key(project_id: str, graph_id: str) -> str:
        return f"workgraph:{project_id}:graph:{graph_id}"

    @staticmethod
    def index_key(project_id: str) -> str:
        return f"workgraph:{project_id}:graphs"

    async def save(self, graph: WorkGraph) -> None:
        await self._storage.set(self.graph_key(self._project_id, graph.id), graph_to_dict(graph))

        async with self._index_lock:
            index = await self._storage.get(self.index_key(self._project_id), [])
            if graph.id not in index:
                index.append(graph.id)
                await self._storage.set(self.index_key(self._project_id), index)

    async def load(self, graph_id: str) -> WorkGraph | None:
        """Load a graph, None if it was never saved.

        Raises:
            IntegrityError: If the stored snapshot is corrupt
        """
        data = await self._storage.get(self.graph_key(self._project_id, graph_id))
        if data is None:
            return None
        return graph_from_dict(data)

    async def delete(self, graph_id: str) -> None:
        await self._storage.delete(self.graph_key(self._project_id, graph_id))
        async with self._index_lock:
            index = await self._storage.get(self.index_key(self._project_id), [])
            if graph_id in index:
                index.remove(graph_id)
                await self._storage.set(self.index_key(self._project_id), index)
        logger.debug(f"Deleted graph {graph_id} from project {self._project_id}")

    async def list_ids(self) -> list[str]:
        return list(await self._storage.get(self.index_key(self._project_id), []))
