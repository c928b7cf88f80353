"""
Graph Export Module

Materializes the persisted relation graph into a dense, index-based
snapshot for clustering, and fetches entity/relation details for
subsets of entities on demand.
"""

from dataclasses import dataclass, field

from loguru import logger

from kgrag.graph_store import GraphStore
from kgrag.utils.graph_utils import EntityDetail, RelationDetail


@dataclass
class GraphData:
    """
    Index-based graph snapshot.

    entities[i] is the id of node i, entity_to_idx is its inverse, and every
    edge is a (source_idx, target_idx) pair into entities.
    """

    entities: list[str] = field(default_factory=list)
    edges: list[tuple[int, int]] = field(default_factory=list)
    entity_to_idx: dict[str, int] = field(default_factory=dict)

    @property
    def num_nodes(self) -> int:
        return len(self.entities)

    @property
    def num_edges(self) -> int:
        return len(self.edges)

    def add_entity(self, entity_id: str) -> int:
        """Return the index of entity_id, assigning the next one if new."""
        idx = self.entity_to_idx.get(entity_id)
        if idx is not None:
            return idx
        idx = len(self.entities)
        self.entities.append(entity_id)
        self.entity_to_idx[entity_id] = idx
        return idx

    def add_edge(self, source: int, target: int) -> None:
        """Add a directed edge between two existing indices."""
        n = len(self.entities)
        if not (0 <= source < n and 0 <= target < n):
            raise IndexError(f"Edge ({source}, {target}) outside 0..{n - 1}")
        self.edges.append((source, target))


class GraphExporter:
    """Reads the graph store into GraphData and community detail subsets."""

    def __init__(self, graph_store: GraphStore):
        self.graph_store = graph_store

    async def export_graph(self) -> GraphData:
        """
        Export every relation from the graph store.

        Entities are indexed in the order they first appear as a relation
        endpoint; entities without relations are not part of the snapshot.

        Returns:
            Fresh GraphData snapshot
        """
        graph_data = GraphData()

        for source_id, target_id in await self.graph_store.all_relations():
            source_idx = graph_data.add_entity(source_id)
            target_idx = graph_data.add_entity(target_id)
            graph_data.add_edge(source_idx, target_idx)

        logger.info(
            f"Exported graph: {graph_data.num_nodes} entities, {graph_data.num_edges} edges"
        )
        return graph_data

    async def get_community_entities(self, entity_ids: list[str]) -> list[EntityDetail]:
        """Fetch entity details for the members of a community."""
        return await self.graph_store.entity_details(entity_ids)

    async def get_community_relations(
        self, entity_ids: list[str], limit: int = 20
    ) -> list[RelationDetail]:
        """Fetch up to limit relations between members of a community."""
        return await self.graph_store.relations_within(entity_ids, limit)
