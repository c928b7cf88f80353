"""
Community Detection Module

Uses single-level Louvain local moves to partition the entity graph.
Communities are groups of densely connected entities that can be summarized together.
"""

from pathlib import Path

import numpy as np
from loguru import logger
from tqdm import tqdm

from kgrag.community_summarizer import (CommunitySummarizer,
                                        save_community_summaries)
from kgrag.graph_export import GraphData, GraphExporter
from kgrag.graph_store import GraphStore
from kgrag.utils.graph_utils import CommunitySummary


class LouvainDetector:
    """
    Modularity optimization by greedy local moves.

    Only the local-move phase of Louvain is run; communities are never
    aggregated into super-nodes, so hierarchical structure in large graphs
    is under-detected. Ties between candidate communities go to the lowest
    community id, and a node only moves for a strictly positive gain.
    """

    def __init__(self, graph: GraphData, max_iterations: int = 10):
        """
        Initialize the detector.

        Args:
            graph: Graph snapshot to partition
            max_iterations: Maximum number of full passes over the nodes
        """
        self.graph = graph
        self.max_iterations = max_iterations
        self.iterations = 0

    def _build_adjacency(self) -> list[dict[int, float]]:
        adjacency: list[dict[int, float]] = [{} for _ in range(self.graph.num_nodes)]
        for source, target in self.graph.edges:
            adjacency[source][target] = adjacency[source].get(target, 0.0) + 1.0
            adjacency[target][source] = adjacency[target].get(source, 0.0) + 1.0
        return adjacency

    def detect_communities(self) -> dict[str, int]:
        """
        Run community detection.

        Returns:
            Mapping from entity id to a community id in 0..k-1
        """
        n = self.graph.num_nodes
        if n == 0:
            return {}

        adjacency = self._build_adjacency()
        degrees = np.array([sum(weights.values()) for weights in adjacency], dtype=float)
        m = float(self.graph.num_edges)

        communities = np.arange(n)
        improved = True
        iteration = 0

        while improved and iteration < self.max_iterations and m > 0:
            improved = False
            iteration += 1

            for node in range(n):
                current = int(communities[node])

                # Edge weight from this node into each neighbouring community
                weight_to: dict[int, float] = {}
                for neighbor, weight in adjacency[node].items():
                    comm = int(communities[neighbor])
                    weight_to[comm] = weight_to.get(comm, 0.0) + weight

                best_comm = current
                best_gain = 0.0
                for comm in sorted(weight_to):
                    if comm == current:
                        continue
                    gain = self._modularity_gain(
                        node, current, comm, communities, degrees, weight_to, m
                    )
                    if gain > best_gain:
                        best_gain = gain
                        best_comm = comm

                if best_comm != current:
                    communities[node] = best_comm
                    improved = True

            logger.debug(f"Louvain pass {iteration}: improved={improved}")

        self.iterations = iteration

        renumber = {old: new for new, old in enumerate(sorted(set(communities.tolist())))}
        result = {
            entity_id: renumber[int(communities[idx])]
            for idx, entity_id in enumerate(self.graph.entities)
        }

        logger.info(
            f"Detected {len(renumber)} communities among {n} entities "
            f"in {iteration} iterations"
        )
        return result

    @staticmethod
    def _modularity_gain(
        node: int,
        from_comm: int,
        to_comm: int,
        communities: np.ndarray,
        degrees: np.ndarray,
        weight_to: dict[int, float],
        m: float,
    ) -> float:
        """Modularity change from moving node out of from_comm into to_comm."""
        k_i = degrees[node]
        k_i_to = weight_to.get(to_comm, 0.0)
        k_i_from = weight_to.get(from_comm, 0.0)

        sigma_to = float(degrees[communities == to_comm].sum())
        sigma_from = float(degrees[communities == from_comm].sum())

        return (k_i_to - k_i_from) / (2.0 * m) - (
            k_i * (sigma_to - sigma_from + k_i)
        ) / (2.0 * m * m)


def group_by_community(communities: dict[str, int]) -> dict[int, list[str]]:
    """Invert an entity -> community mapping, ordered by community id."""
    groups: dict[int, list[str]] = {}
    for entity_id, community_id in communities.items():
        groups.setdefault(community_id, []).append(entity_id)
    return {community_id: groups[community_id] for community_id in sorted(groups)}


class CommunityDetector:
    """
    Detects communities in the graph store and writes the assignment back.
    """

    def __init__(
        self,
        graph_store: GraphStore,
        summarizer: CommunitySummarizer | None = None,
        max_iterations: int = 10,
        relation_limit: int = 20,
    ):
        """
        Initialize community detector.

        Args:
            graph_store: Store holding entities and relations
            summarizer: Summarizer used by detect_and_summarize
            max_iterations: Louvain pass cap
            relation_limit: Relations fetched per community for summarization
        """
        self.graph_store = graph_store
        self.exporter = GraphExporter(graph_store)
        self.summarizer = summarizer
        self.max_iterations = max_iterations
        self.relation_limit = relation_limit

    async def detect(self) -> dict[str, int]:
        """
        Export the graph, run Louvain and persist the assignment.

        Returns:
            Mapping from entity id to community id
        """
        graph_data = await self.exporter.export_graph()

        if graph_data.num_nodes == 0:
            logger.warning("No entities found in graph, skipping community detection")
            return {}

        detector = LouvainDetector(graph_data, max_iterations=self.max_iterations)
        communities = detector.detect_communities()

        await self.assign_communities(communities)
        return communities

    async def assign_communities(self, communities: dict[str, int]) -> None:
        """
        Write community ids to the graph store, one entity at a time.

        The writes are not a transaction; rerunning detection overwrites
        any partially applied assignment.
        """
        for entity_id, community_id in communities.items():
            await self.graph_store.set_community(entity_id, community_id)
        logger.info(f"Assigned communities to {len(communities)} entities")

    async def detect_and_summarize(
        self,
        output_dir: Path | None = None,
        show_progress: bool = True,
    ) -> list[CommunitySummary]:
        """
        Detect communities and generate one summary per community.

        Args:
            output_dir: Directory receiving one JSON file per community
            show_progress: Whether to show progress bar

        Returns:
            Summaries ordered by community id
        """
        if self.summarizer is None:
            raise ValueError("detect_and_summarize requires a CommunitySummarizer")

        communities = await self.detect()
        groups = group_by_community(communities)

        iterator = (
            tqdm(groups.items(), desc="Summarizing communities")
            if show_progress
            else groups.items()
        )

        summaries = []
        for community_id, entity_ids in iterator:
            logger.debug(f"Processing community {community_id} ({len(entity_ids)} entities)")
            entities = await self.exporter.get_community_entities(entity_ids)
            relations = await self.exporter.get_community_relations(
                entity_ids, limit=self.relation_limit
            )
            summary = await self.summarizer.summarize_community(
                community_id, entities, relations
            )
            summaries.append(summary)

        if output_dir is not None:
            save_community_summaries(summaries, Path(output_dir))

        logger.info(f"Generated summaries for {len(summaries)} communities")
        return summaries


def create_detector(
    cfg, graph_store: GraphStore, summarizer: CommunitySummarizer | None = None
) -> CommunityDetector:
    """Create a CommunityDetector from config."""
    return CommunityDetector(
        graph_store=graph_store,
        summarizer=summarizer,
        max_iterations=cfg.COMMUNITY.max_iterations,
        relation_limit=cfg.COMMUNITY.relation_limit,
    )
