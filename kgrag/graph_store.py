"""
Graph Store Module

Narrow asynchronous interface to the system of record for entities,
relations and community assignments, with two backends:
- NetworkXGraphStore: in-memory NetworkX graph with JSON persistence
- Neo4jGraphStore: Neo4j database accessed through the async driver
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import networkx as nx
from loguru import logger
from neo4j import AsyncGraphDatabase
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from kgrag.errors import CollaboratorUnavailableError, MalformedDataError
from kgrag.utils.graph_utils import (EntityDetail, EntityType, RelationDetail,
                                     load_json, save_json)

PLACEHOLDER_DESCRIPTION = "Auto-created"


class GraphStore(ABC):
    """Operations the retrieval core needs from the entity/relation graph."""

    @abstractmethod
    async def upsert_entity(
        self, entity_id: str, name: str, entity_type: str, description: str
    ) -> None:
        """Create the entity or overwrite its fields."""

    @abstractmethod
    async def upsert_relation(
        self, source: str, target: str, label: str, evidence: str
    ) -> None:
        """Create or update a relation, auto-creating missing endpoints."""

    @abstractmethod
    async def all_relations(self) -> list[tuple[str, str]]:
        """Return (source_id, target_id) for every relation."""

    @abstractmethod
    async def entity_details(self, entity_ids: list[str]) -> list[EntityDetail]:
        """Return details for the known entities among entity_ids."""

    @abstractmethod
    async def relations_within(
        self, entity_ids: list[str], limit: int
    ) -> list[RelationDetail]:
        """Return up to limit relations whose endpoints are both in entity_ids."""

    @abstractmethod
    async def neighbors(self, entity_ids: list[str]) -> list[str]:
        """Return distinct neighbours of entity_ids in either relation direction."""

    @abstractmethod
    async def set_community(self, entity_id: str, community_id: int) -> None:
        """Record the community assignment of an entity."""

    @abstractmethod
    async def count_entities(self) -> int:
        """Number of entities in the store."""

    @abstractmethod
    async def count_relations(self) -> int:
        """Number of relations in the store."""

    async def close(self) -> None:
        """Release any connections held by the store."""


class NetworkXGraphStore(GraphStore):
    """
    Graph store backed by an in-memory NetworkX multigraph.

    Relations are keyed by (source, target, label), so re-upserting the same
    triple updates its evidence instead of adding a parallel edge.
    """

    def __init__(self):
        """Initialize an empty graph."""
        self.graph = nx.MultiDiGraph()

    def _ensure_entity(self, entity_id: str) -> None:
        if entity_id not in self.graph:
            self.graph.add_node(
                entity_id,
                name=entity_id,
                type=EntityType.UNKNOWN.value,
                description=PLACEHOLDER_DESCRIPTION,
            )
            logger.debug(f"Auto-created placeholder entity {entity_id!r}")

    async def upsert_entity(
        self, entity_id: str, name: str, entity_type: str, description: str
    ) -> None:
        self.graph.add_node(
            entity_id, name=name, type=entity_type, description=description
        )

    async def upsert_relation(
        self, source: str, target: str, label: str, evidence: str
    ) -> None:
        self._ensure_entity(source)
        self._ensure_entity(target)
        self.graph.add_edge(source, target, key=label, relation=label, evidence=evidence)

    async def all_relations(self) -> list[tuple[str, str]]:
        return [(source, target) for source, target in self.graph.edges()]

    async def entity_details(self, entity_ids: list[str]) -> list[EntityDetail]:
        details = []
        for entity_id in dict.fromkeys(entity_ids):
            if entity_id not in self.graph:
                continue
            data = self.graph.nodes[entity_id]
            details.append(
                EntityDetail(
                    id=entity_id,
                    name=data.get("name", entity_id),
                    type=data.get("type", EntityType.UNKNOWN.value),
                    description=data.get("description", ""),
                )
            )
        return details

    async def relations_within(
        self, entity_ids: list[str], limit: int
    ) -> list[RelationDetail]:
        members = set(entity_ids)
        relations = []
        for source, target, key, data in self.graph.edges(keys=True, data=True):
            if len(relations) >= limit:
                break
            if source in members and target in members:
                relations.append(
                    RelationDetail(
                        source=source,
                        relation=data.get("relation", key),
                        target=target,
                        evidence=data.get("evidence", ""),
                    )
                )
        return relations

    async def neighbors(self, entity_ids: list[str]) -> list[str]:
        found: dict[str, None] = {}
        for entity_id in entity_ids:
            if entity_id not in self.graph:
                continue
            for neighbor in self.graph.successors(entity_id):
                found[neighbor] = None
            for neighbor in self.graph.predecessors(entity_id):
                found[neighbor] = None
        return list(found)

    async def set_community(self, entity_id: str, community_id: int) -> None:
        if entity_id in self.graph:
            self.graph.nodes[entity_id]["community_id"] = community_id

    async def count_entities(self) -> int:
        return self.graph.number_of_nodes()

    async def count_relations(self) -> int:
        return self.graph.number_of_edges()

    def save(self, path: Path) -> None:
        """
        Save graph to JSON files.

        Args:
            path: Directory to save graph files
        """
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)

        nodes_data = [{"id": node_id, **data} for node_id, data in self.graph.nodes(data=True)]
        save_json(nodes_data, path / "nodes.json")

        edges_data = [
            {"source": source, "target": target, **data}
            for source, target, data in self.graph.edges(data=True)
        ]
        save_json(edges_data, path / "edges.json")

        logger.info(
            f"Saved graph to {path}: {self.graph.number_of_nodes()} entities, "
            f"{self.graph.number_of_edges()} relations"
        )

    @classmethod
    def load(cls, path: Path) -> "NetworkXGraphStore":
        """
        Load graph from JSON files.

        Args:
            path: Directory containing graph files

        Returns:
            Loaded NetworkXGraphStore (empty if the files do not exist)
        """
        path = Path(path)
        store = cls()

        nodes_path = path / "nodes.json"
        if nodes_path.exists():
            for node in load_json(nodes_path):
                node_id = node.pop("id")
                store.graph.add_node(node_id, **node)

        edges_path = path / "edges.json"
        if edges_path.exists():
            for edge in load_json(edges_path):
                source = edge.pop("source")
                target = edge.pop("target")
                store.graph.add_edge(source, target, key=edge.get("relation"), **edge)

        logger.info(
            f"Loaded graph from {path}: {store.graph.number_of_nodes()} entities, "
            f"{store.graph.number_of_edges()} relations"
        )
        return store


def _required(record: Any, key: str) -> Any:
    """Read a non-null field from a Neo4j record."""
    try:
        value = record[key]
    except KeyError as e:
        raise MalformedDataError(f"Neo4j record is missing field {key!r}") from e
    if value is None:
        raise MalformedDataError(f"Neo4j record has null field {key!r}")
    return value


def _optional(record: Any, key: str, default: Any) -> Any:
    value = record.get(key)
    return default if value is None else value


class Neo4jGraphStore(GraphStore):
    """Graph store backed by Neo4j (:Entity nodes joined by :RELATION edges)."""

    def __init__(self, uri: str, user: str, password: str, database: str | None = None):
        """
        Initialize the Neo4j driver.

        Args:
            uri: Bolt URI of the database
            user: Neo4j user name
            password: Neo4j password
            database: Database name (server default when None)
        """
        self.database = database
        self._driver = AsyncGraphDatabase.driver(uri, auth=(user, password))
        logger.info(f"Initialized Neo4jGraphStore at {uri}")

    async def _run(self, query: str, **params: Any) -> list:
        try:
            records, _, _ = await self._driver.execute_query(
                query, parameters_=params, database_=self.database
            )
        except (ServiceUnavailable, SessionExpired, OSError) as e:
            raise CollaboratorUnavailableError("neo4j", str(e)) from e
        return records

    async def init_schema(self) -> None:
        """Create indexes on Entity.id and Entity.name."""
        await self._run(
            "CREATE INDEX entity_id_index IF NOT EXISTS FOR (e:Entity) ON (e.id)"
        )
        await self._run(
            "CREATE INDEX entity_name_index IF NOT EXISTS FOR (e:Entity) ON (e.name)"
        )
        logger.info("Neo4j indexes created")

    async def upsert_entity(
        self, entity_id: str, name: str, entity_type: str, description: str
    ) -> None:
        await self._run(
            """
            MERGE (e:Entity {id: $id})
            SET e.name = $name,
                e.type = $type,
                e.description = $description
            """,
            id=entity_id,
            name=name,
            type=entity_type,
            description=description,
        )

    async def _ensure_entity(self, entity_id: str) -> None:
        await self._run(
            """
            MERGE (e:Entity {id: $id})
            ON CREATE SET e.name = $id, e.type = $type, e.description = $description
            """,
            id=entity_id,
            type=EntityType.UNKNOWN.value,
            description=PLACEHOLDER_DESCRIPTION,
        )

    async def upsert_relation(
        self, source: str, target: str, label: str, evidence: str
    ) -> None:
        await self._ensure_entity(source)
        await self._ensure_entity(target)
        await self._run(
            """
            MATCH (source:Entity {id: $source_id})
            MATCH (target:Entity {id: $target_id})
            MERGE (source)-[r:RELATION {type: $relation_type}]->(target)
            SET r.evidence = $evidence
            """,
            source_id=source,
            target_id=target,
            relation_type=label,
            evidence=evidence,
        )

    async def all_relations(self) -> list[tuple[str, str]]:
        records = await self._run(
            """
            MATCH (source:Entity)-[r:RELATION]->(target:Entity)
            RETURN source.id AS source_id, target.id AS target_id
            """
        )
        return [
            (_required(record, "source_id"), _required(record, "target_id"))
            for record in records
        ]

    async def entity_details(self, entity_ids: list[str]) -> list[EntityDetail]:
        if not entity_ids:
            return []
        records = await self._run(
            """
            MATCH (e:Entity)
            WHERE e.id IN $entity_ids
            RETURN e.id AS id, e.name AS name, e.type AS type, e.description AS description
            """,
            entity_ids=list(entity_ids),
        )
        details = []
        for record in records:
            entity_id = _required(record, "id")
            details.append(
                EntityDetail(
                    id=entity_id,
                    name=_optional(record, "name", entity_id),
                    type=_optional(record, "type", EntityType.UNKNOWN.value),
                    description=_optional(record, "description", ""),
                )
            )
        return details

    async def relations_within(
        self, entity_ids: list[str], limit: int
    ) -> list[RelationDetail]:
        if not entity_ids:
            return []
        records = await self._run(
            """
            MATCH (source:Entity)-[r:RELATION]->(target:Entity)
            WHERE source.id IN $entity_ids AND target.id IN $entity_ids
            RETURN source.id AS source, r.type AS relation,
                   target.id AS target, r.evidence AS evidence
            LIMIT $limit
            """,
            entity_ids=list(entity_ids),
            limit=limit,
        )
        return [
            RelationDetail(
                source=_required(record, "source"),
                relation=_required(record, "relation"),
                target=_required(record, "target"),
                evidence=_optional(record, "evidence", ""),
            )
            for record in records
        ]

    async def neighbors(self, entity_ids: list[str]) -> list[str]:
        if not entity_ids:
            return []
        records = await self._run(
            """
            MATCH (e:Entity)-[r:RELATION]-(neighbor:Entity)
            WHERE e.id IN $entity_ids
            RETURN DISTINCT neighbor.id AS neighbor_id
            """,
            entity_ids=list(entity_ids),
        )
        return [_required(record, "neighbor_id") for record in records]

    async def set_community(self, entity_id: str, community_id: int) -> None:
        await self._run(
            "MATCH (e:Entity {id: $id}) SET e.community_id = $community_id",
            id=entity_id,
            community_id=community_id,
        )

    async def count_entities(self) -> int:
        records = await self._run("MATCH (e:Entity) RETURN count(e) AS count")
        return int(_required(records[0], "count")) if records else 0

    async def count_relations(self) -> int:
        records = await self._run(
            "MATCH ()-[r:RELATION]->() RETURN count(r) AS count"
        )
        return int(_required(records[0], "count")) if records else 0

    async def close(self) -> None:
        await self._driver.close()


def create_graph_store(cfg) -> GraphStore:
    """Create the configured GraphStore backend from config."""
    backend = cfg.GRAPH_STORE.backend
    if backend == "neo4j":
        return Neo4jGraphStore(
            uri=cfg.GRAPH_STORE.uri,
            user=cfg.GRAPH_STORE.user,
            password=cfg.GRAPH_STORE.password,
            database=cfg.GRAPH_STORE.get("database"),
        )
    if backend == "networkx":
        return NetworkXGraphStore.load(Path(cfg.PATHS.graph_db_dir))
    raise ValueError(f"Unknown graph store backend: {backend}")
