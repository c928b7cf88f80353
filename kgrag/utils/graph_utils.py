"""Graph utility functions and shared records for kgrag"""

import json
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np
from loguru import logger

from kgrag.errors import MalformedDataError


def strip_think_tags(text: str) -> str:
    """
    Remove <think>...</think> tags from LLM output.

    Many LLMs (especially reasoning models) wrap their chain-of-thought
    in <think> tags. This function removes them to get the final answer.

    Args:
        text: LLM output text potentially containing think tags

    Returns:
        Text with think tags and their content removed
    """
    pattern = r"<think>.*?</think>"
    cleaned = re.sub(pattern, "", text, flags=re.DOTALL)
    return cleaned.strip()


class EntityType(str, Enum):
    """Closed set of entity types; UNKNOWN marks auto-created relation endpoints."""

    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    CONCEPT = "CONCEPT"
    TECHNOLOGY = "TECHNOLOGY"
    LOCATION = "LOCATION"
    EVENT = "EVENT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def coerce(cls, value: str | None, default: "EntityType | None" = None) -> "EntityType":
        """
        Map a free-form type tag onto the enumeration.

        UNKNOWN is never returned for a tag; it is reserved for placeholder
        entities created by the graph store.
        """
        default = default or cls.CONCEPT
        if not value:
            return default
        try:
            coerced = cls(str(value).strip().upper())
        except ValueError:
            logger.debug(f"Unrecognised entity type {value!r}, using {default.value}")
            return default
        if coerced is cls.UNKNOWN:
            return default
        return coerced


@dataclass
class Entity:
    """Represents an entity node in the knowledge graph."""

    id: str
    name: str
    type: str = EntityType.CONCEPT.value
    description: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Entity":
        return cls(**data)


@dataclass
class Relation:
    """Represents a directed, labelled relation between two entity ids."""

    source: str
    target: str
    relation: str
    evidence: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Relation":
        return cls(**data)


@dataclass
class ExtractionResult:
    """Entities and relations extracted from one chunk of text."""

    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relations": [r.to_dict() for r in self.relations],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractionResult":
        return cls(
            entities=[Entity.from_dict(e) for e in data.get("entities", [])],
            relations=[Relation.from_dict(r) for r in data.get("relations", [])],
        )


@dataclass
class ExtractedChunk:
    """Extraction result tagged with the chunk it came from."""

    chunk_id: str
    doc_id: str
    extraction: ExtractionResult

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "doc_id": self.doc_id,
            "extraction": self.extraction.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractedChunk":
        return cls(
            chunk_id=data["chunk_id"],
            doc_id=data.get("doc_id", ""),
            extraction=ExtractionResult.from_dict(data.get("extraction", {})),
        )


@dataclass
class EntityDetail:
    """Entity fields as returned by the graph store."""

    id: str
    name: str
    type: str
    description: str


@dataclass
class RelationDetail:
    """Relation triple with its evidence quote, as returned by the graph store."""

    source: str
    relation: str
    target: str
    evidence: str


@dataclass
class CommunitySummary:
    """Persisted summary of one detected community."""

    community_id: int
    entity_count: int
    summary: str
    key_entities: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CommunitySummary":
        if not isinstance(data, dict) or not isinstance(data.get("key_entities"), list):
            raise MalformedDataError(
                "Invalid community summary record: key_entities must be a list"
            )
        try:
            return cls(
                community_id=int(data["community_id"]),
                entity_count=int(data["entity_count"]),
                summary=str(data["summary"]),
                key_entities=[str(name) for name in data["key_entities"]],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedDataError(f"Invalid community summary record: {e}") from e


def save_json(data: Any, path: Path) -> None:
    """Save data to JSON file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    logger.debug(f"Saved JSON to {path}")


def load_json(path: Path) -> Any:
    """Load data from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def split_entity_ids(serialized: str) -> list[str]:
    """Split a comma-joined entity id list, dropping empty items."""
    ids = []
    for item in serialized.split(","):
        item = item.strip()
        if item:
            ids.append(item)
    return ids


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """
    Cosine similarity between two vectors.

    A zero-magnitude vector scores 0.0 against anything.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise MalformedDataError(
            f"Embedding dimensions differ: {va.shape[0]} vs {vb.shape[0]}"
        )
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))
