"""
Entity and Relationship Extraction Module

Uses LLM to extract entities and relations from text chunks and
resolves every entity mention to a canonical id through the shared
EntityNormalizer before the results reach the graph store.
"""

import json
import re
from pathlib import Path
from typing import Protocol

from loguru import logger
from tqdm import tqdm

from kgrag.entity_normalizer import EntityNormalizer
from kgrag.errors import MalformedDataError
from kgrag.graph_store import GraphStore
from kgrag.utils.graph_utils import (Entity, EntityType, ExtractedChunk,
                                     ExtractionResult, Relation, load_json,
                                     save_json)

ENTITY_EXTRACTION_PROMPT = """Extract entities and relationships from the following text.

INSTRUCTIONS:
1. Identify key entities (people, organizations, concepts, technologies, locations, events)
2. Extract relationships between entities
3. Output ONLY valid JSON, nothing else
4. Use the exact schema below

SCHEMA:
{{
  "entities": [
    {{"id": "E1", "name": "EntityName", "type": "{entity_types}", "description": "brief description"}}
  ],
  "relations": [
    {{"source": "E1", "target": "E2", "relation": "relationship_type", "evidence": "quote from text"}}
  ]
}}

RULES:
- Use sequential IDs: E1, E2, E3, etc.
- Entity types must be one of: {entity_type_list}
- Relation types should be verbs: "creates", "uses", "affects", "manages", "contains", etc.
- Evidence must be a direct quote from the text
- Output ONLY the JSON object, no markdown, no explanations

TEXT:
{text}

JSON OUTPUT:"""

RETRY_PROMPT = """The following JSON is invalid:

{invalid_json}

Fix this JSON. Output only valid JSON with no markdown formatting, no code blocks, no explanations. Just the raw JSON object."""

EXTRACTABLE_TYPES = [t.value for t in EntityType if t is not EntityType.UNKNOWN]


class StructuredLLMService(Protocol):
    async def generate_json(self, prompt: str) -> str: ...


def repair_json(json_str: str) -> str:
    """Attempt to repair common JSON formatting issues from LLM output."""
    # Remove trailing commas before } or ]
    json_str = re.sub(r",\s*([}\]])", r"\1", json_str)

    # Fix unquoted keys
    json_str = re.sub(r"(\{|\,)\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*:", r'\1 "\2":', json_str)

    # Remove control characters except newlines and tabs
    json_str = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", json_str)

    return json_str


def extract_json_from_response(response: str) -> dict | None:
    """
    Extract a JSON object from LLM response, handling code fences and noise.

    Returns:
        Parsed object, or None if no valid JSON object could be recovered
    """
    # Strategy 1: JSON in a markdown code block
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", response, re.DOTALL)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except json.JSONDecodeError:
            pass

    # Strategy 2: outermost JSON object, repaired if necessary
    start = response.find("{")
    end = response.rfind("}")
    if start != -1 and end > start:
        candidate = response[start : end + 1]
        for attempt in (candidate, repair_json(candidate)):
            try:
                parsed = json.loads(attempt)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed

    return None


class EntityExtractor:
    """Extracts entities and relations from text using LLM."""

    def __init__(
        self,
        llm: StructuredLLMService,
        normalizer: EntityNormalizer,
        max_retries: int = 3,
        cache_dir: Path | None = None,
    ):
        """
        Initialize the entity extractor.

        Args:
            llm: Service producing JSON-mode generations
            normalizer: Alias table shared across the extraction session
            max_retries: Generation attempts before giving up on invalid JSON
            cache_dir: Directory to cache extraction results
        """
        self.llm = llm
        self.normalizer = normalizer
        self.max_retries = max_retries
        self.cache_dir = cache_dir

    def _get_cache_path(self, chunk_id: str) -> Path | None:
        """Get cache file path for a chunk."""
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{chunk_id}.json"

    def _load_from_cache(self, chunk_id: str) -> ExtractedChunk | None:
        """Load extraction result from cache if available."""
        cache_path = self._get_cache_path(chunk_id)
        if cache_path and cache_path.exists():
            try:
                return ExtractedChunk.from_dict(load_json(cache_path))
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"Ignoring unreadable cache for {chunk_id}: {e}")
        return None

    def _save_to_cache(self, chunk: ExtractedChunk) -> None:
        """Save extraction result to cache."""
        cache_path = self._get_cache_path(chunk.chunk_id)
        if cache_path:
            save_json(chunk.to_dict(), cache_path)

    async def _generate_json(self, prompt: str) -> dict:
        """Generate JSON, asking the model to fix invalid output between attempts."""
        for attempt in range(self.max_retries):
            response = await self.llm.generate_json(prompt)
            parsed = extract_json_from_response(response)
            if parsed is not None:
                return parsed

            logger.debug(f"Invalid JSON on attempt {attempt + 1}: {response[:200]}")
            if attempt < self.max_retries - 1:
                corrected = await self.llm.generate_json(
                    RETRY_PROMPT.format(invalid_json=response)
                )
                parsed = extract_json_from_response(corrected)
                if parsed is not None:
                    return parsed

        raise MalformedDataError(
            f"Failed to get valid JSON after {self.max_retries} attempts"
        )

    async def extract_from_text(self, text: str) -> ExtractionResult:
        """
        Extract entities and relations from a text chunk.

        Args:
            text: The text chunk to process

        Returns:
            ExtractionResult keyed by canonical entity ids
        """
        prompt = ENTITY_EXTRACTION_PROMPT.format(
            entity_types="|".join(EXTRACTABLE_TYPES),
            entity_type_list=", ".join(EXTRACTABLE_TYPES),
            text=text,
        )
        parsed = await self._generate_json(prompt)

        # Extraction-local ids ("E1") -> canonical ids
        local_ids: dict[str, str] = {}
        entities: dict[str, Entity] = {}

        for ent_data in parsed.get("entities") or []:
            if not isinstance(ent_data, dict):
                logger.warning(f"Skipping malformed entity: {ent_data!r}")
                continue
            name = str(ent_data.get("name") or "").strip()
            canonical = self.normalizer.normalize(name)
            if not canonical:
                continue

            local_id = str(ent_data.get("id") or "").strip()
            if local_id:
                local_ids[local_id] = canonical

            description = str(ent_data.get("description") or "").strip()
            if canonical in entities:
                existing = entities[canonical]
                if description and description not in existing.description:
                    existing.description = f"{existing.description} {description}".strip()
                continue

            entities[canonical] = Entity(
                id=canonical,
                name=name,
                type=EntityType.coerce(ent_data.get("type")).value,
                description=description,
            )

        relations = []
        for rel_data in parsed.get("relations") or []:
            if not isinstance(rel_data, dict):
                logger.warning(f"Skipping malformed relation: {rel_data!r}")
                continue
            source = self._resolve_endpoint(rel_data.get("source"), local_ids)
            target = self._resolve_endpoint(rel_data.get("target"), local_ids)
            if not source or not target:
                continue
            relations.append(
                Relation(
                    source=source,
                    target=target,
                    relation=str(rel_data.get("relation") or "related_to").strip(),
                    evidence=str(rel_data.get("evidence") or "").strip(),
                )
            )

        return ExtractionResult(entities=list(entities.values()), relations=relations)

    def _resolve_endpoint(self, ref, local_ids: dict[str, str]) -> str:
        ref = str(ref or "").strip()
        if not ref:
            return ""
        if ref in local_ids:
            return local_ids[ref]
        return self.normalizer.normalize(ref)

    def _remap_cached(self, extraction: ExtractionResult) -> ExtractionResult:
        """Resolve cached entity ids against the current alias table."""
        id_map: dict[str, str] = {}
        entities: dict[str, Entity] = {}

        for entity in extraction.entities:
            canonical = self.normalizer.normalize(entity.name) or entity.id
            id_map[entity.id] = canonical
            if canonical in entities:
                existing = entities[canonical]
                if entity.description and entity.description not in existing.description:
                    existing.description = f"{existing.description} {entity.description}".strip()
                continue
            entity.id = canonical
            entities[canonical] = entity

        relations = []
        for relation in extraction.relations:
            relation.source = id_map.get(relation.source) or self.normalizer.normalize(relation.source)
            relation.target = id_map.get(relation.target) or self.normalizer.normalize(relation.target)
            if relation.source and relation.target:
                relations.append(relation)

        return ExtractionResult(entities=list(entities.values()), relations=relations)

    async def extract_chunk(
        self,
        chunk_id: str,
        doc_id: str,
        text: str,
        use_cache: bool = True,
    ) -> ExtractedChunk:
        """
        Extract from a chunk, reusing a cached result when available.

        Cached results are replayed through the normalizer and their ids are
        rewritten to the canonical ids of the current session.
        """
        if use_cache:
            cached = self._load_from_cache(chunk_id)
            if cached:
                logger.debug(f"Loaded from cache: {chunk_id}")
                cached.extraction = self._remap_cached(cached.extraction)
                return cached

        extraction = await self.extract_from_text(text)
        chunk = ExtractedChunk(chunk_id=chunk_id, doc_id=doc_id, extraction=extraction)
        self._save_to_cache(chunk)

        logger.debug(
            f"Extracted {len(extraction.entities)} entities, "
            f"{len(extraction.relations)} relations from chunk {chunk_id}"
        )
        return chunk

    async def extract_from_chunks(
        self,
        chunks: list[tuple[str, str, str]],  # (chunk_id, doc_id, text)
        use_cache: bool = True,
        show_progress: bool = True,
    ) -> list[ExtractedChunk]:
        """
        Extract entities and relations from multiple chunks, in order.

        Args:
            chunks: List of (chunk_id, doc_id, text) tuples
            use_cache: Whether to use cached results
            show_progress: Whether to show progress bar

        Returns:
            List of ExtractedChunk objects
        """
        iterator = tqdm(chunks, desc="Extracting entities") if show_progress else chunks

        results = []
        for chunk_id, doc_id, text in iterator:
            results.append(await self.extract_chunk(chunk_id, doc_id, text, use_cache))

        total_entities = sum(len(r.extraction.entities) for r in results)
        total_relations = sum(len(r.extraction.relations) for r in results)
        logger.info(
            f"Extraction complete: {total_entities} entities, {total_relations} relations "
            f"from {len(chunks)} chunks"
        )
        return results


async def index_extraction(graph_store: GraphStore, extraction: ExtractionResult) -> None:
    """Upsert extracted entities, then relations, into the graph store."""
    for entity in extraction.entities:
        await graph_store.upsert_entity(
            entity.id, entity.name, entity.type, entity.description
        )
    for relation in extraction.relations:
        await graph_store.upsert_relation(
            relation.source, relation.target, relation.relation, relation.evidence
        )


def create_extractor(cfg, llm: StructuredLLMService, normalizer: EntityNormalizer) -> EntityExtractor:
    """Create an EntityExtractor from config."""
    cache_dir = None
    if cfg.EXTRACTION.use_cache:
        cache_dir = Path(cfg.PATHS.graph_db_dir) / "extraction_cache"
        cache_dir.mkdir(parents=True, exist_ok=True)

    return EntityExtractor(
        llm=llm,
        normalizer=normalizer,
        max_retries=cfg.EXTRACTION.max_retries,
        cache_dir=cache_dir,
    )
