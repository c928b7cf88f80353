"""
Vector Store Module

Chunk index over Chroma. Each chunk carries the comma-joined ids of the
entities extracted from it, which local search uses as graph seeds.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from chromadb.errors import ChromaError
from langchain_community.vectorstores import Chroma
from langchain_core.embeddings import Embeddings
from loguru import logger

from kgrag.errors import CollaboratorUnavailableError, MalformedDataError


@dataclass
class ChunkHit:
    """One vector search result."""

    score: float
    chunk_id: str
    text: str
    entity_ids: str


class VectorStore(Protocol):
    """Similarity search the retrieval core depends on."""

    async def similarity_search(self, embedding: list[float], k: int) -> list[ChunkHit]: ...


class ChromaChunkStore:
    """VectorStore implementation backed by a persistent Chroma collection."""

    def __init__(
        self,
        embeddings: Embeddings,
        persist_directory: Path | None = None,
        collection_name: str = "chunks",
    ):
        """
        Initialize the chunk store.

        Args:
            embeddings: Embedding model used when indexing chunk text
            persist_directory: Directory for the Chroma database (in-memory if None)
            collection_name: Chroma collection holding the chunks
        """
        self.collection_name = collection_name
        self.store = Chroma(
            collection_name=collection_name,
            embedding_function=embeddings,
            persist_directory=str(persist_directory) if persist_directory else None,
            collection_metadata={"hnsw:space": "cosine"},
        )
        logger.info(f"Initialized ChromaChunkStore collection: {collection_name}")

    async def index_chunk(
        self,
        chunk_id: str,
        doc_id: str,
        text: str,
        source: str,
        entity_ids: list[str],
    ) -> None:
        """Embed and upsert one chunk with its entity ids."""
        metadata = {
            "chunk_id": chunk_id,
            "doc_id": doc_id,
            "source": source,
            "entity_ids": ",".join(entity_ids),
        }
        try:
            await asyncio.to_thread(
                self.store.add_texts, [text], metadatas=[metadata], ids=[chunk_id]
            )
        except ChromaError as e:
            raise CollaboratorUnavailableError("chroma", str(e)) from e

    async def similarity_search(self, embedding: list[float], k: int) -> list[ChunkHit]:
        """
        Return the k chunks nearest to embedding, most similar first.

        Scores are cosine similarities (1 - cosine distance).
        """
        try:
            results = await asyncio.to_thread(
                self.store.similarity_search_by_vector_with_relevance_scores,
                embedding,
                k=k,
            )
        except ChromaError as e:
            raise CollaboratorUnavailableError("chroma", str(e)) from e

        hits = []
        for doc, distance in results:
            if doc.metadata is None:
                raise MalformedDataError("Chroma result is missing its metadata payload")
            hits.append(
                ChunkHit(
                    score=1.0 - float(distance),
                    chunk_id=str(doc.metadata.get("chunk_id", "")),
                    text=doc.page_content or "",
                    entity_ids=str(doc.metadata.get("entity_ids", "")),
                )
            )
        return hits


def create_vector_store(cfg, embeddings: Embeddings) -> ChromaChunkStore:
    """Create a ChromaChunkStore from config."""
    return ChromaChunkStore(
        embeddings=embeddings,
        persist_directory=Path(cfg.PATHS.vector_db_dir),
        collection_name=cfg.VECTOR_STORE.collection_name,
    )
