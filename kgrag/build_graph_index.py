"""
Graph RAG Indexing Pipeline

Main script to build the knowledge graph index from documents:
1. Load and chunk documents
2. Extract entities and relations using LLM
3. Upsert them into the graph store and index chunks in the vector store
4. Detect communities and write the assignment back
5. Generate community summaries
"""

import asyncio
import hashlib
from pathlib import Path

import hydra
from langchain_text_splitters import RecursiveCharacterTextSplitter
from loguru import logger
from omegaconf import DictConfig

from kgrag.community_detection import create_detector
from kgrag.community_summarizer import create_summarizer
from kgrag.config import setup_logging
from kgrag.entity_extraction import create_extractor, index_extraction
from kgrag.entity_normalizer import create_normalizer
from kgrag.graph_store import NetworkXGraphStore, create_graph_store
from kgrag.llm import create_llm_client
from kgrag.vector_store import create_vector_store


def load_documents(corpus_dir: Path, extensions: list[str]) -> list[tuple[str, str, str]]:
    """
    Load text documents from corpus directory.

    Returns:
        List of (doc_id, source_path, text) tuples
    """
    documents = []

    for ext in extensions:
        for file_path in sorted(corpus_dir.rglob(f"*{ext}")):
            text = file_path.read_text(encoding="utf-8")
            if text.strip():
                doc_id = hashlib.md5(str(file_path).encode()).hexdigest()[:12]
                documents.append((doc_id, str(file_path), text))
                logger.debug(f"Loaded {file_path}: {len(text)} chars")

    logger.info(f"Loaded {len(documents)} documents from {corpus_dir}")
    return documents


def chunk_documents(
    documents: list[tuple[str, str, str]],
    chunk_size: int,
    chunk_overlap: int,
) -> list[tuple[str, str, str, str]]:
    """
    Split documents into chunks.

    Returns:
        List of (chunk_id, doc_id, source_path, text) tuples
    """
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
    )

    chunks = []
    for doc_id, source_path, text in documents:
        for i, chunk_text in enumerate(splitter.split_text(text)):
            chunks.append((f"{doc_id}_chunk_{i}", doc_id, source_path, chunk_text))

    logger.info(f"Created {len(chunks)} chunks from {len(documents)} documents")
    return chunks


async def build_index(cfg: DictConfig) -> None:
    """Run the indexing pipeline end to end."""
    corpus_dir = Path(cfg.PATHS.corpus_dir)
    if not corpus_dir.exists():
        logger.error(f"Corpus directory not found: {corpus_dir}")
        return

    # Step 1: Load and chunk documents
    logger.info("Step 1: Loading and chunking documents...")
    documents = load_documents(corpus_dir, list(cfg.DOCUMENT.supported_extensions))
    if not documents:
        logger.error("No documents found in corpus directory")
        return
    chunks = chunk_documents(documents, cfg.DOCUMENT.chunk_size, cfg.DOCUMENT.chunk_overlap)

    llm = create_llm_client(cfg)
    graph_store = create_graph_store(cfg)
    vector_store = create_vector_store(cfg, llm.embeddings)
    extractor = create_extractor(cfg, llm, create_normalizer(cfg))

    try:
        # Step 2: Extract entities and relations
        logger.info("Step 2: Extracting entities and relations...")
        extracted = await extractor.extract_from_chunks(
            [(chunk_id, doc_id, text) for chunk_id, doc_id, _, text in chunks],
            use_cache=cfg.EXTRACTION.use_cache,
        )

        # Step 3: Index graph and chunks
        logger.info("Step 3: Indexing graph and chunk vectors...")
        for (chunk_id, doc_id, source_path, text), result in zip(chunks, extracted):
            await index_extraction(graph_store, result.extraction)
            await vector_store.index_chunk(
                chunk_id=chunk_id,
                doc_id=doc_id,
                text=text,
                source=source_path,
                entity_ids=[entity.id for entity in result.extraction.entities],
            )

        # Steps 4-5: Detect communities and summarize them
        logger.info("Step 4: Detecting and summarizing communities...")
        detector = create_detector(cfg, graph_store, create_summarizer(cfg, llm))
        summaries = await detector.detect_and_summarize(Path(cfg.PATHS.communities_dir))

        if isinstance(graph_store, NetworkXGraphStore):
            graph_store.save(Path(cfg.PATHS.graph_db_dir))

        logger.info("=" * 50)
        logger.info("Graph RAG indexing complete!")
        logger.info(f"  Documents: {len(documents)}")
        logger.info(f"  Chunks: {len(chunks)}")
        logger.info(f"  Entities: {await graph_store.count_entities()}")
        logger.info(f"  Relations: {await graph_store.count_relations()}")
        logger.info(f"  Communities: {len(summaries)}")
        logger.info("=" * 50)
    finally:
        await graph_store.close()


@hydra.main(version_base=None, config_path="../conf", config_name="config")
def main(cfg: DictConfig) -> None:
    """Main indexing pipeline."""
    setup_logging(cfg, log_name="build_graph_index.log")
    logger.info("Starting Graph RAG indexing pipeline")
    asyncio.run(build_index(cfg))


if __name__ == "__main__":
    main()
