"""
kgrag - Knowledge Graph augmented Retrieval

Usage:
    python main.py build                 # Build the graph and vector index
    python main.py detect                # Re-run community detection and summaries
    python main.py local "<question>"    # Entity-centred hybrid search
    python main.py global "<question>"   # Community-summary search
    python main.py ask "<question>"      # Let the LLM pick local or global
    python main.py stats                 # Print graph store counts
"""

import asyncio
import json
import subprocess
import sys
from pathlib import Path

from loguru import logger

from kgrag.community_detection import create_detector
from kgrag.community_summarizer import create_summarizer
from kgrag.config import load_config, setup_logging
from kgrag.global_search import create_global_search
from kgrag.graph_retriever import create_retriever
from kgrag.graph_store import NetworkXGraphStore, create_graph_store
from kgrag.llm import create_llm_client
from kgrag.local_search import create_local_search
from kgrag.vector_store import create_vector_store


def run_build() -> int:
    """Run the graph indexing pipeline.

    Returns:
        Exit code from the subprocess (0 = success)
    """
    logger.info("Building Graph RAG index...")
    result = subprocess.run(
        [sys.executable, "-m", "kgrag.build_graph_index"],
        cwd=Path(__file__).parent,
    )
    if result.returncode != 0:
        logger.error(f"Build failed with exit code {result.returncode}")
    return result.returncode


async def run_detect(cfg) -> int:
    """Recompute communities and their summaries from the current graph."""
    llm = create_llm_client(cfg)
    graph_store = create_graph_store(cfg)
    try:
        detector = create_detector(cfg, graph_store, create_summarizer(cfg, llm))
        summaries = await detector.detect_and_summarize(Path(cfg.PATHS.communities_dir))
        if isinstance(graph_store, NetworkXGraphStore):
            graph_store.save(Path(cfg.PATHS.graph_db_dir))
    finally:
        await graph_store.close()
    logger.info(f"Wrote {len(summaries)} community summaries")
    return 0


async def run_query(cfg, mode: str, question: str) -> int:
    """Answer a question and print the result as JSON."""
    llm = create_llm_client(cfg)
    graph_store = create_graph_store(cfg)
    try:
        vector_store = create_vector_store(cfg, llm.embeddings)
        retriever = create_retriever(
            cfg,
            create_local_search(cfg, graph_store, vector_store, llm),
            create_global_search(cfg, llm),
            llm,
        )
        result = await retriever.retrieve(question, mode=mode)
    finally:
        await graph_store.close()
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def run_stats(cfg) -> int:
    """Print entity and relation counts."""
    graph_store = create_graph_store(cfg)
    try:
        entities = await graph_store.count_entities()
        relations = await graph_store.count_relations()
    finally:
        await graph_store.close()
    print(json.dumps({"entities": entities, "relations": relations}))
    return 0


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    if len(sys.argv) < 2:
        print(__doc__)
        return 0

    command = sys.argv[1].lower()
    if command == "build":
        return run_build()

    cfg = load_config()
    setup_logging(cfg)

    if command == "detect":
        return asyncio.run(run_detect(cfg))
    elif command in ("local", "global", "ask"):
        if len(sys.argv) < 3:
            logger.error(f"Missing question for {command}")
            return 1
        mode = "auto" if command == "ask" else command
        return asyncio.run(run_query(cfg, mode, " ".join(sys.argv[2:])))
    elif command == "stats":
        return asyncio.run(run_stats(cfg))
    else:
        logger.error(f"Unknown command: {command}")
        print(__doc__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
