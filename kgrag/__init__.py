"""Knowledge-graph augmented retrieval: entity normalization, community detection, local and global search"""

__version__ = "0.1.0"

__all__ = [
    # Core modules
    "entity_normalizer",
    "graph_store",
    "graph_export",
    "community_detection",
    "community_summarizer",
    "local_search",
    "global_search",
    "graph_retriever",
    # Collaborators
    "entity_extraction",
    "llm",
    "vector_store",
    # Pipeline and config
    "build_graph_index",
    "config",
    "errors",
    # Utilities
    "utils",
]
