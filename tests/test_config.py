"""Tests for configuration loading, logging setup and typed errors."""

from loguru import logger

from kgrag.config import load_config, setup_logging
from kgrag.errors import CollaboratorUnavailableError, GraphRAGError, MalformedDataError


def test_default_config_sections():
    cfg = load_config()
    assert cfg.GRAPH_STORE.backend == "networkx"
    assert cfg.RETRIEVAL.expansion_hops == 2
    assert cfg.EXTRACTION.word_overlap_threshold == 0.7
    assert cfg.COMMUNITY.max_iterations == 10


def test_overrides_are_merged():
    cfg = load_config(overrides=["RETRIEVAL.local_top_k=3", "GRAPH_STORE.backend=neo4j"])
    assert cfg.RETRIEVAL.local_top_k == 3
    assert cfg.GRAPH_STORE.backend == "neo4j"
    assert cfg.RETRIEVAL.global_top_k == 5


def test_setup_logging_writes_file(tmp_path):
    cfg = load_config(overrides=[f"PATHS.logs_dir={tmp_path}"])
    setup_logging(cfg, log_name="test.log")
    logger.debug("hello from the test")
    logger.remove()

    assert "hello from the test" in (tmp_path / "test.log").read_text()


def test_error_hierarchy():
    error = CollaboratorUnavailableError("neo4j", "connection refused")
    assert isinstance(error, GraphRAGError)
    assert error.collaborator == "neo4j"
    assert str(error) == "neo4j unavailable: connection refused"
    assert issubclass(MalformedDataError, GraphRAGError)
