"""Tests for vector-seeded, graph-expanded local search."""

import pytest
import pytest_asyncio
from conftest import FakeLLM, FakeVectorStore, add_relations, make_hit

from kgrag.errors import CollaboratorUnavailableError
from kgrag.local_search import LocalSearchEngine, create_local_search


@pytest_asyncio.fixture
async def chain_store(graph_store):
    """a - b - c - d chain plus a detached e - f pair."""
    await graph_store.upsert_entity("a", "Alpha", "CONCEPT", "start of chain")
    await add_relations(
        graph_store,
        [("a", "links", "b"), ("b", "links", "c"), ("c", "links", "d"), ("e", "links", "f")],
    )
    return graph_store


class TestLocalSearchEngine:
    @pytest.mark.asyncio
    async def test_empty_vector_results_still_answer(self, graph_store):
        llm = FakeLLM(responses=["I don't know"])
        engine = LocalSearchEngine(graph_store, FakeVectorStore(), llm)

        result = await engine.search("anything")

        assert result.answer == "I don't know"
        assert result.sources == []
        assert result.trace.chunks_retrieved == 0
        assert result.trace.entities_expanded == 0
        assert len(llm.prompts) == 1

    @pytest.mark.asyncio
    async def test_sources_keep_vector_order(self, chain_store):
        hits = [
            make_hit("c1", "first text", "a", score=0.9),
            make_hit("c2", "second text", "", score=0.7),
            make_hit("", "no id", "e", score=0.5),
        ]
        engine = LocalSearchEngine(chain_store, FakeVectorStore(hits), FakeLLM())

        result = await engine.search("q", top_k=3)

        assert [s.chunk_id for s in result.sources] == ["c1", "c2"]
        assert [s.relevance_score for s in result.sources] == [0.9, 0.7]
        assert result.trace.chunks_retrieved == 3
        assert result.trace.entities_found == 2

    @pytest.mark.asyncio
    async def test_two_hop_expansion(self, chain_store):
        engine = LocalSearchEngine(
            chain_store, FakeVectorStore([make_hit("c1", "text", "a")]), FakeLLM(), expansion_hops=2
        )

        expanded = await engine.expand_graph(["a"], hops=2)
        assert expanded == ["a", "b", "c"]

        result = await engine.search("q")
        assert result.trace.entities_found == 1
        assert result.trace.entities_expanded == 3

    @pytest.mark.asyncio
    async def test_zero_hops_keeps_seeds(self, chain_store):
        engine = LocalSearchEngine(chain_store, FakeVectorStore(), FakeLLM())
        assert await engine.expand_graph(["a", "e"], hops=0) == ["a", "e"]

    @pytest.mark.asyncio
    async def test_context_contains_chunks_entities_and_relations(self, chain_store):
        llm = FakeLLM()
        engine = LocalSearchEngine(
            chain_store, FakeVectorStore([make_hit("c1", "chunk body", "a, b")]), llm
        )

        result = await engine.search("what links alpha?")

        prompt = llm.prompts[0]
        assert "[Chunk 1] chunk body" in prompt
        assert "- Alpha (CONCEPT): start of chain" in prompt
        assert "- a links b (Evidence: )" in prompt
        assert "what links alpha?" in prompt
        assert result.trace.context_size > 0

    @pytest.mark.asyncio
    async def test_top_k_is_passed_to_vector_store(self, graph_store):
        vector_store = FakeVectorStore()
        await LocalSearchEngine(graph_store, vector_store, FakeLLM()).search("q", top_k=4)
        assert vector_store.requested_k == [4]

    @pytest.mark.asyncio
    async def test_vector_failure_propagates(self, graph_store):
        llm = FakeLLM()
        error = CollaboratorUnavailableError("chroma", "connection refused")
        engine = LocalSearchEngine(graph_store, FakeVectorStore(error=error), llm)

        with pytest.raises(CollaboratorUnavailableError) as excinfo:
            await engine.search("q")
        assert excinfo.value.collaborator == "chroma"
        assert llm.prompts == []

    def test_create_from_config(self, cfg, graph_store):
        engine = create_local_search(cfg, graph_store, FakeVectorStore(), FakeLLM())
        assert engine.expansion_hops == cfg.RETRIEVAL.expansion_hops
        assert engine.max_relations == cfg.RETRIEVAL.max_relations
