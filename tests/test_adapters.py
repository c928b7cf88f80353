"""
Tests for the collaborator adapters.

Tests cover:
- Neo4j query results and driver error translation
- Chroma hit scoring and error translation
- Ollama transport error translation
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from chromadb.errors import InternalError
from neo4j.exceptions import ServiceUnavailable, SessionExpired
from ollama import ResponseError

from kgrag.errors import CollaboratorUnavailableError, MalformedDataError
from kgrag.graph_store import Neo4jGraphStore
from kgrag.llm import OllamaClient
from kgrag.vector_store import ChromaChunkStore


def make_neo4j_store(records=None, error=None):
    """Neo4jGraphStore whose driver returns the given records or raises error."""
    with patch("kgrag.graph_store.AsyncGraphDatabase") as graph_database:
        driver = MagicMock()
        driver.execute_query = AsyncMock(
            return_value=(records or [], None, None), side_effect=error
        )
        driver.close = AsyncMock()
        graph_database.driver.return_value = driver
        store = Neo4jGraphStore("bolt://localhost:7687", "neo4j", "secret", database="neo4j")
    return store, driver


class TestNeo4jGraphStore:
    @pytest.mark.asyncio
    async def test_all_relations(self):
        store, driver = make_neo4j_store(
            [{"source_id": "a", "target_id": "b"}, {"source_id": "b", "target_id": "c"}]
        )

        assert await store.all_relations() == [("a", "b"), ("b", "c")]
        _, kwargs = driver.execute_query.call_args
        assert kwargs["database_"] == "neo4j"

    @pytest.mark.asyncio
    async def test_entity_details_fill_optional_fields(self):
        store, _ = make_neo4j_store(
            [{"id": "a", "name": None, "type": None, "description": None}]
        )

        [detail] = await store.entity_details(["a"])
        assert detail.name == "a"
        assert detail.type == "UNKNOWN"
        assert detail.description == ""

    @pytest.mark.asyncio
    async def test_relations_within_passes_limit(self):
        store, driver = make_neo4j_store(
            [{"source": "a", "relation": "uses", "target": "b", "evidence": None}]
        )

        [relation] = await store.relations_within(["a", "b"], limit=7)
        assert (relation.source, relation.relation, relation.target) == ("a", "uses", "b")
        assert relation.evidence == ""
        _, kwargs = driver.execute_query.call_args
        assert kwargs["parameters_"]["limit"] == 7

    @pytest.mark.asyncio
    async def test_empty_id_lists_skip_the_database(self):
        store, driver = make_neo4j_store()

        assert await store.entity_details([]) == []
        assert await store.relations_within([], limit=5) == []
        assert await store.neighbors([]) == []
        driver.execute_query.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_field_is_malformed(self):
        store, _ = make_neo4j_store([{"source_id": "a"}])
        with pytest.raises(MalformedDataError):
            await store.all_relations()

    @pytest.mark.asyncio
    async def test_null_required_field_is_malformed(self):
        store, _ = make_neo4j_store([{"neighbor_id": None}])
        with pytest.raises(MalformedDataError):
            await store.neighbors(["a"])

    @pytest.mark.asyncio
    async def test_counts(self):
        store, _ = make_neo4j_store([{"count": 4}])
        assert await store.count_entities() == 4
        assert await store.count_relations() == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [ServiceUnavailable("no route"), SessionExpired("expired"), OSError("reset")]
    )
    async def test_driver_failures_become_unavailable(self, error):
        store, _ = make_neo4j_store(error=error)

        with pytest.raises(CollaboratorUnavailableError) as excinfo:
            await store.upsert_entity("a", "A", "CONCEPT", "")
        assert excinfo.value.collaborator == "neo4j"

    @pytest.mark.asyncio
    async def test_upsert_relation_ensures_endpoints_first(self):
        store, driver = make_neo4j_store()

        await store.upsert_relation("a", "b", "uses", "quote")

        assert driver.execute_query.await_count == 3
        last_query = driver.execute_query.call_args_list[-1].args[0]
        assert "MERGE (source)-[r:RELATION" in last_query

    @pytest.mark.asyncio
    async def test_close_closes_driver(self):
        store, driver = make_neo4j_store()
        await store.close()
        driver.close.assert_awaited_once()


def make_chroma_store():
    with patch("kgrag.vector_store.Chroma") as chroma:
        store = ChromaChunkStore(embeddings=MagicMock(), collection_name="test")
    return store, chroma.return_value


class TestChromaChunkStore:
    @pytest.mark.asyncio
    async def test_hits_scored_as_one_minus_distance(self):
        store, chroma = make_chroma_store()
        chroma.similarity_search_by_vector_with_relevance_scores.return_value = [
            (SimpleNamespace(page_content="text", metadata={"chunk_id": "c1", "entity_ids": "a,b"}), 0.25),
        ]

        [hit] = await store.similarity_search([0.1, 0.2], k=3)

        assert hit.score == pytest.approx(0.75)
        assert (hit.chunk_id, hit.text, hit.entity_ids) == ("c1", "text", "a,b")
        chroma.similarity_search_by_vector_with_relevance_scores.assert_called_once_with([0.1, 0.2], k=3)

    @pytest.mark.asyncio
    async def test_missing_metadata_is_malformed(self):
        store, chroma = make_chroma_store()
        chroma.similarity_search_by_vector_with_relevance_scores.return_value = [
            (SimpleNamespace(page_content="text", metadata=None), 0.1),
        ]
        with pytest.raises(MalformedDataError):
            await store.similarity_search([0.1], k=1)

    @pytest.mark.asyncio
    async def test_chroma_errors_become_unavailable(self):
        store, chroma = make_chroma_store()
        chroma.similarity_search_by_vector_with_relevance_scores.side_effect = InternalError("down")

        with pytest.raises(CollaboratorUnavailableError) as excinfo:
            await store.similarity_search([0.1], k=1)
        assert excinfo.value.collaborator == "chroma"

    @pytest.mark.asyncio
    async def test_index_chunk_joins_entity_ids(self):
        store, chroma = make_chroma_store()

        await store.index_chunk("c1", "d1", "text", "doc.txt", ["a", "b"])

        _, kwargs = chroma.add_texts.call_args
        assert kwargs["ids"] == ["c1"]
        assert kwargs["metadatas"][0]["entity_ids"] == "a,b"


class TestOllamaClient:
    @pytest.fixture
    def client(self):
        client = OllamaClient()
        client.llm = MagicMock()
        client.json_llm = MagicMock()
        client.embeddings = MagicMock()
        return client

    @pytest.mark.asyncio
    async def test_generate_strips_think_tags(self, client):
        client.llm.ainvoke = AsyncMock(return_value="<think>hmm</think> Answer")
        assert await client.generate("q") == "Answer"

    @pytest.mark.asyncio
    async def test_embed_connection_error(self, client):
        client.embeddings.aembed_query = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(CollaboratorUnavailableError) as excinfo:
            await client.embed("text")
        assert excinfo.value.collaborator == "ollama"

    @pytest.mark.asyncio
    async def test_generate_response_error(self, client):
        client.llm.ainvoke = AsyncMock(side_effect=ResponseError("model not found", 404))
        with pytest.raises(CollaboratorUnavailableError):
            await client.generate("q")

    @pytest.mark.asyncio
    async def test_generate_json_connection_error(self, client):
        client.json_llm.ainvoke = AsyncMock(side_effect=ConnectionError("refused"))
        with pytest.raises(CollaboratorUnavailableError):
            await client.generate_json("q")
