"""
Shared fixtures for kgrag unit tests.

The fakes stand in for Ollama and Chroma so the retrieval core can be
exercised without any running service.
"""

import pytest

from kgrag.config import load_config
from kgrag.graph_store import NetworkXGraphStore
from kgrag.vector_store import ChunkHit


class FakeLLM:
    """Records prompts and returns scripted responses."""

    def __init__(self, responses=None, json_responses=None, embeddings=None, default_embedding=None):
        self.responses = list(responses or [])
        self.json_responses = list(json_responses or [])
        self.embeddings = embeddings or {}
        self.default_embedding = default_embedding or [1.0, 0.0, 0.0]
        self.prompts: list[str] = []
        self.json_prompts: list[str] = []
        self.embedded: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.embedded.append(text)
        return self.embeddings.get(text, self.default_embedding)

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.responses:
            return self.responses.pop(0)
        return "generated answer"

    async def generate_json(self, prompt: str) -> str:
        self.json_prompts.append(prompt)
        if self.json_responses:
            return self.json_responses.pop(0)
        return '{"entities": [], "relations": []}'


class FakeVectorStore:
    """Returns a fixed hit list and records the requested k."""

    def __init__(self, hits=None, error=None):
        self.hits = list(hits or [])
        self.error = error
        self.requested_k: list[int] = []

    async def similarity_search(self, embedding, k):
        self.requested_k.append(k)
        if self.error is not None:
            raise self.error
        return self.hits[:k]


def make_hit(chunk_id: str, text: str, entity_ids: str, score: float = 0.9) -> ChunkHit:
    return ChunkHit(score=score, chunk_id=chunk_id, text=text, entity_ids=entity_ids)


@pytest.fixture
def cfg():
    """Default configuration with a NetworkX backend."""
    return load_config()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def graph_store():
    return NetworkXGraphStore()


async def add_relations(store, triples):
    """Upsert (source, label, target) triples with no evidence."""
    for source, label, target in triples:
        await store.upsert_relation(source, target, label, "")
