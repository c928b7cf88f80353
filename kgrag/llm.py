"""
LLM Service Module

Async access to the Ollama generation and embedding models used for
extraction, summarization and answer generation.
"""

from typing import Protocol

import httpx
from langchain_ollama import OllamaEmbeddings, OllamaLLM
from loguru import logger
from ollama import ResponseError

from kgrag.errors import CollaboratorUnavailableError
from kgrag.utils.graph_utils import strip_think_tags

# Failures that mean the Ollama server could not serve the request
OLLAMA_ERRORS = (ConnectionError, httpx.HTTPError, ResponseError)


class LLMService(Protocol):
    """Embedding and generation calls the retrieval core depends on."""

    async def embed(self, text: str) -> list[float]: ...

    async def generate(self, prompt: str) -> str: ...


class OllamaClient:
    """LLMService implementation backed by a local Ollama server."""

    def __init__(
        self,
        model: str = "llama3",
        embedding_model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ):
        """
        Initialize the Ollama client.

        Args:
            model: Ollama model used for generation
            embedding_model: Ollama model used for embeddings
            base_url: Ollama server URL
            temperature: LLM temperature
            max_tokens: Maximum tokens per generation
        """
        self.model = model
        self.embedding_model = embedding_model

        self.llm = OllamaLLM(
            model=model,
            base_url=base_url,
            temperature=temperature,
            num_predict=max_tokens,
        )
        self.json_llm = OllamaLLM(
            model=model,
            base_url=base_url,
            temperature=temperature,
            num_predict=max_tokens,
            format="json",
        )
        self.embeddings = OllamaEmbeddings(model=embedding_model, base_url=base_url)

        logger.info(
            f"Initialized OllamaClient with model: {model}, embeddings: {embedding_model}"
        )

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        try:
            return await self.embeddings.aembed_query(text)
        except OLLAMA_ERRORS as e:
            raise CollaboratorUnavailableError("ollama", f"embedding failed: {e}") from e

    async def generate(self, prompt: str) -> str:
        """Generate free text, with reasoning blocks removed."""
        try:
            response = await self.llm.ainvoke(prompt)
        except OLLAMA_ERRORS as e:
            raise CollaboratorUnavailableError("ollama", f"generation failed: {e}") from e
        return strip_think_tags(response)

    async def generate_json(self, prompt: str) -> str:
        """Generate using Ollama's JSON output mode."""
        try:
            response = await self.json_llm.ainvoke(prompt)
        except OLLAMA_ERRORS as e:
            raise CollaboratorUnavailableError("ollama", f"generation failed: {e}") from e
        return strip_think_tags(response)


def create_llm_client(cfg) -> OllamaClient:
    """Create an OllamaClient from config."""
    return OllamaClient(
        model=cfg.OLLAMA.model,
        embedding_model=cfg.OLLAMA.embedding_model,
        base_url=cfg.OLLAMA.base_url,
        temperature=cfg.OLLAMA.temperature,
        max_tokens=cfg.OLLAMA.max_tokens,
    )
