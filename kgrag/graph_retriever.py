"""
Graph Retriever Module

Routes questions between the two search strategies:
- Local Search: vector-seeded graph expansion for specific queries
- Global Search: community summaries for broad/summary queries
"""

from typing import Literal

from loguru import logger

from kgrag.global_search import GlobalSearchEngine, GlobalSearchResult
from kgrag.llm import LLMService
from kgrag.local_search import LocalSearchEngine, LocalSearchResult

# Prompt for determining search mode
SEARCH_MODE_PROMPT = """Analyze this question and determine the best search strategy.

QUESTION: {question}

If the question:
- Asks about specific entities, people, organizations, or facts → respond with "LOCAL"
- Asks for summaries, overviews, themes, or general information → respond with "GLOBAL"
- Is unclear or could go either way → respond with "LOCAL"

Respond with only one word: LOCAL or GLOBAL"""


class GraphRetriever:
    """
    Front door for question answering over the knowledge graph.
    """

    def __init__(
        self,
        local_engine: LocalSearchEngine,
        global_engine: GlobalSearchEngine,
        llm: LLMService,
        local_top_k: int = 10,
        global_top_k: int = 5,
    ):
        """
        Initialize the graph retriever.

        Args:
            local_engine: Engine for entity-centred questions
            global_engine: Engine for thematic questions
            llm: Service used to classify questions in auto mode
            local_top_k: Default number of chunks for local search
            global_top_k: Default number of communities for global search
        """
        self.local_engine = local_engine
        self.global_engine = global_engine
        self.llm = llm
        self.local_top_k = local_top_k
        self.global_top_k = global_top_k

    async def determine_search_mode(self, question: str) -> Literal["local", "global"]:
        """
        Determine whether to use local or global search.

        Args:
            question: User question

        Returns:
            "local" or "global"
        """
        response = await self.llm.generate(SEARCH_MODE_PROMPT.format(question=question))
        if "GLOBAL" in response.strip().upper():
            return "global"
        return "local"

    async def retrieve(
        self,
        question: str,
        mode: Literal["auto", "local", "global"] = "auto",
        top_k: int | None = None,
    ) -> LocalSearchResult | GlobalSearchResult:
        """
        Answer a question with the requested (or auto-selected) strategy.

        Args:
            question: User question
            mode: Search mode ("auto", "local", or "global")
            top_k: Chunks (local) or communities (global) to use

        Returns:
            Result of the engine that handled the question
        """
        if mode == "auto":
            mode = await self.determine_search_mode(question)
            logger.info(f"Auto-selected search mode: {mode}")

        if mode == "global":
            k = self.global_top_k if top_k is None else top_k
            return await self.global_engine.search(question, k)
        if mode == "local":
            k = self.local_top_k if top_k is None else top_k
            return await self.local_engine.search(question, k)
        raise ValueError(f"Unknown search mode: {mode}")


def create_retriever(
    cfg,
    local_engine: LocalSearchEngine,
    global_engine: GlobalSearchEngine,
    llm: LLMService,
) -> GraphRetriever:
    """Create a GraphRetriever from config."""
    return GraphRetriever(
        local_engine=local_engine,
        global_engine=global_engine,
        llm=llm,
        local_top_k=cfg.RETRIEVAL.local_top_k,
        global_top_k=cfg.RETRIEVAL.global_top_k,
    )
