"""
Local Search Module

Hybrid retrieval for specific questions: vector search seeds a set of
entities from the best matching chunks, the relation graph expands that
set by a fixed number of hops, and the LLM answers from the combined
chunk, entity and relation context.
"""

from dataclasses import asdict, dataclass, field

from loguru import logger

from kgrag.graph_store import GraphStore
from kgrag.llm import LLMService
from kgrag.utils.graph_utils import (EntityDetail, RelationDetail,
                                     split_entity_ids)
from kgrag.vector_store import VectorStore

LOCAL_ANSWER_PROMPT = """You are a helpful assistant answering questions based on the provided context.

CONTEXT:
{context}

USER QUESTION: {question}

INSTRUCTIONS:
- Answer the question using only information from the context above
- Be specific and cite relevant chunks, entities, or relationships
- If the context doesn't contain enough information, say so
- Keep your answer concise and factual

ANSWER:"""


@dataclass
class Source:
    """A retrieved chunk cited by a local search answer."""

    chunk_id: str
    text: str
    relevance_score: float


@dataclass
class SearchTrace:
    """Diagnostic counts for one local search."""

    chunks_retrieved: int = 0
    entities_found: int = 0
    entities_expanded: int = 0
    context_size: int = 0


@dataclass
class LocalSearchResult:
    answer: str
    sources: list[Source] = field(default_factory=list)
    trace: SearchTrace = field(default_factory=SearchTrace)

    def to_dict(self) -> dict:
        return asdict(self)


class LocalSearchEngine:
    """
    Vector-seeded, graph-expanded retrieval.

    Any collaborator failure aborts the search; there is no partial answer.
    """

    def __init__(
        self,
        graph_store: GraphStore,
        vector_store: VectorStore,
        llm: LLMService,
        expansion_hops: int = 2,
        max_relations: int = 50,
        context_chunks: int = 5,
        context_entities: int = 10,
        context_relations: int = 10,
    ):
        """
        Initialize the local search engine.

        Args:
            graph_store: Store queried for neighbours and details
            vector_store: Chunk index searched with the query embedding
            llm: Service used for the query embedding and the answer
            expansion_hops: Number of graph expansion rounds
            max_relations: Relations fetched between expanded entities
            context_chunks: Chunks written verbatim into the context
            context_entities: Entity lines written into the context
            context_relations: Relation lines written into the context
        """
        self.graph_store = graph_store
        self.vector_store = vector_store
        self.llm = llm
        self.expansion_hops = expansion_hops
        self.max_relations = max_relations
        self.context_chunks = context_chunks
        self.context_entities = context_entities
        self.context_relations = context_relations

    async def search(self, query: str, top_k: int = 10) -> LocalSearchResult:
        """
        Answer a question from the top_k nearest chunks and their graph neighbourhood.

        Args:
            query: User question
            top_k: Number of chunks to retrieve

        Returns:
            LocalSearchResult with answer, ranked sources and trace counts
        """
        query_embedding = await self.llm.embed(query)
        hits = await self.vector_store.similarity_search(query_embedding, top_k)

        seeds: dict[str, None] = {}
        sources = []
        for hit in hits:
            for entity_id in split_entity_ids(hit.entity_ids):
                seeds[entity_id] = None
            if hit.chunk_id and hit.text:
                sources.append(
                    Source(chunk_id=hit.chunk_id, text=hit.text, relevance_score=hit.score)
                )

        expanded = await self.expand_graph(list(seeds), self.expansion_hops)

        entities: list[EntityDetail] = []
        relations: list[RelationDetail] = []
        if expanded:
            entities = await self.graph_store.entity_details(expanded)
            relations = await self.graph_store.relations_within(expanded, self.max_relations)

        context = self.build_context(sources, entities, relations)
        answer = await self.llm.generate(
            LOCAL_ANSWER_PROMPT.format(context=context, question=query)
        )

        trace = SearchTrace(
            chunks_retrieved=len(hits),
            entities_found=len(seeds),
            entities_expanded=len(expanded),
            context_size=len(context),
        )
        logger.info(
            f"Local search: {trace.chunks_retrieved} chunks, {trace.entities_found} seeds, "
            f"{trace.entities_expanded} expanded, {trace.context_size} chars of context"
        )
        return LocalSearchResult(answer=answer, sources=sources, trace=trace)

    async def expand_graph(self, seeds: list[str], hops: int) -> list[str]:
        """
        Grow the seed set through the relation graph.

        Every hop queries neighbours of the whole accumulated set, not only
        of the entities added by the previous hop.

        Returns:
            Seeds followed by discovered entities, in discovery order
        """
        expanded: dict[str, None] = dict.fromkeys(seeds)

        for hop in range(hops):
            if not expanded:
                break
            neighbors = await self.graph_store.neighbors(list(expanded))
            before = len(expanded)
            expanded.update(dict.fromkeys(neighbors))
            logger.debug(f"Hop {hop + 1}: {before} -> {len(expanded)} entities")

        return list(expanded)

    def build_context(
        self,
        sources: list[Source],
        entities: list[EntityDetail],
        relations: list[RelationDetail],
    ) -> str:
        """Assemble chunk, entity and relation lines into one context block."""
        lines = ["RELEVANT TEXT CHUNKS:"]
        for i, source in enumerate(sources[: self.context_chunks], start=1):
            lines.append(f"[Chunk {i}] {source.text}\n")

        if entities:
            lines.append("\nRELEVANT ENTITIES:")
            for entity in entities[: self.context_entities]:
                lines.append(f"- {entity.name} ({entity.type}): {entity.description}")

        if relations:
            lines.append("\nKEY RELATIONSHIPS:")
            for relation in relations[: self.context_relations]:
                lines.append(
                    f"- {relation.source} {relation.relation} {relation.target} "
                    f"(Evidence: {relation.evidence})"
                )

        return "\n".join(lines) + "\n"


def create_local_search(
    cfg, graph_store: GraphStore, vector_store: VectorStore, llm: LLMService
) -> LocalSearchEngine:
    """Create a LocalSearchEngine from config."""
    return LocalSearchEngine(
        graph_store=graph_store,
        vector_store=vector_store,
        llm=llm,
        expansion_hops=cfg.RETRIEVAL.expansion_hops,
        max_relations=cfg.RETRIEVAL.max_relations,
        context_chunks=cfg.RETRIEVAL.context_chunks,
        context_entities=cfg.RETRIEVAL.context_entities,
        context_relations=cfg.RETRIEVAL.context_relations,
    )
