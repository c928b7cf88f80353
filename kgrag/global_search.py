"""
Global Search Module

Thematic retrieval for broad questions: ranks the precomputed community
summaries by embedding similarity to the question and synthesizes an
answer across the most relevant communities.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from pathlib import Path

from loguru import logger

from kgrag.community_summarizer import load_community_summaries
from kgrag.llm import LLMService
from kgrag.utils.graph_utils import CommunitySummary, cosine_similarity

SYNTHESIS_PROMPT = """You are a helpful assistant synthesizing information from multiple thematic communities.

COMMUNITY SUMMARIES:
{context}

USER QUESTION: {question}

INSTRUCTIONS:
- Synthesize a comprehensive answer drawing from the community summaries
- Identify overarching themes and patterns
- Provide a high-level overview rather than specific details
- Mention which communities are most relevant
- Be clear about the scope and limitations of your answer

SYNTHESIS:"""


@dataclass
class CommunityReference:
    """A community summary used in a global search answer."""

    community_id: int
    summary: str
    relevance_score: float
    key_entities: list[str] = field(default_factory=list)


@dataclass
class GlobalSearchTrace:
    communities_searched: int = 0
    communities_used: int = 0
    context_size: int = 0


@dataclass
class GlobalSearchResult:
    answer: str
    communities: list[CommunityReference] = field(default_factory=list)
    trace: GlobalSearchTrace = field(default_factory=GlobalSearchTrace)

    def to_dict(self) -> dict:
        return asdict(self)


class GlobalSearchEngine:
    """
    Ranks community summaries against a question and synthesizes an answer.

    Each summary is embedded on every search, so cost grows linearly with
    the number of communities.
    """

    def __init__(self, llm: LLMService, summaries_dir: Path):
        """
        Initialize the global search engine.

        Args:
            llm: Service used for embeddings and synthesis
            summaries_dir: Directory of community_<id>.json summary files
        """
        self.llm = llm
        self.summaries_dir = Path(summaries_dir)

    async def search(self, query: str, top_k: int = 5) -> GlobalSearchResult:
        """
        Answer a broad question from the top_k most relevant community summaries.

        Args:
            query: User question
            top_k: Number of communities to synthesize from

        Returns:
            GlobalSearchResult with answer, ranked communities and trace counts
        """
        summaries = await asyncio.to_thread(load_community_summaries, self.summaries_dir)
        if not summaries:
            logger.warning("No community summaries available for global search")
            return GlobalSearchResult(answer="")

        ranked = await self.rank_summaries(query, summaries)
        top = ranked[:top_k]

        context = self.build_context(top)
        answer = await self.llm.generate(
            SYNTHESIS_PROMPT.format(context=context, question=query)
        )

        communities = [
            CommunityReference(
                community_id=summary.community_id,
                summary=summary.summary,
                relevance_score=score,
                key_entities=list(summary.key_entities),
            )
            for summary, score in top
        ]
        trace = GlobalSearchTrace(
            communities_searched=len(summaries),
            communities_used=len(top),
            context_size=len(context),
        )
        logger.info(
            f"Global search: used {trace.communities_used}/{trace.communities_searched} communities"
        )
        return GlobalSearchResult(answer=answer, communities=communities, trace=trace)

    async def rank_summaries(
        self, query: str, summaries: list[CommunitySummary]
    ) -> list[tuple[CommunitySummary, float]]:
        """
        Score summaries by cosine similarity to the query, best first.

        Equal scores keep the order the summaries were given in.
        """
        query_embedding = await self.llm.embed(query)

        scored = []
        for summary in summaries:
            summary_embedding = await self.llm.embed(summary.summary)
            scored.append((summary, cosine_similarity(query_embedding, summary_embedding)))

        return sorted(scored, key=lambda item: item[1], reverse=True)

    @staticmethod
    def build_context(scored: list[tuple[CommunitySummary, float]]) -> str:
        """Assemble the selected summaries into a synthesis context."""
        lines = ["THEMATIC COMMUNITIES:\n"]
        for i, (summary, score) in enumerate(scored, start=1):
            lines.append(
                f"Community {i} (id {summary.community_id}, relevance: {score:.2f}):\n"
                f"{summary.summary}\n\n"
                f"Key entities: {', '.join(summary.key_entities)}\n"
            )
        return "\n".join(lines)


def create_global_search(cfg, llm: LLMService) -> GlobalSearchEngine:
    """Create a GlobalSearchEngine from config."""
    return GlobalSearchEngine(llm=llm, summaries_dir=Path(cfg.PATHS.communities_dir))
