"""
Community Summarization Module

Uses LLM to generate summaries for each detected community.
These summaries enable global search by providing high-level overviews
of related entity clusters.
"""

import json
from pathlib import Path

from loguru import logger

from kgrag.errors import MalformedDataError
from kgrag.llm import LLMService
from kgrag.utils.graph_utils import (CommunitySummary, EntityDetail,
                                     RelationDetail, load_json, save_json)

COMMUNITY_SUMMARY_PROMPT = """You are analyzing a community of related entities from a knowledge graph.

{community_info}

TASK: Write a 2-3 paragraph summary describing:
1. The main theme or topic of this community
2. Key entities and their roles
3. Important relationships and patterns

Keep it concise and factual. Do NOT use markdown formatting.

SUMMARY:"""

SUMMARY_FILE_PATTERN = "community_*.json"


class CommunitySummarizer:
    """
    Generates summaries for communities using LLM.
    """

    def __init__(
        self,
        llm: LLMService,
        key_entities: int = 5,
        prompt_entities: int = 10,
        prompt_relations: int = 10,
    ):
        """
        Initialize community summarizer.

        Args:
            llm: Service used to generate the summary text
            key_entities: Number of entity names kept as key entities
            prompt_entities: Maximum entities listed in the prompt
            prompt_relations: Maximum relations listed in the prompt
        """
        self.llm = llm
        self.key_entities = key_entities
        self.prompt_entities = prompt_entities
        self.prompt_relations = prompt_relations

    def _build_community_context(
        self,
        entities: list[EntityDetail],
        relations: list[RelationDetail],
    ) -> str:
        """Build context string for a community."""
        lines = ["ENTITIES IN THIS COMMUNITY:"]
        for entity in entities[: self.prompt_entities]:
            lines.append(f"- {entity.name} ({entity.type}): {entity.description}")

        if relations:
            lines.append("")
            lines.append("KEY RELATIONSHIPS:")
            for relation in relations[: self.prompt_relations]:
                lines.append(f"- {relation.source} {relation.relation} {relation.target}")

        return "\n".join(lines)

    async def summarize_community(
        self,
        community_id: int,
        entities: list[EntityDetail],
        relations: list[RelationDetail],
    ) -> CommunitySummary:
        """
        Generate a summary for a community.

        Args:
            community_id: Community being summarized
            entities: Entity details of the community members
            relations: Relations between community members

        Returns:
            CommunitySummary with the generated text
        """
        context = self._build_community_context(entities, relations)
        prompt = COMMUNITY_SUMMARY_PROMPT.format(community_info=context)

        summary = (await self.llm.generate(prompt)).strip()
        if summary.startswith("SUMMARY:"):
            summary = summary[8:].strip()

        logger.debug(f"Generated summary for community {community_id}: {len(summary)} chars")

        return CommunitySummary(
            community_id=community_id,
            entity_count=len(entities),
            summary=summary,
            key_entities=[entity.name for entity in entities[: self.key_entities]],
        )


def save_community_summaries(summaries: list[CommunitySummary], path: Path) -> None:
    """
    Save one JSON file per community, replacing earlier summary files.

    Args:
        summaries: Summaries to persist
        path: Directory receiving community_<id>.json files
    """
    path.mkdir(parents=True, exist_ok=True)
    for stale in path.glob(SUMMARY_FILE_PATTERN):
        stale.unlink()

    for summary in summaries:
        save_json(summary.to_dict(), path / f"community_{summary.community_id}.json")
    logger.info(f"Saved {len(summaries)} community summaries to {path}")


def _load_summary(path: Path) -> CommunitySummary:
    try:
        data = load_json(path)
    except json.JSONDecodeError as e:
        raise MalformedDataError(f"Unreadable community summary {path}: {e}") from e
    return CommunitySummary.from_dict(data)


def load_community_summaries(path: Path) -> list[CommunitySummary]:
    """
    Load community summaries from a directory of JSON files.

    Returns:
        Summaries sorted by community id (empty if the directory is missing)
    """
    path = Path(path)
    if not path.is_dir():
        logger.warning(f"Community summaries directory not found: {path}")
        return []

    summaries = [_load_summary(p) for p in path.glob(SUMMARY_FILE_PATTERN)]
    summaries.sort(key=lambda s: s.community_id)
    logger.info(f"Loaded {len(summaries)} community summaries from {path}")
    return summaries


def create_summarizer(cfg, llm: LLMService) -> CommunitySummarizer:
    """Create a CommunitySummarizer from config."""
    return CommunitySummarizer(
        llm=llm,
        key_entities=cfg.SUMMARIZATION.key_entities,
        prompt_entities=cfg.SUMMARIZATION.prompt_entities,
        prompt_relations=cfg.SUMMARIZATION.prompt_relations,
    )
