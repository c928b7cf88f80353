"""
Entity Normalization Module

Canonicalizes raw entity mentions into stable identifiers and merges
near-duplicate spellings ("OpenAI", "OpenAI Inc.") onto one canonical id.
"""

import re
import threading

from loguru import logger

PUNCTUATION_PATTERN = re.compile(r"[.,!?;:']")
WHITESPACE_PATTERN = re.compile(r"\s+")


def clean_entity_name(name: str) -> str:
    """Lower-case, trim, strip punctuation and collapse whitespace."""
    cleaned = name.lower().strip()
    cleaned = PUNCTUATION_PATTERN.sub("", cleaned)
    cleaned = WHITESPACE_PATTERN.sub(" ", cleaned)
    return cleaned.strip()


class EntityNormalizer:
    """
    Session-scoped alias table mapping cleaned entity names to canonical ids.

    The result of normalize() depends on the names seen before it: a new
    spelling is aliased to the first similar known name in insertion order.
    Lookups are a linear scan, which is fine for the hundreds to low
    thousands of entities a single corpus produces but degrades linearly
    beyond that.
    """

    def __init__(self, word_overlap_threshold: float = 0.7):
        """
        Initialize an empty alias table.

        Args:
            word_overlap_threshold: Fraction of shared words above which two
                multi-word names are considered the same entity
        """
        self.word_overlap_threshold = word_overlap_threshold
        self._aliases: dict[str, str] = {}
        # Insertion-ordered (cleaned, canonical) pairs used for similarity scans
        self._entries: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def aliases(self) -> dict[str, str]:
        """Copy of the cleaned name -> canonical id mapping."""
        with self._lock:
            return dict(self._aliases)

    def normalize(self, raw_name: str) -> str:
        """
        Resolve a raw entity mention to its canonical id.

        Args:
            raw_name: Entity name as produced by extraction

        Returns:
            Canonical id, registering a new one if no similar name is known
        """
        cleaned = clean_entity_name(raw_name)
        if not cleaned:
            return ""

        with self._lock:
            canonical = self._aliases.get(cleaned)
            if canonical is not None:
                return canonical

            for existing, existing_canonical in self._entries:
                if self.are_similar(cleaned, existing):
                    logger.debug(
                        f"Aliasing {cleaned!r} to {existing_canonical!r} (matched {existing!r})"
                    )
                    self._register(cleaned, existing_canonical)
                    return existing_canonical

            self._register(cleaned, cleaned)
            return cleaned

    def _register(self, cleaned: str, canonical: str) -> None:
        self._aliases[cleaned] = canonical
        self._entries.append((cleaned, canonical))

    def are_similar(self, a: str, b: str) -> bool:
        """
        Decide whether two cleaned names refer to the same entity.

        True when the names are equal, when one is a non-empty substring of
        the other, or when both have at least two words and the share of the
        smaller word set found in the larger one exceeds the threshold.
        """
        if a == b:
            return True

        if a and b and (a in b or b in a):
            return True

        tokens_a = a.split()
        tokens_b = b.split()
        if len(tokens_a) >= 2 and len(tokens_b) >= 2:
            smaller, larger = sorted((set(tokens_a), set(tokens_b)), key=len)
            common = len(smaller & larger)
            return common / len(smaller) > self.word_overlap_threshold

        return False


def create_normalizer(cfg) -> EntityNormalizer:
    """Create an EntityNormalizer from config."""
    return EntityNormalizer(
        word_overlap_threshold=cfg.EXTRACTION.word_overlap_threshold,
    )
