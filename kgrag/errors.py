"""Typed errors surfaced by the retrieval core and its collaborator adapters."""


class GraphRAGError(Exception):
    """Base class for every error raised by kgrag."""


class CollaboratorUnavailableError(GraphRAGError):
    """A graph store, vector store or LLM service could not be reached."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator} unavailable: {message}")


class MalformedDataError(GraphRAGError):
    """Upstream data is missing an expected field or cannot be parsed."""
