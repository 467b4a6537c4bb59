"""
errors.py
---------

Exception hierarchy for the recipe retrieval system.  Every error the
package raises on purpose derives from :class:`RecipeRAGError` so that
callers can tell a failed query apart from a query that simply found
nothing (the latter is an empty list, never an exception).
"""


class RecipeRAGError(Exception):
    """Base exception for the recipe retrieval system."""


class ConfigurationError(RecipeRAGError):
    """Raised when configuration is invalid or incomplete."""


class EmbeddingFailure(RecipeRAGError):
    """Raised when the embedding provider fails to embed a text."""


class GenerationFailure(RecipeRAGError):
    """Raised when the completion provider fails to produce an answer."""


class DimensionMismatch(RecipeRAGError):
    """Raised when a vector does not match the dimensionality of the index."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class IndexUnavailable(RecipeRAGError):
    """Raised when retrieval is requested before an index was built or loaded."""


class MalformedSnapshot(RecipeRAGError):
    """Raised when a vector index snapshot cannot be deserialised."""
