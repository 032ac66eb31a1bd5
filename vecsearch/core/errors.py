"""
Exception taxonomy for the vector search engine.

Structural violations (dimension mismatch, bad parameters, degenerate vectors)
are raised synchronously by the call that introduced them. Collaborator
failures are surfaced as EmbeddingUnavailable once retries are exhausted.
"""

from typing import Optional


class VectorSearchError(Exception):
    """Base exception for all vector search errors."""
    pass


class DimensionMismatch(VectorSearchError):
    """
    A vector's length does not match the collection dimensionality.

    Raised when:
    - An upserted vector has the wrong length
    - A query vector has the wrong length
    - An embedder's dimension differs from the collection's
    - A store is reopened with a different dimension than it was created with
    """

    def __init__(self, expected: int, actual: int, context: str = "vector"):
        super().__init__(f"{context} dimension {actual} does not match expected dimension {expected}")
        self.expected = expected
        self.actual = actual


class InvalidParameter(VectorSearchError):
    """Bad search parameters, e.g. limit < 1 or num_candidates < limit."""
    pass


class InvalidVector(VectorSearchError):
    """Degenerate vector: zero norm or non-finite components."""
    pass


class InvalidQuery(VectorSearchError):
    """Query text is empty or was rejected by the embedder as malformed."""
    pass


class ModelVersionMismatch(VectorSearchError):
    """Embeddings from a different model version than the collection's tag."""

    def __init__(self, expected: Optional[str], actual: Optional[str]):
        super().__init__(
            f"embedding model version '{actual}' does not match collection version '{expected}'; reseed the collection"
        )
        self.expected = expected
        self.actual = actual


class EmbeddingUnavailable(VectorSearchError):
    """
    The embedder could not produce a vector.

    Carries enough context for manual remediation: the record being
    processed (None for queries), the number of attempts made and the
    last underlying error.
    """

    def __init__(self, message: str, record_id: Optional[str] = None, attempts: int = 0,
                 last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.record_id = record_id
        self.attempts = attempts
        self.last_error = last_error


class RecordNotFound(VectorSearchError, KeyError):
    """Unknown record id. Non-fatal: callers decide whether it matters."""

    def __init__(self, record_id: str):
        super().__init__(record_id)
        self.record_id = record_id

    def __str__(self):
        return f"record '{self.record_id}' not found"


class OperationCancelled(VectorSearchError):
    """A reseed or query was aborted through its cancellation token."""
    pass
