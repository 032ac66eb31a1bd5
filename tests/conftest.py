"""
Shared fixtures: small-dimension stores and scripted embedders.
"""

import threading

import pytest

from vecsearch.core.record_store import VectorRecordStore
from vecsearch.util.retry import RetryConfig
from vecsearch.vector.embeddings import DeterministicHashEmbedding, IEmbeddingProvider


class ScriptedEmbedding(IEmbeddingProvider):
    """Embedder whose vectors and failures are chosen by the test.

    Known texts map to fixed vectors; anything else falls back to the hash
    embedder. `failures` maps text to an exception (or a list of exceptions
    raised on successive calls before succeeding).
    """

    def __init__(self, dimension=4, vectors=None, failures=None, version="scripted@1"):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.failures = {k: (list(v) if isinstance(v, list) else v) for k, v in (failures or {}).items()}
        self.version = version
        self.calls = []
        self._fallback = DeterministicHashEmbedding(dimension)
        self._lock = threading.Lock()

    def embed_text(self, text):
        with self._lock:
            self.calls.append(text)
            failure = self.failures.get(text)
            if isinstance(failure, list):
                failure = failure.pop(0) if failure else None
        if failure is not None:
            raise failure
        if text in self.vectors:
            return list(self.vectors[text])
        return self._fallback.embed_text(text)

    def get_dimension(self):
        return self.dimension

    @property
    def model_version(self):
        return self.version


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "vectors.db")


@pytest.fixture
def store(db_path):
    """2-dimensional store with the default clustered index."""
    s = VectorRecordStore(db_path, dimension=2, model_version="scripted@1")
    yield s
    s.close()


@pytest.fixture
def fast_retry():
    """Three attempts without real backoff sleeps."""
    return RetryConfig(max_attempts=3, initial_delay_ms=0, max_delay_ms=0, jitter=False)
