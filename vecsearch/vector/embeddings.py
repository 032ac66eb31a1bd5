"""
Embedding providers: text -> fixed-length vector.

Providers are external collaborators. They report failures through the
EmbeddingError kinds below so callers can tell a transient outage (retry)
from a malformed input (don't).
"""

from abc import ABC, abstractmethod
import hashlib
import struct
from typing import Optional

import requests


class EmbeddingError(Exception):
    """Base class for embedder failures."""

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(EmbeddingError):
    """Provider asked us to slow down (e.g. HTTP 429)."""
    transient = True


class EmbeddingTimeoutError(EmbeddingError):
    """Provider did not answer in time."""
    transient = True


class EmbedderUnavailableError(EmbeddingError):
    """Provider unreachable or failing (connection errors, HTTP 5xx, model load failure)."""
    transient = True


class EmbedderMisconfiguredError(EmbeddingError):
    """Provider refuses us regardless of input (bad key, no permission, unknown model).

    The embedder is unavailable, but retrying will not bring it back.
    """
    transient = False


class InvalidInputError(EmbeddingError):
    """Provider rejected the input itself; retrying will not help."""
    transient = False


TRANSIENT_ERRORS = (RateLimitedError, EmbeddingTimeoutError, EmbedderUnavailableError)


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    @property
    @abstractmethod
    def model_version(self) -> str:
        """Version tag; vectors from different tags are not comparable."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Expands SHA-256 digests of the text into as many components as the
    dimension requires, so every dimension carries signal and identical text
    always maps to the identical vector.
    """

    def __init__(self, dimension: int = 768):
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using hash function."""
        vector = []
        counter = 0
        while len(vector) < self.dimension:
            digest = hashlib.sha256(f"{counter}:{text}".encode("utf-8")).digest()
            for (value,) in struct.iter_unpack(">I", digest):
                # Map to [-1, 1]
                vector.append((value / 2**32) * 2 - 1)
            counter += 1
        return vector[:self.dimension]

    def get_dimension(self) -> int:
        return self.dimension

    @property
    def model_version(self) -> str:
        return f"hash-sha256@{self.dimension}"


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Uses the all-mpnet-base-v2 model (768 dimensions) by default.
    """

    def __init__(self, model_name: str = "all-mpnet-base-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError("sentence-transformers not installed. Please install the 'local' extra.")
            try:
                self._model = SentenceTransformer(self.model_name)
            except (OSError, ValueError) as e:
                raise EmbedderUnavailableError(f"Could not load model {self.model_name}: {e}")
        return self._model

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def get_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension

    @property
    def model_version(self) -> str:
        return f"sentence-transformers/{self.model_name}"


class GeminiEmbedding(IEmbeddingProvider):
    """Google Gemini embedding API over HTTP.

    Requests a fixed output dimensionality so every vector in a collection
    has the same length. HTTP failures are translated into EmbeddingError
    kinds: 408 is a timeout, 429 is rate limiting, 401/403/404 mean the key
    or model is wrong, other 4xx are invalid input, 5xx and connection
    problems mean the service is unavailable.
    """

    MISCONFIGURED_STATUSES = (401, 403, 404)

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, api_key: str, model_name: str = "gemini-embedding-001", dimension: int = 768,
                 timeout: float = 30.0, session: Optional[requests.Session] = None):
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required for the gemini embedding provider")
        self.api_key = api_key
        self.model_name = model_name
        self.dimension = dimension
        self.timeout = timeout
        self.session = session or requests.Session()

    def embed_text(self, text: str) -> list[float]:
        url = f"{self.API_BASE}/models/{self.model_name}:embedContent"
        body = {
            "model": f"models/{self.model_name}",
            "content": {"parts": [{"text": text}]},
            "outputDimensionality": self.dimension,
        }
        try:
            response = self.session.post(
                url,
                json=body,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise EmbeddingTimeoutError(f"Gemini embedding request timed out: {e}")
        except requests.RequestException as e:
            raise EmbedderUnavailableError(f"Gemini embedding request failed: {e}")

        status = response.status_code
        if status == 408:
            raise EmbeddingTimeoutError("Gemini embedding request timed out (408)", status_code=status)
        if status in self.MISCONFIGURED_STATUSES:
            raise EmbedderMisconfiguredError(
                f"Gemini refused embedding request ({status}); check GEMINI_API_KEY and model "
                f"{self.model_name}: {response.text[:200]}",
                status_code=status)
        if status == 429:
            raise RateLimitedError("Gemini embedding rate limit exceeded", status_code=status)
        if status >= 500:
            raise EmbedderUnavailableError(f"Gemini embedding service error {status}", status_code=status)
        if status >= 400:
            raise InvalidInputError(f"Gemini rejected embedding request ({status}): {response.text[:200]}",
                                    status_code=status)

        try:
            values = response.json()["embedding"]["values"]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbedderUnavailableError(f"Malformed Gemini embedding response: {e}", status_code=status)
        return [float(v) for v in values]

    def get_dimension(self) -> int:
        return self.dimension

    @property
    def model_version(self) -> str:
        return f"{self.model_name}@{self.dimension}"
