"""
Embedding providers: deterministic hash embedder and the Gemini HTTP adapter.
"""

from unittest.mock import MagicMock

import pytest
import requests

from vecsearch.vector.embeddings import (
    DeterministicHashEmbedding,
    EmbedderMisconfiguredError,
    EmbedderUnavailableError,
    EmbeddingTimeoutError,
    GeminiEmbedding,
    IEmbeddingProvider,
    InvalidInputError,
    RateLimitedError,
    TRANSIENT_ERRORS,
)


def test_embedding_interface():
    """Test that the embedding provider implements the interface correctly."""
    embedder = DeterministicHashEmbedding(dimension=384)

    assert isinstance(embedder, IEmbeddingProvider)
    assert embedder.get_dimension() == 384
    assert embedder.model_version == "hash-sha256@384"


def test_deterministic_embedding():
    """Test that the same input always produces the same output."""
    embedder = DeterministicHashEmbedding(dimension=384)

    vector1 = embedder.embed_text("Hello, world!")
    vector2 = DeterministicHashEmbedding(dimension=384).embed_text("Hello, world!")

    assert vector1 == vector2
    assert len(vector1) == 384
    assert all(-1.0 <= v <= 1.0 for v in vector1)


def test_different_inputs_produce_different_vectors():
    embedder = DeterministicHashEmbedding(dimension=384)
    assert embedder.embed_text("Hello, world!") != embedder.embed_text("Goodbye, world!")


def test_embedding_with_different_dimensions():
    """Dimensions that are not a multiple of the digest size still fill every component."""
    for dimension in (3, 64, 768, 1000):
        vector = DeterministicHashEmbedding(dimension=dimension).embed_text("test")
        assert len(vector) == dimension
        assert any(v != 0.0 for v in vector[-8:])


def test_transient_error_kinds():
    assert RateLimitedError("x").transient
    assert EmbeddingTimeoutError("x").transient
    assert EmbedderUnavailableError("x").transient
    assert not InvalidInputError("x").transient
    assert InvalidInputError not in TRANSIENT_ERRORS
    assert not EmbedderMisconfiguredError("x").transient
    assert EmbedderMisconfiguredError not in TRANSIENT_ERRORS


def _response(status_code, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def _gemini(response=None, side_effect=None):
    session = MagicMock()
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        session.post.return_value = response
    return GeminiEmbedding(api_key="test-key", dimension=3, session=session), session


def test_gemini_requires_api_key():
    with pytest.raises(ValueError):
        GeminiEmbedding(api_key="")


def test_gemini_embed_text():
    embedder, session = _gemini(_response(200, {"embedding": {"values": [0.1, 0.2, 0.3]}}))

    assert embedder.embed_text("Apple iPhone") == [0.1, 0.2, 0.3]

    args, kwargs = session.post.call_args
    assert args[0].endswith("/models/gemini-embedding-001:embedContent")
    assert kwargs["headers"] == {"x-goog-api-key": "test-key"}
    assert kwargs["json"]["content"]["parts"][0]["text"] == "Apple iPhone"
    assert kwargs["json"]["outputDimensionality"] == 3
    assert embedder.model_version == "gemini-embedding-001@3"


@pytest.mark.parametrize("status, error", [
    (429, RateLimitedError),
    (500, EmbedderUnavailableError),
    (503, EmbedderUnavailableError),
    (408, EmbeddingTimeoutError),
    (401, EmbedderMisconfiguredError),
    (403, EmbedderMisconfiguredError),
    (404, EmbedderMisconfiguredError),
    (400, InvalidInputError),
    (413, InvalidInputError),
    (422, InvalidInputError),
])
def test_gemini_maps_http_errors(status, error):
    embedder, _ = _gemini(_response(status, text="nope"))
    with pytest.raises(error) as exc_info:
        embedder.embed_text("hello")
    assert exc_info.value.status_code == status


def test_gemini_maps_transport_errors():
    embedder, _ = _gemini(side_effect=requests.Timeout("slow"))
    with pytest.raises(EmbeddingTimeoutError):
        embedder.embed_text("hello")

    embedder, _ = _gemini(side_effect=requests.ConnectionError("down"))
    with pytest.raises(EmbedderUnavailableError):
        embedder.embed_text("hello")


def test_gemini_malformed_response():
    embedder, _ = _gemini(_response(200, {"unexpected": True}))
    with pytest.raises(EmbedderUnavailableError):
        embedder.embed_text("hello")

    embedder, _ = _gemini(_response(200, ValueError("not json")))
    with pytest.raises(EmbedderUnavailableError):
        embedder.embed_text("hello")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
