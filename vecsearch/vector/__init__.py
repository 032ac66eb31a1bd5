# Package initialization for vector module
from .index import ISimilarityIndex, ClusteredIndex
from .faiss_index import FaissIndex
from .types import Record, SearchHit, QueryResult, SourceRecord, IngestFailure, IngestSummary
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    GeminiEmbedding,
    EmbeddingError,
    RateLimitedError,
    EmbeddingTimeoutError,
    EmbedderUnavailableError,
    EmbedderMisconfiguredError,
    InvalidInputError,
)

__all__ = [
    'ISimilarityIndex',
    'ClusteredIndex',
    'FaissIndex',
    'Record',
    'SearchHit',
    'QueryResult',
    'SourceRecord',
    'IngestFailure',
    'IngestSummary',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'GeminiEmbedding',
    'EmbeddingError',
    'RateLimitedError',
    'EmbeddingTimeoutError',
    'EmbedderUnavailableError',
    'EmbedderMisconfiguredError',
    'InvalidInputError',
]
