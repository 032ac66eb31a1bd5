"""
Environment-driven configuration and component factories.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/vectors.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Embedding configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence|gemini
EMBED_DIM = int(os.getenv("EMBED_DIM", "768"))
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "gemini-embedding-001")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_TIMEOUT_SEC = float(os.getenv("GEMINI_TIMEOUT_SEC", "30"))

# Similarity index configuration
INDEX_PROVIDER = os.getenv("INDEX_PROVIDER", "cluster")  # cluster|faiss
INDEX_NUM_CLUSTERS = int(os.getenv("INDEX_NUM_CLUSTERS", "0"))  # 0 = exact brute force
INDEX_LOCK_STRIPES = int(os.getenv("INDEX_LOCK_STRIPES", "16"))

# Query configuration
QUERY_DEFAULT_LIMIT = int(os.getenv("QUERY_DEFAULT_LIMIT", "3"))
QUERY_CANDIDATE_FACTOR = int(os.getenv("QUERY_CANDIDATE_FACTOR", "10"))
QUERY_CANDIDATE_FLOOR = int(os.getenv("QUERY_CANDIDATE_FLOOR", "100"))
QUERY_FILTER_OVERFETCH = int(os.getenv("QUERY_FILTER_OVERFETCH", "4"))
QUERY_MAX_ATTEMPTS = int(os.getenv("QUERY_MAX_ATTEMPTS", "2"))

# Ingestion configuration
INGEST_BATCH_SIZE = int(os.getenv("INGEST_BATCH_SIZE", "5"))
INGEST_MAX_WORKERS = int(os.getenv("INGEST_MAX_WORKERS", "5"))
INGEST_MAX_ATTEMPTS = int(os.getenv("INGEST_MAX_ATTEMPTS", "3"))
INGEST_INITIAL_DELAY_MS = float(os.getenv("INGEST_INITIAL_DELAY_MS", "500"))
INGEST_MAX_DELAY_MS = float(os.getenv("INGEST_MAX_DELAY_MS", "8000"))
INGEST_BATCH_DELAY_SEC = float(os.getenv("INGEST_BATCH_DELAY_SEC", "0"))
INGEST_ID_FIELD = os.getenv("INGEST_ID_FIELD") or None

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_embedding_provider(provider: str = None):
    """Get configured embedding provider implementation."""
    provider = provider or EMBED_PROVIDER

    if provider == "gemini":
        from ..vector.embeddings import GeminiEmbedding
        return GeminiEmbedding(
            api_key=GEMINI_API_KEY,
            model_name=EMBED_MODEL_NAME,
            dimension=EMBED_DIM,
            timeout=GEMINI_TIMEOUT_SEC,
        )
    elif provider == "sentence":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)
    else:
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(EMBED_DIM)


def get_similarity_index(dimension: int = None, provider: str = None):
    """Get configured similarity index implementation."""
    dimension = dimension or EMBED_DIM
    provider = provider or INDEX_PROVIDER

    if provider == "faiss":
        from ..vector.faiss_index import FaissIndex
        return FaissIndex(dimension)

    from ..vector.index import ClusteredIndex
    return ClusteredIndex(dimension, lock_stripes=INDEX_LOCK_STRIPES)


def get_retry_config(max_attempts: int = None):
    """Retry policy for embedder calls during ingestion and queries."""
    from ..util.retry import RetryConfig
    return RetryConfig(
        max_attempts=max_attempts or INGEST_MAX_ATTEMPTS,
        initial_delay_ms=INGEST_INITIAL_DELAY_MS,
        max_delay_ms=INGEST_MAX_DELAY_MS,
    )


def open_store(db_path: str = None, embedder=None):
    """Open the process-wide record store with its index, sized for the embedder."""
    from .record_store import VectorRecordStore
    dimension = embedder.get_dimension() if embedder is not None else EMBED_DIM
    model_version = embedder.model_version if embedder is not None else None
    return VectorRecordStore(
        db_path or DB_PATH,
        dimension=dimension,
        index=get_similarity_index(dimension),
        model_version=model_version,
    )


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if EMBED_PROVIDER not in ["hash", "sentence", "gemini"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_PROVIDER == "gemini" and not GEMINI_API_KEY:
        issues.append("EMBED_PROVIDER=gemini requires GEMINI_API_KEY")

    if INDEX_PROVIDER not in ["cluster", "faiss"]:
        issues.append(f"Invalid INDEX_PROVIDER: {INDEX_PROVIDER}")

    if INDEX_PROVIDER == "faiss" and INDEX_NUM_CLUSTERS > 0:
        issues.append("INDEX_NUM_CLUSTERS is ignored by the faiss index provider")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if QUERY_CANDIDATE_FACTOR < 1 or QUERY_CANDIDATE_FLOOR < 1:
        issues.append("QUERY_CANDIDATE_FACTOR and QUERY_CANDIDATE_FLOOR must be >= 1")

    if INGEST_BATCH_SIZE < 1 or INGEST_MAX_WORKERS < 1:
        issues.append("INGEST_BATCH_SIZE and INGEST_MAX_WORKERS must be >= 1")

    if INGEST_MAX_ATTEMPTS < 1:
        issues.append("INGEST_MAX_ATTEMPTS must be >= 1")

    return issues
