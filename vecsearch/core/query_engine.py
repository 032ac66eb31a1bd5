"""
Query engine: text -> embedding -> index search -> store join -> filter -> projection.
"""

import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from . import config
from .errors import (
    DimensionMismatch,
    EmbeddingUnavailable,
    InvalidParameter,
    InvalidQuery,
    ModelVersionMismatch,
)
from .record_store import VectorRecordStore
from ..util.cancellation import CancellationToken, check_cancelled
from ..util.logging import logger
from ..util.retry import RetryConfig, retry_with_backoff
from ..vector.embeddings import TRANSIENT_ERRORS, IEmbeddingProvider, InvalidInputError
from ..vector.index import validate_search_params
from ..vector.similarity import VectorLike
from ..vector.types import QueryResult

PayloadFilter = Union[Callable[[Dict[str, Any]], bool], Mapping[str, Any]]


def build_predicate(filter: Optional[PayloadFilter]) -> Optional[Callable[[Dict[str, Any]], bool]]:
    """
    Turn a filter into a payload predicate.

    A callable is used as-is. A mapping means field equality; a list, tuple or
    set value means membership, e.g. {"category": ["audio", "video"]}.
    """
    if filter is None:
        return None
    if callable(filter):
        return filter
    if not isinstance(filter, Mapping):
        raise InvalidParameter(f"filter must be a callable or a mapping, got {type(filter).__name__}")

    conditions = dict(filter)

    def predicate(payload: Dict[str, Any]) -> bool:
        for field, expected in conditions.items():
            if field not in payload:
                return False
            actual = payload[field]
            if isinstance(expected, (list, tuple, set, frozenset)):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False
        return True

    return predicate


def project(payload: Dict[str, Any], projection: Optional[Sequence[str]]) -> Dict[str, Any]:
    """Keep only the named fields; fields missing from the payload are omitted."""
    if projection is None:
        return dict(payload)
    return {field: payload[field] for field in projection if field in payload}


class QueryEngine:
    """
    Answers top-k semantic queries against a record store.

    Args:
        store: the record store (and through it, the similarity index)
        embedder: turns query text into a vector
        retry_config: retry policy for transient embedder failures
        candidate_factor: default num_candidates is limit * candidate_factor ...
        candidate_floor: ... but never below candidate_floor
        filter_overfetch: extra multiplier on num_candidates when a filter is given
    """

    def __init__(self, store: VectorRecordStore, embedder: IEmbeddingProvider,
                 retry_config: Optional[RetryConfig] = None,
                 candidate_factor: int = None, candidate_floor: int = None,
                 filter_overfetch: int = None):
        self.store = store
        self.embedder = embedder
        self.retry_config = retry_config or config.get_retry_config(config.QUERY_MAX_ATTEMPTS)
        self.candidate_factor = candidate_factor or config.QUERY_CANDIDATE_FACTOR
        self.candidate_floor = candidate_floor or config.QUERY_CANDIDATE_FLOOR
        self.filter_overfetch = filter_overfetch or config.QUERY_FILTER_OVERFETCH

    def default_num_candidates(self, limit: int, filtered: bool = False) -> int:
        candidates = max(limit * self.candidate_factor, self.candidate_floor)
        if filtered:
            candidates *= self.filter_overfetch
        return max(candidates, limit)

    def _check_model_version(self) -> None:
        expected = self.store.model_version
        actual = self.embedder.model_version
        if expected and actual and expected != actual:
            raise ModelVersionMismatch(expected, actual)

    def embed_query(self, text: str, cancel_token: Optional[CancellationToken] = None) -> List[float]:
        """Embed query text, retrying transient embedder failures."""
        result = retry_with_backoff(
            lambda: self.embedder.embed_text(text),
            self.retry_config,
            retry_on=TRANSIENT_ERRORS,
            operation_name="embed query",
            cancel_token=cancel_token,
        )
        if result.success:
            return result.result
        if isinstance(result.error, InvalidInputError):
            raise InvalidQuery(f"embedder rejected the query: {result.error}")
        raise EmbeddingUnavailable(
            f"could not embed query after {result.attempts} attempts: {result.error}",
            attempts=result.attempts,
            last_error=result.error,
        )

    def query(self, text: str, limit: int = None, num_candidates: Optional[int] = None,
              filter: Optional[PayloadFilter] = None, projection: Optional[Sequence[str]] = None,
              cancel_token: Optional[CancellationToken] = None) -> List[QueryResult]:
        """
        Embed text and return the most similar records.

        Args:
            text: query text; empty or whitespace-only text is rejected
            limit: maximum number of results (default QUERY_DEFAULT_LIMIT)
            num_candidates: candidates examined before the final re-rank;
                defaults to max(limit * candidate_factor, candidate_floor),
                over-fetched further when a filter is given
            filter: payload predicate or field -> value mapping
            projection: payload fields to return
            cancel_token: aborts before embedding or before searching

        Returns:
            Results ordered by descending score, at most `limit` of them

        Raises:
            InvalidQuery: empty text, or text the embedder rejects
            InvalidParameter: bad limit / num_candidates / filter
            EmbeddingUnavailable: embedder failed after retries
            ModelVersionMismatch: embedder differs from the collection's model
            OperationCancelled: cancel_token was triggered
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidQuery("query text must not be empty")
        limit = config.QUERY_DEFAULT_LIMIT if limit is None else limit
        predicate = build_predicate(filter)
        if num_candidates is None:
            if not isinstance(limit, int) or limit < 1:
                raise InvalidParameter(f"limit must be a positive integer, got {limit!r}")
            num_candidates = self.default_num_candidates(limit, filtered=predicate is not None)
        validate_search_params(num_candidates, limit)
        self._check_model_version()

        started = time.perf_counter()
        check_cancelled(cancel_token)
        vector = self.embed_query(text, cancel_token)
        check_cancelled(cancel_token)

        results = self._search(vector, limit, num_candidates, predicate, projection)

        logger.log_query(
            text, limit, num_candidates, len(results),
            (time.perf_counter() - started) * 1000,
            filtered=predicate is not None,
        )
        return results

    def search_vector(self, vector: VectorLike, limit: int = None, num_candidates: Optional[int] = None,
                      filter: Optional[PayloadFilter] = None,
                      projection: Optional[Sequence[str]] = None) -> List[QueryResult]:
        """Like query() for callers that already hold an embedding."""
        limit = config.QUERY_DEFAULT_LIMIT if limit is None else limit
        predicate = build_predicate(filter)
        if num_candidates is None:
            if not isinstance(limit, int) or limit < 1:
                raise InvalidParameter(f"limit must be a positive integer, got {limit!r}")
            num_candidates = self.default_num_candidates(limit, filtered=predicate is not None)
        validate_search_params(num_candidates, limit)
        return self._search(vector, limit, num_candidates, predicate, projection)

    def _search(self, vector: VectorLike, limit: int, num_candidates: int,
                predicate: Optional[Callable[[Dict[str, Any]], bool]],
                projection: Optional[Sequence[str]]) -> List[QueryResult]:
        if len(vector) != self.store.dimension:
            raise DimensionMismatch(self.store.dimension, len(vector), "query vector")

        # Without a filter only the top `limit` hits can survive; with one, keep every candidate
        fetch = limit if predicate is None else num_candidates
        hits = self.store.index.search(vector, num_candidates=num_candidates, limit=fetch)
        records = self.store.get_many(hit.id for hit in hits)

        results = []
        for hit in hits:
            record = records.get(hit.id)
            if record is None:
                # Deleted between search and join
                continue
            if predicate is not None and not predicate(record.payload):
                continue
            results.append(QueryResult(id=hit.id, score=hit.score, payload=project(record.payload, projection)))
            if len(results) >= limit:
                break

        if predicate is not None and len(results) < limit and len(hits) >= num_candidates:
            logger.warning(
                f"Filter left {len(results)}/{limit} results from {num_candidates} candidates; "
                f"consider a larger num_candidates"
            )
        return results
