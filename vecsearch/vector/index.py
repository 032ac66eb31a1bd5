"""
Similarity index: answers "which stored vectors are most similar to Q".

The index holds back-references only (id + unit vector). Payload lives in the
record store. Scores are cosine similarities in [-1, 1]; results are ordered by
descending score, ties broken by ascending id.
"""

import logging
import threading
import zlib
from abc import ABC, abstractmethod
from contextlib import ExitStack
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import InvalidParameter
from .similarity import VectorLike, clip_score, prepare, rank_key
from .types import SearchHit

logger = logging.getLogger(__name__)


def validate_search_params(num_candidates: int, limit: int) -> None:
    """Reject limits the index cannot honour."""
    if not isinstance(limit, (int, np.integer)) or isinstance(limit, bool) or limit < 1:
        raise InvalidParameter(f"limit must be a positive integer, got {limit!r}")
    if not isinstance(num_candidates, (int, np.integer)) or isinstance(num_candidates, bool):
        raise InvalidParameter(f"num_candidates must be an integer, got {num_candidates!r}")
    if num_candidates < limit:
        raise InvalidParameter(f"num_candidates ({num_candidates}) must be >= limit ({limit})")


def top_hits(ids: Sequence[str], scores: np.ndarray, limit: int) -> List[SearchHit]:
    """Select the best `limit` hits with a deterministic id tie-break."""
    n = len(ids)
    if n == 0:
        return []
    if n > limit:
        # Keep everything tied with the limit-th score so the tie-break sees all of them
        kth = np.partition(-scores, limit - 1)[limit - 1]
        keep = np.nonzero(-scores <= kth)[0]
    else:
        keep = np.arange(n)
    ranked = sorted(
        ((ids[i], clip_score(float(scores[i]))) for i in keep),
        key=lambda pair: rank_key(pair[0], pair[1]),
    )
    return [SearchHit(id=hit_id, score=score) for hit_id, score in ranked[:limit]]


class ISimilarityIndex(ABC):
    """Abstract interface for similarity index operations."""

    dimension: int

    @abstractmethod
    def add(self, record_id: str, vector: VectorLike) -> None:
        """Insert or replace the entry for record_id."""
        pass

    @abstractmethod
    def remove(self, record_id: str) -> None:
        """Remove all trace of record_id. Absent ids are a no-op."""
        pass

    @abstractmethod
    def search(self, query_vector: VectorLike, num_candidates: int, limit: int) -> List[SearchHit]:
        """Return at most `limit` hits, best first."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""
        pass

    @abstractmethod
    def size(self) -> int:
        pass

    @abstractmethod
    def ids(self) -> List[str]:
        pass

    @abstractmethod
    def contains(self, record_id: str) -> bool:
        pass

    def rebuild_centroids(self, num_clusters: int, max_iterations: int = 25, seed: int = 0) -> int:
        """Recompute the coarse partitioning. Returns the number of clusters in use."""
        return 0

    def centroids(self) -> Optional[np.ndarray]:
        return None

    def load_centroids(self, centroids: Optional[np.ndarray]) -> None:
        """Restore previously computed centroids (e.g. after a restart)."""
        pass


class _Partition:
    """One coarse cluster: a dict of unit vectors plus a cached matrix for scoring."""

    def __init__(self, dimension: int):
        self.dimension = dimension
        self.lock = threading.Lock()
        self.vectors: Dict[str, np.ndarray] = {}
        self._snapshot: Optional[Tuple[Tuple[str, ...], np.ndarray]] = None

    def put(self, record_id: str, unit: np.ndarray) -> None:
        self.vectors[record_id] = unit
        self._snapshot = None

    def discard(self, record_id: str) -> None:
        if self.vectors.pop(record_id, None) is not None:
            self._snapshot = None

    def snapshot(self) -> Tuple[Tuple[str, ...], np.ndarray]:
        """Caller must hold self.lock."""
        if self._snapshot is None:
            ids = tuple(self.vectors)
            if ids:
                matrix = np.vstack([self.vectors[i] for i in ids])
            else:
                matrix = np.empty((0, self.dimension), dtype=np.float64)
            self._snapshot = (ids, matrix)
        return self._snapshot


class _Layout:
    """Centroids and their partitions; replaced wholesale on rebuild."""

    def __init__(self, dimension: int, centroids: Optional[np.ndarray] = None):
        self.centroids = centroids
        count = 1 if centroids is None else centroids.shape[0]
        self.partitions = [_Partition(dimension) for _ in range(count)]

    def assign(self, unit: np.ndarray) -> int:
        if self.centroids is None:
            return 0
        return int(np.argmax(self.centroids @ unit))

    def probe_order(self, unit: np.ndarray) -> List[int]:
        if self.centroids is None:
            return [0]
        return [int(i) for i in np.argsort(-(self.centroids @ unit), kind="stable")]


def spherical_kmeans(vectors: np.ndarray, k: int, max_iterations: int = 25, seed: int = 0) -> np.ndarray:
    """
    Cluster unit vectors by cosine similarity.

    Args:
        vectors: (n, d) matrix of unit vectors
        k: number of clusters, 1 <= k <= n
        max_iterations: upper bound on assignment/update rounds
        seed: seed for choosing the initial centroids

    Returns:
        (k, d) matrix of unit centroids
    """
    rng = np.random.default_rng(seed)
    n = vectors.shape[0]
    centroids = vectors[rng.choice(n, size=k, replace=False)].copy()
    labels = None

    for _ in range(max(1, max_iterations)):
        new_labels = np.argmax(vectors @ centroids.T, axis=1)
        if labels is not None and np.array_equal(new_labels, labels):
            break
        labels = new_labels
        for j in range(k):
            members = vectors[labels == j]
            if members.shape[0] == 0:
                continue  # keep the previous centroid for an empty cluster
            total = members.sum(axis=0)
            norm = np.linalg.norm(total)
            if norm > 0:
                centroids[j] = total / norm

    return centroids


class ClusteredIndex(ISimilarityIndex):
    """
    Exact brute-force cosine index with optional coarse clustering.

    Without centroids every search scores every stored vector. After
    rebuild_centroids(k), vectors live in k partitions keyed by nearest
    centroid, and a search probes partitions in order of centroid similarity
    until at least num_candidates vectors have been gathered, then scores
    those exactly. Larger num_candidates approaches exact results.

    Writers serialise per id through lock stripes and per partition through
    partition locks; searches lock partitions only long enough to take a
    snapshot. rebuild_centroids and clear take every lock.
    """

    def __init__(self, dimension: int, lock_stripes: int = 16):
        if dimension < 1:
            raise InvalidParameter(f"dimension must be positive, got {dimension}")
        self.dimension = dimension
        self._stripes = [threading.Lock() for _ in range(max(1, lock_stripes))]
        self._layout = _Layout(dimension)
        self._assignments: Dict[str, int] = {}

    def _stripe(self, record_id: str) -> threading.Lock:
        return self._stripes[zlib.crc32(record_id.encode("utf-8")) % len(self._stripes)]

    def add(self, record_id: str, vector: VectorLike) -> None:
        unit = prepare(vector, self.dimension)
        with self._stripe(record_id):
            layout = self._layout
            target = layout.assign(unit)
            previous = self._assignments.get(record_id)
            involved = sorted({target} if previous is None else {target, previous})
            with ExitStack() as stack:
                for idx in involved:
                    stack.enter_context(layout.partitions[idx].lock)
                if previous is not None and previous != target:
                    layout.partitions[previous].discard(record_id)
                layout.partitions[target].put(record_id, unit)
                self._assignments[record_id] = target

    def remove(self, record_id: str) -> None:
        with self._stripe(record_id):
            previous = self._assignments.get(record_id)
            if previous is None:
                return
            partition = self._layout.partitions[previous]
            with partition.lock:
                partition.discard(record_id)
                del self._assignments[record_id]

    def search(self, query_vector: VectorLike, num_candidates: int, limit: int) -> List[SearchHit]:
        validate_search_params(num_candidates, limit)
        query = prepare(query_vector, self.dimension, "query vector")

        layout = self._layout
        with ExitStack() as stack:
            for partition in layout.partitions:
                stack.enter_context(partition.lock)
            snapshots = [partition.snapshot() for partition in layout.partitions]

        gathered_ids: List[str] = []
        matrices = []
        for idx in layout.probe_order(query):
            ids, matrix = snapshots[idx]
            if not ids:
                continue
            gathered_ids.extend(ids)
            matrices.append(matrix)
            if len(gathered_ids) >= num_candidates:
                break

        if not gathered_ids:
            return []
        scores = np.vstack(matrices) @ query
        return top_hits(gathered_ids, scores, limit)

    def _lock_everything(self, stack: ExitStack) -> _Layout:
        for stripe in self._stripes:
            stack.enter_context(stripe)
        layout = self._layout
        for partition in layout.partitions:
            stack.enter_context(partition.lock)
        return layout

    def clear(self) -> None:
        with ExitStack() as stack:
            self._lock_everything(stack)
            self._layout = _Layout(self.dimension)
            self._assignments = {}

    def size(self) -> int:
        return len(self._assignments)

    def ids(self) -> List[str]:
        return list(self._assignments.copy())

    def contains(self, record_id: str) -> bool:
        return record_id in self._assignments

    def partition_sizes(self) -> List[int]:
        return [len(p.vectors) for p in self._layout.partitions]

    def centroids(self) -> Optional[np.ndarray]:
        centroids = self._layout.centroids
        return None if centroids is None else centroids.copy()

    def _relayout(self, old: _Layout, centroids: Optional[np.ndarray]) -> None:
        """Caller holds every lock of `old`."""
        entries = [(rid, vec) for p in old.partitions for rid, vec in p.vectors.items()]
        layout = _Layout(self.dimension, centroids)
        assignments = {}
        if entries and centroids is not None:
            matrix = np.vstack([vec for _, vec in entries])
            labels = np.argmax(matrix @ centroids.T, axis=1)
        else:
            labels = [0] * len(entries)
        for (rid, vec), label in zip(entries, labels):
            layout.partitions[int(label)].put(rid, vec)
            assignments[rid] = int(label)
        self._layout = layout
        self._assignments = assignments

    def rebuild_centroids(self, num_clusters: int, max_iterations: int = 25, seed: int = 0) -> int:
        with ExitStack() as stack:
            old = self._lock_everything(stack)
            count = len(self._assignments)
            if num_clusters <= 1 or count == 0:
                self._relayout(old, None)
                logger.info(f"Cleared centroids; exact search over {count} vectors")
                return 0

            ordered = sorted(
                ((rid, vec) for p in old.partitions for rid, vec in p.vectors.items()),
                key=lambda pair: pair[0],
            )
            matrix = np.vstack([vec for _, vec in ordered])
            k = min(num_clusters, count)
            centroids = spherical_kmeans(matrix, k, max_iterations, seed)
            self._relayout(old, centroids)
            logger.info(f"Rebuilt {k} centroids over {count} vectors")
            return k

    def load_centroids(self, centroids: Optional[np.ndarray]) -> None:
        if centroids is not None:
            centroids = np.asarray(centroids, dtype=np.float64)
            if centroids.ndim != 2 or centroids.shape[1] != self.dimension or centroids.shape[0] == 0:
                raise InvalidParameter(f"centroids must have shape (k, {self.dimension})")
        with ExitStack() as stack:
            old = self._lock_everything(stack)
            self._relayout(old, centroids)
