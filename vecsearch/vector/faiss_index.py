"""
FAISS-backed similarity index.

Flat inner-product index over unit float32 vectors, wrapped in IndexIDMap2 so
entries can be removed and replaced by id.
"""

import threading
from typing import Dict, List

import numpy as np

from .index import ISimilarityIndex, top_hits, validate_search_params
from .similarity import VectorLike, prepare
from .types import SearchHit


class FaissIndex(ISimilarityIndex):
    """FAISS-backed implementation of ISimilarityIndex."""

    def __init__(self, dimension: int = 768):
        """
        Initialize FAISS index.

        Args:
            dimension: Dimension of the vectors (default: 768, the Gemini embedding size)
        """
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.faiss = faiss
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

        # FAISS ids are int64; keep both directions of the mapping
        self.id_to_label: Dict[str, int] = {}
        self.label_to_id: Dict[int, str] = {}
        self.next_label = 0

        # FAISS indexes are not safe for concurrent mutation
        self._lock = threading.RLock()

    def _to_faiss(self, unit: np.ndarray) -> np.ndarray:
        return np.ascontiguousarray(unit, dtype=np.float32).reshape(1, -1)

    def add(self, record_id: str, vector: VectorLike) -> None:
        """Add or replace a single vector."""
        unit = prepare(vector, self.dimension)
        with self._lock:
            self._remove_locked(record_id)
            label = self.next_label
            self.next_label += 1
            self.index.add_with_ids(self._to_faiss(unit), np.array([label], dtype=np.int64))
            self.id_to_label[record_id] = label
            self.label_to_id[label] = record_id

    def _remove_locked(self, record_id: str) -> None:
        label = self.id_to_label.pop(record_id, None)
        if label is None:
            return
        self.index.remove_ids(np.array([label], dtype=np.int64))
        del self.label_to_id[label]

    def remove(self, record_id: str) -> None:
        with self._lock:
            self._remove_locked(record_id)

    def search(self, query_vector: VectorLike, num_candidates: int, limit: int) -> List[SearchHit]:
        """Fetch num_candidates nearest neighbours, then re-rank to the top `limit`."""
        validate_search_params(num_candidates, limit)
        query = prepare(query_vector, self.dimension, "query vector")

        with self._lock:
            total = self.index.ntotal
            if not total:
                return []
            k = min(num_candidates, total)
            scores, labels = self.index.search(self._to_faiss(query), k)
            ids = []
            kept_scores = []
            for label, score in zip(labels[0], scores[0]):
                record_id = self.label_to_id.get(int(label))
                if record_id is None:  # -1 padding
                    continue
                ids.append(record_id)
                kept_scores.append(float(score))

        return top_hits(ids, np.array(kept_scores, dtype=np.float64), limit)

    def clear(self) -> None:
        """Clear all entries by recreating the index."""
        with self._lock:
            self.index = self.faiss.IndexIDMap2(self.faiss.IndexFlatIP(self.dimension))
            self.id_to_label.clear()
            self.label_to_id.clear()
            self.next_label = 0

    def size(self) -> int:
        return len(self.id_to_label)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self.id_to_label)

    def contains(self, record_id: str) -> bool:
        return record_id in self.id_to_label
