"""
Vector record store: canonical, durable owner of records.

SQLite holds id -> (vector, payload, version, updated_at). The similarity
index is derived state kept in lockstep: every mutating call leaves the index
consistent before it returns. Writes go record first, index second, commit
last; deletes go index first, record second, commit last. A failure after the
index was touched restores the previous index entry, so a record and its index
entry always appear and disappear together.
"""

import json
import threading
import zlib
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .db import (
    decode_vector,
    encode_vector,
    get_db,
    get_meta,
    health_check,
    init_db,
    load_centroids,
    save_centroids,
    set_meta,
)
from .errors import DimensionMismatch, InvalidParameter, RecordNotFound, VectorSearchError
from ..util.logging import logger
from ..vector.index import ClusteredIndex, ISimilarityIndex
from ..vector.similarity import VectorLike, as_vector, check_nonzero
from ..vector.types import Record

# SQLite's default limit on bound parameters is 999
_SQL_CHUNK = 500


def _rollback(conn) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


class VectorRecordStore:
    """
    Durable record store coupled to a similarity index.

    Args:
        db_path: SQLite file path
        dimension: fixed vector length for this collection
        index: similarity index to keep in sync (a ClusteredIndex by default)
        model_version: embedding model tag for a new collection
        lock_stripes: number of per-id writer locks
    """

    def __init__(self, db_path: str, dimension: int, index: Optional[ISimilarityIndex] = None,
                 model_version: Optional[str] = None, lock_stripes: int = 16):
        if dimension < 1:
            raise InvalidParameter(f"dimension must be positive, got {dimension}")
        self.db_path = db_path
        self.dimension = dimension
        self.index = index if index is not None else ClusteredIndex(dimension)
        if self.index.dimension != dimension:
            raise DimensionMismatch(dimension, self.index.dimension, "index")
        self.model_version: Optional[str] = None
        self.requested_model_version = model_version
        self._stripes = [threading.Lock() for _ in range(max(1, lock_stripes))]
        self._closed = False

        init_db(db_path)
        self._open(model_version)

    # -- lifecycle ---------------------------------------------------------

    def _open(self, model_version: Optional[str]) -> None:
        with get_db(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                stored_dim = get_meta(conn, "dimension")
                if stored_dim is None:
                    set_meta(conn, "dimension", str(self.dimension))
                elif int(stored_dim) != self.dimension:
                    raise DimensionMismatch(int(stored_dim), self.dimension, "collection")

                stored_version = get_meta(conn, "model_version")
                if stored_version is None and model_version:
                    set_meta(conn, "model_version", model_version)
                    stored_version = model_version
                conn.execute("COMMIT")
            except BaseException:
                _rollback(conn)
                raise

        self.model_version = stored_version
        if model_version and stored_version != model_version:
            logger.warning(
                f"Collection at {self.db_path} was embedded with '{stored_version}', "
                f"requested '{model_version}'; reseed before querying"
            )

        count = self.reload_index()
        logger.log_index_operation("load", {
            "db_path": self.db_path,
            "records": count,
            "dimension": self.dimension,
            "model_version": self.model_version,
        })

    def close(self) -> None:
        """Release the in-memory index. The store cannot be used afterwards."""
        if self._closed:
            return
        with self.exclusive():
            self.index.clear()
            self._closed = True
        logger.log_operation("store.close", "success", {"db_path": self.db_path})

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise VectorSearchError("record store is closed")

    @property
    def stale(self) -> bool:
        """True when the collection's model tag differs from the one requested at open."""
        return bool(self.requested_model_version) and self.requested_model_version != self.model_version

    # -- locking -----------------------------------------------------------

    def _stripe(self, record_id: str) -> threading.Lock:
        return self._stripes[zlib.crc32(record_id.encode("utf-8")) % len(self._stripes)]

    @contextmanager
    def exclusive(self):
        """Block every writer, e.g. for maintenance that compares store and index."""
        with ExitStack() as stack:
            for stripe in self._stripes:
                stack.enter_context(stripe)
            yield

    # -- validation --------------------------------------------------------

    def _validate(self, record_id: str, vector: VectorLike, payload) -> Tuple[np.ndarray, str]:
        if not isinstance(record_id, str) or not record_id.strip():
            raise InvalidParameter("record id must be a non-empty string")
        arr = as_vector(vector, self.dimension)
        check_nonzero(arr)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidParameter(f"payload must be a mapping, got {type(payload).__name__}")
        try:
            payload_json = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise InvalidParameter(f"payload for '{record_id}' is not JSON serialisable: {e}")
        return arr, payload_json

    # -- writes ------------------------------------------------------------

    def upsert(self, record_id: str, vector: VectorLike, payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Insert or replace a record and its index entry.

        Returns:
            The record's new version (1 for a new record)

        Raises:
            DimensionMismatch: vector length differs from the collection's
            InvalidVector: zero-norm or non-finite vector
            InvalidParameter: empty id or payload that is not JSON serialisable
        """
        self._check_open()
        arr, payload_json = self._validate(record_id, vector, payload)
        updated_at = datetime.now(timezone.utc).isoformat()

        with self._stripe(record_id):
            with get_db(self.db_path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                previous = None
                index_touched = False
                try:
                    previous = conn.execute(
                        "SELECT version, vector FROM records WHERE id = ?", (record_id,)
                    ).fetchone()
                    version = 1 if previous is None else previous[0] + 1
                    conn.execute(
                        "INSERT INTO records (id, vector, payload, version, updated_at) VALUES (?, ?, ?, ?, ?) "
                        "ON CONFLICT(id) DO UPDATE SET vector = excluded.vector, payload = excluded.payload, "
                        "version = excluded.version, updated_at = excluded.updated_at",
                        (record_id, encode_vector(arr), payload_json, version, updated_at)
                    )
                    index_touched = True
                    self.index.add(record_id, arr)
                    conn.execute("COMMIT")
                except BaseException:
                    _rollback(conn)
                    if index_touched:
                        if previous is None:
                            self.index.remove(record_id)
                        else:
                            self.index.add(record_id, decode_vector(previous[1]))
                    raise

        logger.log_record_operation("upsert", record_id, {
            "version": version,
            "operation": "create" if version == 1 else "update",
        })
        return version

    def delete_by_id(self, record_ids: Iterable[str]) -> int:
        """
        Delete records and their index entries.

        Unknown ids are skipped and logged, not treated as errors.

        Returns:
            Number of records actually deleted
        """
        self._check_open()
        deleted = 0
        missing = []

        with get_db(self.db_path) as conn:
            for record_id in dict.fromkeys(record_ids):
                with self._stripe(record_id):
                    conn.execute("BEGIN IMMEDIATE")
                    row = None
                    try:
                        row = conn.execute("SELECT vector FROM records WHERE id = ?", (record_id,)).fetchone()
                        if row is None:
                            conn.execute("ROLLBACK")
                            missing.append(record_id)
                            continue
                        self.index.remove(record_id)
                        conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
                        conn.execute("COMMIT")
                        deleted += 1
                    except BaseException:
                        _rollback(conn)
                        if row is not None:
                            self.index.add(record_id, decode_vector(row[0]))
                        raise

        if missing:
            logger.debug(f"delete_by_id skipped {len(missing)} unknown ids: {missing[:10]}")
        logger.log_operation("store.delete_by_id", "success", {"deleted": deleted, "missing": len(missing)})
        return deleted

    def delete_all(self) -> int:
        """Clear every record and the whole index as one logical operation."""
        self._check_open()
        with self.exclusive():
            with get_db(self.db_path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    count = conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]
                    self.index.clear()
                    conn.execute("DELETE FROM records")
                    save_centroids(conn, None)
                    conn.execute("COMMIT")
                except BaseException:
                    _rollback(conn)
                    self._reload_index_locked()
                    raise

        logger.log_operation("store.delete_all", "success", {"deleted": count})
        return count

    def set_model_version(self, model_version: str) -> None:
        """Retag the collection, e.g. after a reseed with a new embedding model."""
        self._check_open()
        with get_db(self.db_path) as conn:
            set_meta(conn, "model_version", model_version)
        self.model_version = model_version
        self.requested_model_version = model_version

    # -- reads -------------------------------------------------------------

    @staticmethod
    def _row_to_record(row) -> Record:
        record_id, blob, payload_json, version, updated_at = row
        return Record(
            id=record_id,
            vector=decode_vector(blob),
            payload=json.loads(payload_json),
            version=version,
            updated_at=datetime.fromisoformat(updated_at),
        )

    def get(self, record_id: str) -> Record:
        """Fetch one record; raises RecordNotFound for unknown ids."""
        self._check_open()
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, vector, payload, version, updated_at FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            raise RecordNotFound(record_id)
        return self._row_to_record(row)

    def get_many(self, record_ids: Iterable[str]) -> Dict[str, Record]:
        """Fetch many records at once. Unknown ids are absent from the result."""
        self._check_open()
        ids = list(dict.fromkeys(record_ids))
        found = {}
        with get_db(self.db_path) as conn:
            for start in range(0, len(ids), _SQL_CHUNK):
                chunk = ids[start:start + _SQL_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT id, vector, payload, version, updated_at FROM records WHERE id IN ({placeholders})",
                    chunk
                ).fetchall()
                for row in rows:
                    found[row[0]] = self._row_to_record(row)
        return found

    def contains(self, record_id: str) -> bool:
        self._check_open()
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT 1 FROM records WHERE id = ?", (record_id,)).fetchone()
        return row is not None

    def count(self) -> int:
        self._check_open()
        with get_db(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]

    def ids(self) -> List[str]:
        self._check_open()
        with get_db(self.db_path) as conn:
            return [row[0] for row in conn.execute("SELECT id FROM records ORDER BY id")]

    def head_vectors(self, limit: int = 1) -> List[Tuple[str, np.ndarray]]:
        """The first `limit` (id, vector) pairs by id."""
        self._check_open()
        with get_db(self.db_path) as conn:
            rows = conn.execute("SELECT id, vector FROM records ORDER BY id LIMIT ?", (limit,)).fetchall()
        return [(record_id, decode_vector(blob)) for record_id, blob in rows]

    # -- index maintenance -------------------------------------------------

    def _reload_index_locked(self) -> int:
        with get_db(self.db_path) as conn:
            centroids = load_centroids(conn)
            rows = conn.execute("SELECT id, vector FROM records").fetchall()
        self.index.clear()
        if centroids is not None and centroids.shape[1] == self.dimension:
            self.index.load_centroids(centroids)
        for record_id, blob in rows:
            self.index.add(record_id, decode_vector(blob))
        return len(rows)

    def reload_index(self) -> int:
        """Re-derive the whole index from stored records. Returns the number indexed."""
        self._check_open()
        with self.exclusive():
            return self._reload_index_locked()

    def rebuild_centroids(self, num_clusters: int, max_iterations: int = 25, seed: int = 0) -> int:
        """Recompute and persist the index's coarse clusters. Returns clusters in use."""
        self._check_open()
        with self.exclusive():
            k = self.index.rebuild_centroids(num_clusters, max_iterations=max_iterations, seed=seed)
            with get_db(self.db_path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    save_centroids(conn, self.index.centroids())
                    conn.execute("COMMIT")
                except BaseException:
                    _rollback(conn)
                    raise

        logger.log_index_operation("rebuild_centroids", {"requested": num_clusters, "clusters": k})
        return k

    def health(self) -> Dict[str, Any]:
        """Summary of store and index state."""
        db_ok = health_check(self.db_path)
        info = {
            "status": "healthy" if db_ok and not self._closed else "unhealthy",
            "db_health": db_ok,
            "dimension": self.dimension,
            "model_version": self.model_version,
            "stale": self.stale,
            "index_provider": type(self.index).__name__,
            "index_size": self.index.size(),
        }
        if not self._closed and db_ok:
            info["record_count"] = self.count()
        if isinstance(self.index, ClusteredIndex):
            info["partitions"] = self.index.partition_sizes()
        return info
