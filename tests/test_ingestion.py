"""
Ingestion pipeline: reseed, incremental ingest, retries, failure reporting
and cancellation.
"""

import threading

import pytest

from conftest import ScriptedEmbedding
from vecsearch.core.errors import DimensionMismatch, ModelVersionMismatch
from vecsearch.core.ingestion import IngestionPipeline, to_source_record
from vecsearch.core.query_engine import QueryEngine
from vecsearch.util.cancellation import CancellationToken
from vecsearch.vector.embeddings import (
    EmbedderMisconfiguredError,
    EmbedderUnavailableError,
    InvalidInputError,
    RateLimitedError,
)
from vecsearch.vector.types import SourceRecord


def _sources(count, prefix="p"):
    return [
        SourceRecord(payload={"name": f"Product {i}"}, text=f"product number {i}", id=f"{prefix}{i}")
        for i in range(count)
    ]


def test_reseed_inserts_every_record(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2)
    pipeline = IngestionPipeline(store, embedder, batch_size=2, max_workers=2, retry_config=fast_retry)

    summary = pipeline.reseed(_sources(5))

    assert summary.succeeded == 5
    assert summary.failed == 0
    assert summary.succeeded_ids == ["p0", "p1", "p2", "p3", "p4"]
    assert store.count() == 5
    assert store.index.size() == 5


def test_reseed_clears_previous_collection(store, fast_retry):
    store.upsert("stale", [1.0, 0.0], {"name": "Old"})
    pipeline = IngestionPipeline(store, ScriptedEmbedding(dimension=2), retry_config=fast_retry)

    pipeline.reseed(_sources(2))

    assert store.ids() == ["p0", "p1"]
    assert not store.index.contains("stale")


def test_reseed_reports_partial_failure(store, fast_retry):
    """Five records, one embedder outage: four succeed, one is reported, queries see four."""
    sources = _sources(5)
    embedder = ScriptedEmbedding(dimension=2, failures={"product number 3": EmbedderUnavailableError("down")})
    pipeline = IngestionPipeline(store, embedder, batch_size=5, max_workers=5, retry_config=fast_retry)

    summary = pipeline.reseed(sources)

    assert summary.succeeded == 4
    assert summary.failed == 1
    assert summary.failed_ids == ["p3"]
    failure = summary.failures[0]
    assert failure.attempts == 3
    assert failure.reason == "embedding unavailable after 3 attempts"
    assert failure.last_error == "down"

    engine = QueryEngine(store, embedder, retry_config=fast_retry)
    results = engine.query("anything", limit=10)
    ids = [r.id for r in results]
    assert sorted(ids) == ["p0", "p1", "p2", "p4"]
    assert len(set(ids)) == 4


def test_transient_failures_are_retried(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2, failures={
        "product number 1": [RateLimitedError("429"), RateLimitedError("429")],
    })
    pipeline = IngestionPipeline(store, embedder, retry_config=fast_retry)

    summary = pipeline.reseed(_sources(2))

    assert summary.succeeded == 2
    assert embedder.calls.count("product number 1") == 3


def test_invalid_input_is_not_retried(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2, failures={"product number 0": InvalidInputError("too long", 400)})
    pipeline = IngestionPipeline(store, embedder, retry_config=fast_retry)

    summary = pipeline.reseed(_sources(2))

    assert summary.failed_ids == ["p0"]
    assert summary.failures[0].attempts == 1
    assert summary.failures[0].reason == "embedding failed: InvalidInputError"
    assert embedder.calls.count("product number 0") == 1


def test_misconfigured_embedder_is_unavailable_not_retried(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2, failures={
        "product number 1": EmbedderMisconfiguredError("bad key", 401),
    })
    pipeline = IngestionPipeline(store, embedder, retry_config=fast_retry)

    summary = pipeline.reseed(_sources(2))

    assert summary.failed_ids == ["p1"]
    assert summary.failures[0].attempts == 1
    assert summary.failures[0].reason == "embedding unavailable: embedder misconfigured"
    assert embedder.calls.count("product number 1") == 1


def test_empty_text_is_reported(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2)
    pipeline = IngestionPipeline(store, embedder, retry_config=fast_retry)

    summary = pipeline.reseed([SourceRecord(payload={}, text="  ", id="blank")] + _sources(1))

    assert summary.succeeded_ids == ["p0"]
    assert summary.failures[0].record_id == "blank"
    assert summary.failures[0].attempts == 0
    assert "  " not in embedder.calls


def test_store_rejection_is_reported(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2, vectors={"zero": [0.0, 0.0]})
    pipeline = IngestionPipeline(store, embedder, retry_config=fast_retry)

    summary = pipeline.reseed([SourceRecord(payload={}, text="zero", id="z")] + _sources(1))

    assert summary.succeeded == 1
    assert summary.failures[0].reason == "rejected by store: InvalidVector"


def test_dimension_checked_before_clearing(store, fast_retry):
    store.upsert("keep", [1.0, 0.0])
    pipeline = IngestionPipeline(store, ScriptedEmbedding(dimension=3), retry_config=fast_retry)

    with pytest.raises(DimensionMismatch):
        pipeline.reseed(_sources(2))

    assert store.ids() == ["keep"]


def test_reseed_retags_model_version(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2, version="new-model@2")
    pipeline = IngestionPipeline(store, embedder, retry_config=fast_retry)

    pipeline.reseed(_sources(1))

    assert store.model_version == "new-model@2"


def test_ingest_keeps_existing_records(store, fast_retry):
    store.upsert("existing", [1.0, 0.0])
    pipeline = IngestionPipeline(store, ScriptedEmbedding(dimension=2), retry_config=fast_retry)

    summary = pipeline.ingest(_sources(2))

    assert summary.succeeded == 2
    assert store.ids() == ["existing", "p0", "p1"]


def test_ingest_rejects_other_model(store, fast_retry):
    pipeline = IngestionPipeline(store, ScriptedEmbedding(dimension=2, version="other@1"), retry_config=fast_retry)
    with pytest.raises(ModelVersionMismatch):
        pipeline.ingest(_sources(1))


def test_record_ids(store, fast_retry):
    pipeline = IngestionPipeline(store, ScriptedEmbedding(dimension=2), retry_config=fast_retry, id_field="sku")

    summary = pipeline.reseed([
        {"text": "explicit", "payload": {"sku": "ignored"}, "id": "given"},
        {"text": "from field", "payload": {"sku": "SKU-1"}},
        {"text": "generated", "payload": {}},
    ])

    assert summary.succeeded_ids[:2] == ["given", "SKU-1"]
    assert len(summary.succeeded_ids[2]) == 32
    assert store.count() == 3


def test_duplicate_ids_last_write_wins(store, fast_retry):
    embedder = ScriptedEmbedding(dimension=2)
    pipeline = IngestionPipeline(store, embedder, batch_size=1, max_workers=1, retry_config=fast_retry)

    pipeline.reseed([
        SourceRecord(payload={"v": 1}, text="first", id="dup"),
        SourceRecord(payload={"v": 2}, text="second", id="dup"),
    ])

    assert store.count() == 1
    assert store.get("dup").payload == {"v": 2}
    assert store.get("dup").version == 2


def test_to_source_record_rejects_other_types():
    with pytest.raises(TypeError):
        to_source_record("just text")
    assert to_source_record({"text": "t"}).payload == {}


def test_cancel_before_start_keeps_collection(store, fast_retry):
    store.upsert("keep", [1.0, 0.0])
    pipeline = IngestionPipeline(store, ScriptedEmbedding(dimension=2), retry_config=fast_retry)
    token = CancellationToken()
    token.cancel()

    summary = pipeline.reseed(_sources(3), cancel_token=token)

    assert summary.cancelled
    assert summary.skipped == 3
    assert store.ids() == ["keep"]


class _CancellingEmbedding(ScriptedEmbedding):
    """Cancels the token while embedding a chosen text."""

    def __init__(self, token, trigger, **kwargs):
        super().__init__(**kwargs)
        self.token = token
        self.trigger = trigger

    def embed_text(self, text):
        if text == self.trigger:
            self.token.cancel("stop requested")
        return super().embed_text(text)


def test_cancel_mid_run_skips_remaining_batches(store, fast_retry):
    token = CancellationToken()
    embedder = _CancellingEmbedding(token, "product number 1", dimension=2)
    pipeline = IngestionPipeline(store, embedder, batch_size=2, max_workers=1, retry_config=fast_retry)

    summary = pipeline.reseed(_sources(6), cancel_token=token)

    assert summary.cancelled
    assert summary.succeeded_ids == ["p0", "p1"]
    assert summary.skipped == 4
    assert summary.total == 6
    assert store.ids() == ["p0", "p1"]


def test_concurrency_is_bounded(store, fast_retry):
    active = []
    peak = []
    lock = threading.Lock()

    class _CountingEmbedding(ScriptedEmbedding):
        def embed_text(self, text):
            with lock:
                active.append(text)
                peak.append(len(active))
            try:
                return super().embed_text(text)
            finally:
                with lock:
                    active.remove(text)

    pipeline = IngestionPipeline(store, _CountingEmbedding(dimension=2), batch_size=4, max_workers=2,
                                 retry_config=fast_retry)
    summary = pipeline.reseed(_sources(12))

    assert summary.succeeded == 12
    assert max(peak) <= 2
