"""
Ingestion pipeline: embeds source records and writes them into the store and index.

Records are processed in batches on a bounded thread pool so a slow or
rate-limited embedder cannot exhaust resources. Transient embedder failures
are retried with exponential backoff; a record that still fails is reported in
the summary and the run carries on with the rest.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from . import config
from .errors import DimensionMismatch, ModelVersionMismatch, OperationCancelled, VectorSearchError
from .record_store import VectorRecordStore
from ..util.cancellation import CancellationToken
from ..util.logging import logger
from ..util.retry import RetryConfig, retry_with_backoff
from ..vector.embeddings import TRANSIENT_ERRORS, EmbedderMisconfiguredError, IEmbeddingProvider
from ..vector.types import IngestFailure, IngestSummary, SourceRecord

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"

_Outcome = Tuple[str, Optional[IngestFailure]]


def to_source_record(item: Union[SourceRecord, Dict[str, Any]]) -> SourceRecord:
    """Accept SourceRecord instances or {"payload", "text", "id"} dicts."""
    if isinstance(item, SourceRecord):
        return item
    if isinstance(item, dict) and "text" in item:
        return SourceRecord(payload=item.get("payload") or {}, text=item["text"], id=item.get("id"))
    raise TypeError(f"cannot ingest {type(item).__name__}; expected SourceRecord or a dict with 'text'")


class IngestionPipeline:
    """
    Bulk (re)population of a record store.

    Args:
        store: target record store
        embedder: text -> vector collaborator
        batch_size: records submitted per batch
        max_workers: concurrent embedder calls
        retry_config: retry policy for transient embedder failures
        batch_delay_seconds: fixed pause between batches for strict rate limits
        id_field: payload field to use as record id when a record has none
    """

    def __init__(self, store: VectorRecordStore, embedder: IEmbeddingProvider,
                 batch_size: int = None, max_workers: int = None,
                 retry_config: Optional[RetryConfig] = None,
                 batch_delay_seconds: float = None, id_field: Optional[str] = None):
        self.store = store
        self.embedder = embedder
        self.batch_size = max(1, batch_size or config.INGEST_BATCH_SIZE)
        self.max_workers = max(1, max_workers or config.INGEST_MAX_WORKERS)
        self.retry_config = retry_config or config.get_retry_config()
        self.batch_delay_seconds = config.INGEST_BATCH_DELAY_SEC if batch_delay_seconds is None else batch_delay_seconds
        self.id_field = id_field if id_field is not None else config.INGEST_ID_FIELD

    def _check_dimension(self) -> None:
        dimension = self.embedder.get_dimension()
        if dimension != self.store.dimension:
            raise DimensionMismatch(self.store.dimension, dimension, "embedder")

    def _record_id(self, record: SourceRecord) -> str:
        if record.id:
            return str(record.id)
        if self.id_field and record.payload.get(self.id_field) not in (None, ""):
            return str(record.payload[self.id_field])
        return uuid.uuid4().hex

    def reseed(self, records: Iterable[Union[SourceRecord, Dict[str, Any]]],
               cancel_token: Optional[CancellationToken] = None) -> IngestSummary:
        """
        Clear the collection and repopulate it from records.

        Not all-or-nothing: each record's store and index write is atomic,
        and the summary lists every record that failed.

        Raises:
            DimensionMismatch: embedder dimension differs from the store's,
                checked before anything is cleared
        """
        sources = [to_source_record(r) for r in records]
        self._check_dimension()

        if cancel_token is not None and cancel_token.cancelled:
            summary = IngestSummary(skipped=len(sources), cancelled=True)
            logger.log_ingest_summary("reseed", 0, 0, skipped=summary.skipped, cancelled=True)
            return summary

        cleared = self.store.delete_all()
        self.store.set_model_version(self.embedder.model_version)
        logger.info(f"Cleared {cleared} existing records before reseed")

        return self._run(sources, cancel_token, "reseed")

    def ingest(self, records: Iterable[Union[SourceRecord, Dict[str, Any]]],
               cancel_token: Optional[CancellationToken] = None) -> IngestSummary:
        """Upsert records into the existing collection without clearing it."""
        sources = [to_source_record(r) for r in records]
        self._check_dimension()

        expected = self.store.model_version
        actual = self.embedder.model_version
        if expected is None:
            self.store.set_model_version(actual)
        elif expected != actual:
            raise ModelVersionMismatch(expected, actual)

        return self._run(sources, cancel_token, "ingest")

    def _run(self, sources: List[SourceRecord], cancel_token: Optional[CancellationToken],
             operation: str) -> IngestSummary:
        prepared = [(self._record_id(source), source) for source in sources]
        summary = IngestSummary()

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ingest") as executor:
            for start in range(0, len(prepared), self.batch_size):
                if start > 0 and self.batch_delay_seconds > 0:
                    if cancel_token is not None:
                        cancel_token.wait(self.batch_delay_seconds)
                    else:
                        time.sleep(self.batch_delay_seconds)

                if cancel_token is not None and cancel_token.cancelled:
                    summary.skipped += len(prepared) - start
                    summary.cancelled = True
                    break

                batch = prepared[start:start + self.batch_size]
                futures = [
                    executor.submit(self._ingest_one, record_id, source, cancel_token)
                    for record_id, source in batch
                ]
                for (record_id, _), future in zip(batch, futures):
                    status, failure = future.result()
                    if status == SUCCEEDED:
                        summary.succeeded += 1
                        summary.succeeded_ids.append(record_id)
                    elif status == FAILED:
                        summary.failed += 1
                        summary.failures.append(failure)
                    else:
                        summary.skipped += 1
                        summary.cancelled = True

        logger.log_ingest_summary(
            operation, summary.succeeded, summary.failed,
            skipped=summary.skipped, failed_ids=summary.failed_ids, cancelled=summary.cancelled,
        )
        return summary

    def _ingest_one(self, record_id: str, source: SourceRecord,
                    cancel_token: Optional[CancellationToken]) -> _Outcome:
        """Embed and upsert a single record. Never raises; the outcome says what happened."""
        if cancel_token is not None and cancel_token.cancelled:
            return SKIPPED, None

        if not isinstance(source.text, str) or not source.text.strip():
            failure = IngestFailure(record_id=record_id, reason="empty text for embedding", attempts=0)
            logger.log_ingest_record(record_id, status="failed", attempts=0, reason=failure.reason)
            return FAILED, failure

        try:
            result = retry_with_backoff(
                lambda: self.embedder.embed_text(source.text),
                self.retry_config,
                retry_on=TRANSIENT_ERRORS,
                operation_name=f"embed {record_id}",
                cancel_token=cancel_token,
            )
        except OperationCancelled:
            return SKIPPED, None

        if not result.success:
            if result.exhausted:
                reason = f"embedding unavailable after {result.attempts} attempts"
            elif isinstance(result.error, EmbedderMisconfiguredError):
                reason = "embedding unavailable: embedder misconfigured"
            else:
                reason = f"embedding failed: {type(result.error).__name__}"
            failure = IngestFailure(
                record_id=record_id,
                reason=reason,
                attempts=result.attempts,
                last_error=str(result.error) if result.error else None,
            )
            logger.log_ingest_record(record_id, status="failed", attempts=result.attempts, reason=reason)
            return FAILED, failure

        try:
            self.store.upsert(record_id, result.result, source.payload)
        except VectorSearchError as e:
            reason = f"rejected by store: {type(e).__name__}"
            logger.log_ingest_record(record_id, status="failed", attempts=result.attempts, reason=str(e))
            return FAILED, IngestFailure(record_id, reason, result.attempts, str(e))
        except Exception as e:
            # Storage faults are reported per record; the rest of the run continues
            logger.log_ingest_record(record_id, status="failed", attempts=result.attempts, reason=str(e))
            return FAILED, IngestFailure(record_id, f"store write failed: {type(e).__name__}", result.attempts, str(e))

        logger.log_ingest_record(record_id, attempts=result.attempts)
        return SUCCEEDED, None
