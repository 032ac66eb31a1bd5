"""
Record and result types shared by the store, index, query engine and ingestion pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass
class Record:
    """A stored record: the canonical owner of payload and vector."""

    id: str
    """Unique identifier for the record"""

    vector: np.ndarray
    """The embedding as stored (not normalised)"""

    payload: Dict[str, Any]
    """Opaque mapping of named fields"""

    version: int
    """Incremented on every replace, starting at 1"""

    updated_at: datetime
    """UTC timestamp of the last write"""


@dataclass(frozen=True)
class SearchHit:
    """A raw similarity index hit: back-reference plus cosine score."""

    id: str
    score: float


@dataclass
class QueryResult:
    """Represents a ranked query result joined back to the record store."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Cosine similarity of the match (-1 to 1)"""

    payload: Dict[str, Any]
    """Payload, or the caller-selected projection of it"""


@dataclass
class SourceRecord:
    """Ingestion input: payload plus the text to embed."""

    payload: Dict[str, Any]
    text: str
    id: Optional[str] = None


@dataclass
class IngestFailure:
    """One record that could not be ingested, with remediation context."""

    record_id: str
    reason: str
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass
class IngestSummary:
    """Outcome of a reseed or ingest. Partial success is reported, never hidden."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    succeeded_ids: List[str] = field(default_factory=list)
    failures: List[IngestFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped

    @property
    def failed_ids(self) -> List[str]:
        return [f.record_id for f in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "succeeded_ids": list(self.succeeded_ids),
            "failures": [
                {
                    "record_id": f.record_id,
                    "reason": f.reason,
                    "attempts": f.attempts,
                    "last_error": f.last_error,
                }
                for f in self.failures
            ],
        }
