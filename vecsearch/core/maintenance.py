"""
Maintenance routines: store/index consistency audit, repair and index rebuild.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .record_store import VectorRecordStore
from ..util.logging import logger


@dataclass
class MaintenanceReport:
    """Outcome of a maintenance operation."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


@dataclass
class ConsistencyReport:
    """Ids present on only one side of the store/index pair."""
    store_count: int
    index_count: int
    missing_from_index: List[str] = field(default_factory=list)
    orphaned_in_index: List[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.missing_from_index and not self.orphaned_in_index


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _compare(store: VectorRecordStore) -> ConsistencyReport:
    store_ids = set(store.ids())
    index_ids = set(store.index.ids())
    return ConsistencyReport(
        store_count=len(store_ids),
        index_count=len(index_ids),
        missing_from_index=sorted(store_ids - index_ids),
        orphaned_in_index=sorted(index_ids - store_ids),
    )


def check_consistency(store: VectorRecordStore) -> ConsistencyReport:
    """Compare store and index ids with writers paused."""
    with store.exclusive():
        report = _compare(store)

    status = "success" if report.consistent else "warning"
    logger.log_operation("maintenance.consistency", status, {
        "store_count": report.store_count,
        "index_count": report.index_count,
        "missing_from_index": len(report.missing_from_index),
        "orphaned_in_index": len(report.orphaned_in_index),
    })
    return report


def repair_consistency(store: VectorRecordStore) -> MaintenanceReport:
    """Re-add stored records missing from the index and drop index orphans."""
    report = MaintenanceReport(operation="repair_consistency", started_at=_now())

    with store.exclusive():
        consistency = _compare(store)
        report.issues_found = len(consistency.missing_from_index) + len(consistency.orphaned_in_index)

        for record_id in consistency.orphaned_in_index:
            store.index.remove(record_id)
            report.issues_resolved += 1
            report.actions_taken.append(f"removed orphaned index entry {record_id}")

        if consistency.missing_from_index:
            records = store.get_many(consistency.missing_from_index)
            for record_id in consistency.missing_from_index:
                record = records.get(record_id)
                if record is None:
                    report.errors.append(f"record {record_id} vanished during repair")
                    continue
                store.index.add(record_id, record.vector)
                report.issues_resolved += 1
                report.actions_taken.append(f"re-indexed {record_id}")

    report.completed_at = _now()
    logger.log_operation("maintenance.repair", "success" if not report.errors else "warning", {
        "issues_found": report.issues_found,
        "issues_resolved": report.issues_resolved,
    })
    return report


def rebuild_index(store: VectorRecordStore, num_clusters: int = 0, seed: int = 0) -> MaintenanceReport:
    """Re-derive the index from the store, then recompute centroids when num_clusters > 1."""
    report = MaintenanceReport(operation="rebuild_index", started_at=_now())

    indexed = store.reload_index()
    report.actions_taken.append(f"re-indexed {indexed} records")

    clusters = store.rebuild_centroids(num_clusters, seed=seed)
    if clusters:
        report.actions_taken.append(f"rebuilt {clusters} centroids")
    else:
        report.actions_taken.append("exact search (no centroids)")

    consistency = check_consistency(store)
    report.issues_found = len(consistency.missing_from_index) + len(consistency.orphaned_in_index)
    if not consistency.consistent:
        report.errors.append("store and index disagree after rebuild")

    report.metadata = {"indexed": indexed, "clusters": clusters}
    report.completed_at = _now()
    return report
