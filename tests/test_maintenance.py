"""
Tests for maintenance operations: store/index consistency audit, repair and
index rebuild.
"""

from datetime import datetime

import pytest

from vecsearch.core.maintenance import (
    MaintenanceReport,
    check_consistency,
    rebuild_index,
    repair_consistency,
)


class TestMaintenanceReport:
    """Test maintenance report functionality."""

    def test_report_to_dict(self):
        """Test report serialization."""
        report = MaintenanceReport(
            operation="test_op",
            started_at=datetime(2025, 1, 1, 12, 0, 0),
            completed_at=datetime(2025, 1, 1, 12, 1, 0),
            issues_found=1,
            metadata={"key": "value"}
        )

        data = report.to_dict()

        assert data["operation"] == "test_op"
        assert data["started_at"] == "2025-01-01T12:00:00"
        assert data["completed_at"] == "2025-01-01T12:01:00"
        assert data["issues_found"] == 1
        assert data["metadata"] == {"key": "value"}

    def test_report_without_completion(self):
        data = MaintenanceReport(operation="x", started_at=datetime(2025, 1, 1)).to_dict()
        assert "completed_at" not in data


class TestConsistency:
    """Store and index agreement."""

    def test_consistent_store(self, store):
        store.upsert("a", [1.0, 0.0])
        store.upsert("b", [0.0, 1.0])

        report = check_consistency(store)

        assert report.consistent
        assert report.store_count == 2
        assert report.index_count == 2

    def test_detects_and_repairs_drift(self, store):
        store.upsert("a", [1.0, 0.0])
        store.upsert("b", [0.0, 1.0])
        # Simulate drift behind the store's back
        store.index.remove("a")
        store.index.add("ghost", [1.0, 1.0])

        report = check_consistency(store)
        assert not report.consistent
        assert report.missing_from_index == ["a"]
        assert report.orphaned_in_index == ["ghost"]

        repair = repair_consistency(store)

        assert repair.issues_found == 2
        assert repair.issues_resolved == 2
        assert repair.errors == []
        assert check_consistency(store).consistent
        hits = store.index.search([1.0, 0.0], num_candidates=2, limit=1)
        assert hits[0].id == "a"


class TestRebuildIndex:
    """Re-deriving the index from the canonical store."""

    def test_rebuild_exact(self, store):
        store.upsert("a", [1.0, 0.0])
        store.index.clear()

        report = rebuild_index(store)

        assert report.errors == []
        assert report.metadata == {"indexed": 1, "clusters": 0}
        assert "exact search (no centroids)" in report.actions_taken
        assert store.index.contains("a")
        assert report.completed_at is not None

    def test_rebuild_with_clusters(self, store):
        for i in range(6):
            store.upsert(f"x{i}", [1.0, 0.05 * i])
            store.upsert(f"y{i}", [0.05 * i, 1.0])

        report = rebuild_index(store, num_clusters=2, seed=1)

        assert report.metadata["clusters"] == 2
        assert "rebuilt 2 centroids" in report.actions_taken
        assert store.index.centroids().shape == (2, 2)
        assert check_consistency(store).consistent


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
