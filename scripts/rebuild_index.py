#!/usr/bin/env python3
"""
Index Rebuild Utility
Re-derives the similarity index from the canonical record store, recomputes
cluster centroids and verifies that store and index agree.
"""

import argparse
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vecsearch.core.config import open_store, INDEX_NUM_CLUSTERS
from vecsearch.core.errors import VectorSearchError
from vecsearch.core.maintenance import rebuild_index, repair_consistency


def main(argv=None):
    """Rebuild the similarity index from the record store."""
    parser = argparse.ArgumentParser(description="Rebuild the similarity index from stored records")
    parser.add_argument("--clusters", type=int, default=INDEX_NUM_CLUSTERS,
                        help="Number of centroids to build (0 or 1 = exact search)")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for centroid initialisation")
    args = parser.parse_args(argv)

    print("Starting vector index rebuild...")

    try:
        store = open_store()
    except VectorSearchError as e:
        print(f"ERROR: Could not open vector store: {e}")
        sys.exit(1)

    try:
        count = store.count()
        print(f"Found {count} records in canonical store")

        if count == 0:
            print("No entries to rebuild. Exiting.")
            return

        report = rebuild_index(store, num_clusters=args.clusters, seed=args.seed)
        for action in report.actions_taken:
            print(f"✓ {action.capitalize()}")

        if report.errors:
            print("WARNING: Store and index disagree; repairing")
            repair = repair_consistency(store)
            print(f"✓ Resolved {repair.issues_resolved} of {repair.issues_found} issues")

        # Quick smoke test: the first record must find itself
        try:
            record_id, vector = store.head_vectors(1)[0]
            hits = store.index.search(vector, num_candidates=min(10, count), limit=1)
            if hits and hits[0].score >= 0.999:
                print(f"✓ Verification search returned {len(hits)} results")
            else:
                print(f"WARNING: Verification search did not return {record_id} as its own nearest neighbour")
        except VectorSearchError as e:
            print(f"WARNING: Verification search failed: {e}")

        print("Index rebuild complete!")
    finally:
        store.close()


if __name__ == "__main__":
    main()
