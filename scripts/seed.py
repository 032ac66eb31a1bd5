#!/usr/bin/env python3
"""
Seed Utility
Clears the collection and repopulates it from a JSON list of products,
embedding "<name>. <description>" for each one.
"""

import argparse
import json
import sys
import uuid
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vecsearch.core.config import get_embedding_provider, open_store, validate_config, INDEX_NUM_CLUSTERS
from vecsearch.core.errors import VectorSearchError
from vecsearch.core.ingestion import IngestionPipeline
from vecsearch.vector.types import SourceRecord


def product_to_source(product: dict) -> SourceRecord:
    """Embed name and description together, keep the whole product as payload."""
    name = product.get("name", "")
    description = product.get("description", "")
    text = f"{name}. {description}" if description else name
    record_id = product.get("id") or product.get("_id") or uuid.uuid4().hex
    return SourceRecord(payload=product, text=text, id=str(record_id))


def load_products(path: str) -> list:
    with open(path, "r", encoding="utf-8") as f:
        products = json.load(f)
    if not isinstance(products, list):
        raise ValueError(f"{path} must contain a JSON list of products")
    return products


def main(argv=None):
    """Reseed the collection from a products file."""
    parser = argparse.ArgumentParser(description="Reseed the vector collection from a JSON products file")
    parser.add_argument("products", help="Path to a JSON list of products")
    parser.add_argument("--clusters", type=int, default=INDEX_NUM_CLUSTERS,
                        help="Rebuild this many index centroids after seeding (0 = exact search)")
    args = parser.parse_args(argv)

    for issue in validate_config():
        print(f"WARNING: {issue}")

    try:
        products = load_products(args.products)
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not read products: {e}")
        sys.exit(1)

    try:
        embedder = get_embedding_provider()
        store = open_store(embedder=embedder)
    except (VectorSearchError, ValueError) as e:
        print(f"ERROR: Could not open vector store: {e}")
        sys.exit(1)

    try:
        sources = [product_to_source(p) for p in products]
        names = {s.id: s.payload.get("name", s.id) for s in sources}

        pipeline = IngestionPipeline(store, embedder)
        summary = pipeline.reseed(sources)
        print(f"Cleared existing data and embedded {summary.total} products")

        for record_id in summary.succeeded_ids:
            print(f"✓ Inserted: {names.get(record_id, record_id)}")

        if args.clusters > 1:
            clusters = store.rebuild_centroids(args.clusters)
            print(f"✓ Rebuilt {clusters} index centroids")

        if summary.failed:
            print(f"\nSeeded {summary.succeeded} of {len(products)} products; {summary.failed} failed:")
            for failure in summary.failures:
                detail = f" ({failure.last_error})" if failure.last_error else ""
                print(f"  ✗ {failure.record_id}: {failure.reason}{detail}")
            sys.exit(1)

        print("\n✅ Successfully seeded all products!")
        print(f"Total documents: {summary.succeeded}")
    except VectorSearchError as e:
        print(f"ERROR: Seeding failed: {e}")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
