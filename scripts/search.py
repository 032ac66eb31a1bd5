#!/usr/bin/env python3
"""
Search Utility
Semantic search over the seeded collection: prints the best matching
product names with their similarity scores.
"""

import argparse
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vecsearch.core.config import get_embedding_provider, open_store, QUERY_DEFAULT_LIMIT
from vecsearch.core.errors import VectorSearchError
from vecsearch.core.query_engine import QueryEngine


def main(argv=None):
    """Run one query from the command line."""
    parser = argparse.ArgumentParser(description="Semantic search over the vector collection")
    parser.add_argument("query", nargs="*", help="Search query words")
    parser.add_argument("--limit", type=int, default=QUERY_DEFAULT_LIMIT, help="Number of results")
    parser.add_argument("--num-candidates", type=int, default=None,
                        help="Candidates examined before re-ranking")
    parser.add_argument("--fields", default="name",
                        help="Comma separated payload fields to print (empty for all)")
    args = parser.parse_args(argv)

    if not args.query:
        print("\nNo search query provided. Run example searches with:")
        print('python scripts/search.py "your search query here"')
        return

    query = " ".join(args.query)
    projection = [f for f in args.fields.split(",") if f] or None
    print(f'Searching for: "{query}"')

    try:
        embedder = get_embedding_provider()
        store = open_store(embedder=embedder)
    except (VectorSearchError, ValueError) as e:
        print(f"ERROR: Could not open vector store: {e}")
        sys.exit(1)

    try:
        engine = QueryEngine(store, embedder)
        results = engine.query(query, limit=args.limit, num_candidates=args.num_candidates,
                               projection=projection)
    except VectorSearchError as e:
        print(f"ERROR: Search failed ({type(e).__name__}): {e}")
        sys.exit(1)
    finally:
        store.close()

    print("Search Results:")
    if not results:
        print("  (no matches)")
    for result in results:
        fields = ", ".join(f"{k}: {v}" for k, v in result.payload.items())
        print(f"  {result.score:.4f}  {fields or result.id}")


if __name__ == "__main__":
    main()
