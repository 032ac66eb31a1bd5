"""
Embedding-indexed similarity search: record store, similarity index,
query engine and ingestion pipeline.
"""

__version__ = "1.0.0"
