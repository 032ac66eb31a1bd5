"""
Structured operation logging for store, index, query and ingestion events.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for record store, similarity index, query and ingestion operations."""

    def __init__(self, name: str = "vecsearch"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("warning", "skipped", "cancelled"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_record_operation(self, operation: str, record_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a record store operation."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(details)

        self.log_operation(f"store.{operation}", status, log_details)

    def log_index_operation(self, operation: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a similarity index maintenance operation."""
        self.log_operation(f"index.{operation}", status, details)

    def log_query(self, text: str, limit: int, num_candidates: int, result_count: int,
                  duration_ms: float, filtered: bool = False):
        """Log a query, truncating the query text."""
        details = {
            "query": text[:50] + "..." if len(text) > 50 else text,
            "limit": limit,
            "num_candidates": num_candidates,
            "results": result_count,
            "filtered": filtered,
            "duration_ms": round(duration_ms, 2),
        }
        self.log_operation("query", "success", details)

    def log_ingest_record(self, record_id: str, status: str = "success", attempts: int = 1, reason: str = None):
        """Log the outcome of ingesting one record."""
        details = {"record_id": record_id, "attempts": attempts}
        if reason:
            details["reason"] = reason[:100]

        self.log_operation("ingest.record", status, details)

    def log_ingest_summary(self, operation: str, succeeded: int, failed: int, skipped: int = 0,
                           failed_ids: List[str] = None, cancelled: bool = False):
        """Log the summary of a reseed or incremental ingest."""
        details = {
            "succeeded": succeeded,
            "failed": failed,
            "skipped": skipped,
        }
        if failed_ids:
            details["failed_ids"] = failed_ids[:20]

        if cancelled:
            status = "cancelled"
        elif failed:
            status = "partial"
        else:
            status = "success"
        self.log_operation(f"ingest.{operation}", status, details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
