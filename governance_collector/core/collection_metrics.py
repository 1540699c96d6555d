"""
Collection Run Tracking Module

Tracks performance and health of a single governance collection run:
    - CollectionRunTracker: Counters and timing for one run
    - track_collection_run(): Context manager for automatic tracking
    - get_current_tracker(): Access the active tracker from the API client

The collection job persists tracker.to_dict() to the database after each run.
"""

import time
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

# Active tracker for API client access
_current_tracker: "CollectionRunTracker | None" = None


class CollectionRunTracker:
    """
    Tracks performance and health metrics for a single collection run.

    Attributes:
        run_name: Name of the run (e.g., "governance")
        start_time: Timestamp when tracker was started (None before start())
        execution_time_ms: Total execution time in milliseconds
        success: Whether the run completed without errors
        workspace_count: Number of workspaces processed
        collection_count: Number of collections processed
        api_call_count: Number of API requests made
        rate_limit_hits: Number of 429 rate limit responses
        retry_count: Number of transient error retries
        error_message: Error text if failed (None if successful)
        error_type: Exception class name if failed (None if successful)

    Example:
        >>> tracker = CollectionRunTracker("governance")
        >>> tracker.start()
        >>> tracker.record_api_call()  # Called by the Postman client
        >>> tracker.end(success=True)
        >>> tracker.api_call_count
        1
    """

    def __init__(self, run_name: str):
        self.run_name = run_name
        self.start_time: float | None = None
        self.execution_time_ms: float = 0
        self.success: bool = False
        self.workspace_count: int = 0
        self.collection_count: int = 0
        self.api_call_count: int = 0
        self.rate_limit_hits: int = 0
        self.retry_count: int = 0
        self.error_message: str | None = None
        self.error_type: str | None = None

    def start(self) -> None:
        """Start tracking execution time."""
        self.start_time = time.time()

    def end(self, success: bool, error: BaseException | None = None) -> None:
        """
        End tracking and calculate execution time.

        Args:
            success: Whether the run completed successfully
            error: Exception if failed (None if successful)
        """
        if self.start_time is not None:
            self.execution_time_ms = (time.time() - self.start_time) * 1000

        self.success = success

        if error:
            self.error_message = str(error)
            self.error_type = type(error).__name__

    def record_api_call(self) -> None:
        self.api_call_count += 1

    def record_rate_limit_hit(self) -> None:
        self.rate_limit_hits += 1

    def record_retry(self) -> None:
        self.retry_count += 1

    def to_dict(self) -> dict[str, Any]:
        """
        Convert metrics to dictionary for JSON serialization.

        Returns:
            Dictionary with all metric fields
        """
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "run_name": self.run_name,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "success": self.success,
            "workspace_count": self.workspace_count,
            "collection_count": self.collection_count,
            "api_call_count": self.api_call_count,
            "rate_limit_hits": self.rate_limit_hits,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "error_type": self.error_type,
        }


def get_current_tracker() -> "CollectionRunTracker | None":
    """
    Get the currently active tracker (for API client use).

    Returns:
        Active tracker or None if no run is being tracked
    """
    return _current_tracker


@contextmanager
def track_collection_run(run_name: str, logger: Any = None) -> Generator[CollectionRunTracker, None, None]:
    """
    Context manager for automatic collection run tracking.

    Args:
        run_name: Name of the run
        logger: Optional GovernanceLogger for the completion/failure entry

    Yields:
        CollectionRunTracker instance for manual updates (e.g., workspace_count)

    Example:
        >>> with track_collection_run("governance", logger) as tracker:
        ...     snapshot = await client.collect_all_data()
        ...     tracker.workspace_count = len(snapshot.workspaces)
    """
    global _current_tracker

    tracker = CollectionRunTracker(run_name)
    _current_tracker = tracker
    tracker.start()

    try:
        yield tracker
        tracker.end(success=True)

        if logger is not None:
            logger.info(
                "Collection run completed",
                {
                    "run": run_name,
                    "execution_time_ms": round(tracker.execution_time_ms, 2),
                    "api_calls": tracker.api_call_count,
                    "rate_limit_hits": tracker.rate_limit_hits,
                    "retry_count": tracker.retry_count,
                },
            )
    except Exception as e:
        tracker.end(success=False, error=e)

        if logger is not None:
            logger.error(
                "Collection run failed",
                {
                    "run": run_name,
                    "execution_time_ms": round(tracker.execution_time_ms, 2),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
        raise
    finally:
        _current_tracker = None
