"""Performance monitoring utilities for the duplicate scanner and its resolution actions."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("solarops-api.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    Usage::

        @timed
        def my_function():
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "function timed",
                extra={
                    "function_name": func.__qualname__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


def timed_async(func: Callable) -> Callable:
    """Async counterpart of :func:`timed`."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "async function timed",
                extra={
                    "function_name": func.__qualname__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class ScanTracker:
    """
    Thread-safe in-memory tracker for duplicate-scanner metrics.

    Tracks:
    - Scans run, cumulative and average scan duration, slowest scan
    - Pairs compared and groups produced per confidence level
    - Resolution actions (dismiss / confirm / merge) and their failures
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._scans_run: int = 0
        self._total_scan_duration_ms: float = 0.0
        self._slowest_scan_ms: float = 0.0
        self._pairs_compared: int = 0
        self._groups_by_level: Dict[str, int] = {"high": 0, "medium": 0, "low": 0}
        self._resolutions: Dict[str, int] = {}
        self._error_counts: Dict[str, int] = {}
        self._last_scan_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_scan(self, duration_ms: float, pairs_compared: int, groups_by_level: Dict[str, int]) -> None:
        """Call once per completed scan."""
        with self._lock:
            self._scans_run += 1
            self._total_scan_duration_ms += duration_ms
            self._slowest_scan_ms = max(self._slowest_scan_ms, duration_ms)
            self._pairs_compared += pairs_compared
            for level, count in groups_by_level.items():
                self._groups_by_level[level] = self._groups_by_level.get(level, 0) + count
            self._last_scan_at = time.time()

    def record_resolution(self, action: str) -> None:
        with self._lock:
            self._resolutions[action] = self._resolutions.get(action, 0) + 1

    def record_error(self, action: str) -> None:
        """Increment the error counter for a scan or resolution action."""
        with self._lock:
            self._error_counts[action] = self._error_counts.get(action, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Return a snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            scans_run              : int
            avg_scan_duration_ms   : float  (0 if no scans)
            slowest_scan_ms        : float
            pairs_compared         : int
            groups_by_level        : dict  {level: count}
            resolutions            : dict  {action: count}
            error_count            : int   (total across all actions)
            error_count_by_action  : dict  {action: count}
            last_scan_at           : float | None  (unix time)
        """
        with self._lock:
            avg = (
                round(self._total_scan_duration_ms / self._scans_run, 2)
                if self._scans_run > 0
                else 0.0
            )
            return {
                "scans_run": self._scans_run,
                "avg_scan_duration_ms": avg,
                "slowest_scan_ms": round(self._slowest_scan_ms, 2),
                "pairs_compared": self._pairs_compared,
                "groups_by_level": dict(self._groups_by_level),
                "resolutions": dict(self._resolutions),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_action": dict(self._error_counts),
                "last_scan_at": self._last_scan_at,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._scans_run = 0
            self._total_scan_duration_ms = 0.0
            self._slowest_scan_ms = 0.0
            self._pairs_compared = 0
            self._groups_by_level = {"high": 0, "medium": 0, "low": 0}
            self._resolutions.clear()
            self._error_counts.clear()
            self._last_scan_at = None


# Module-level singleton; import this instance everywhere else.
tracker = ScanTracker()
