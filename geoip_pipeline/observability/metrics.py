"""Connection and line outcome counters for the ingestion pipeline."""
from __future__ import annotations

import contextlib
import json
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict

import structlog

LOGGER = structlog.get_logger(__name__)


class MetricsRegistry:
    """Counts connections, line outcomes and stage durations across all connections.

    Shared by every connection task on the event loop, so plain increments are safe.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        self._register_defaults()

    def _register_defaults(self) -> None:
        defaults = [
            "connections_accepted",
            "connections_rejected",
            "lines_received",
            "sentinel_skips",
            "decode_failures",
            "resolution_failures",
            "encoding_failures",
            "records_written",
            "write_failures",
            "resolve_duration_ms",
            "write_duration_ms",
        ]
        for key in defaults:
            self._counters[key] = 0

    def incr(self, name: str, value: int = 1) -> None:
        """Add ``value`` to a counter, creating it on first use."""
        self._counters[name] += value

    def get(self, name: str) -> int:
        """Return a counter such as ``records_written``; unknown names read as zero."""
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        """Copy of every counter, logged as ``metrics_snapshot`` at shutdown."""
        return dict(self._counters)

    def export(self, *, path: Path) -> Path:
        """Dump the snapshot to ``path`` as JSON for the --metrics-path option."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "counters": self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str):
    """Accumulate the elapsed milliseconds of a block into a counter."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        registry.incr(metric_name, elapsed_ms)
        LOGGER.debug("timer_stop", metric=metric_name, duration_ms=elapsed_ms)
