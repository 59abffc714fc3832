"""Per-connection log context and stage timing helpers."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

LOGGER = structlog.get_logger("geoip_pipeline.trace")


def set_context(*, connection_id: str, peer: str) -> None:
    """Bind connection identifiers to every log line emitted by the current task."""
    bind_contextvars(connection_id=connection_id, peer=peer)


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, ip: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        LOGGER.debug("trace_span", span=name, ip=ip, elapsed_ms=elapsed_ms)


def log_line_dropped(*, stage: str, reason: str, ip: Optional[str] = None) -> None:
    LOGGER.warning("line_dropped", stage=stage, reason=reason, ip=ip)


def log_connection_closed(*, reason: str, lines: int, written: int) -> None:
    LOGGER.info("connection_closed", reason=reason, lines=lines, written=written)
