"""Per-connection loop: read a line, enrich it, write it, repeat."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from geoip_pipeline.errors import DecodeError, EncodingError, ResolutionError, StorageError
from geoip_pipeline.models import EnrichedRecord, InboundEvent, decode_event
from geoip_pipeline.observability.metrics import record_duration
from geoip_pipeline.observability.tracing import log_connection_closed, log_line_dropped, span
from geoip_pipeline.server.context import PipelineContext

LOGGER = structlog.get_logger(__name__)


@dataclass
class ConnectionStats:
    """Outcome counters for a single connection."""

    lines: int = 0
    written: int = 0
    skipped: int = 0
    closed_reason: str = ""


class ConnectionHandler:
    """Processes the newline-delimited JSON stream of one accepted connection.

    Lines are handled strictly one after another. Resolution and encoding
    failures drop the line and keep the connection open; a malformed line is
    dropped or closes the connection depending on ``decode_policy``; a
    ``StorageError`` propagates and ends the connection.
    """

    def __init__(self, context: PipelineContext, reader: asyncio.StreamReader) -> None:
        self._context = context
        self._reader = reader
        self.stats = ConnectionStats()

    async def run(self) -> ConnectionStats:
        try:
            while True:
                line = await self._read_line()
                if line is None:
                    break
                if not line.strip():
                    continue
                if not await self.process_line(line):
                    break
        except StorageError:
            self.stats.closed_reason = "write_error"
            raise
        except Exception:
            self.stats.closed_reason = "error"
            raise
        finally:
            log_connection_closed(
                reason=self.stats.closed_reason,
                lines=self.stats.lines,
                written=self.stats.written,
            )
        return self.stats

    async def _read_line(self) -> Optional[bytes]:
        try:
            data = await self._reader.readline()
        except (ConnectionError, asyncio.IncompleteReadError) as exc:
            self.stats.closed_reason = "read_error"
            LOGGER.info("connection_read_failed", error=str(exc))
            return None
        except ValueError as exc:
            # readline() reports a line longer than the stream limit as ValueError
            self.stats.closed_reason = "line_too_long"
            LOGGER.warning("connection_read_failed", error=str(exc))
            return None
        if not data:
            self.stats.closed_reason = "eof"
            return None
        if not data.endswith(b"\n"):
            self.stats.closed_reason = "eof"
            LOGGER.info("partial_line_discarded", size=len(data))
            return None
        return data

    async def process_line(self, line: bytes) -> bool:
        """Enrich and persist one line.

        Returns False when the connection must be closed.
        """
        context = self._context
        metrics = context.metrics
        self.stats.lines += 1
        metrics.incr("lines_received")

        try:
            event = decode_event(line)
        except DecodeError as exc:
            metrics.incr("decode_failures")
            if context.decode_policy == "close":
                self.stats.closed_reason = "decode_error"
                LOGGER.warning("connection_decode_failed", error=str(exc))
                return False
            self._drop(stage="decode", reason=str(exc))
            return True

        if not event.has_ip:
            metrics.incr("sentinel_skips")
            self.stats.skipped += 1
            return True

        token = await self._enrich(event)
        if token is None:
            return True

        record = EnrichedRecord.from_event(event, token)
        try:
            with span(name="write", ip=event.ip), record_duration(metrics, "write_duration_ms"):
                await context.writer.write(record, context.retention_policy)
        except StorageError:
            metrics.incr("write_failures")
            raise
        metrics.incr("records_written")
        self.stats.written += 1
        return True

    async def _enrich(self, event: InboundEvent) -> Optional[str]:
        context = self._context
        try:
            with span(name="resolve", ip=event.ip), record_duration(context.metrics, "resolve_duration_ms"):
                coordinates = await context.resolver.resolve(event.ip)
        except ResolutionError as exc:
            context.metrics.incr("resolution_failures")
            self._drop(stage="resolve", reason=str(exc), ip=event.ip)
            return None
        try:
            return context.encoder.encode(coordinates)
        except EncodingError as exc:
            context.metrics.incr("encoding_failures")
            self._drop(stage="encode", reason=str(exc), ip=event.ip)
            return None

    def _drop(self, *, stage: str, reason: str, ip: Optional[str] = None) -> None:
        self.stats.skipped += 1
        log_line_dropped(stage=stage, reason=reason, ip=ip)
