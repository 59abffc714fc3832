"""TCP listener spawning one handler task per accepted connection."""
from __future__ import annotations

import asyncio
import contextlib
import itertools
from typing import Optional, Set

import structlog

from geoip_pipeline.errors import StorageError
from geoip_pipeline.observability.tracing import clear_context, set_context
from geoip_pipeline.server.context import PipelineContext
from geoip_pipeline.server.handler import ConnectionHandler

LOGGER = structlog.get_logger(__name__)


def _format_peer(peername: object) -> str:
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername)


class Listener:
    """Accepts log shipper connections and runs a ``ConnectionHandler`` for each.

    At most ``max_connections`` handlers run at once; further connections are
    closed as soon as they are accepted. ``0`` disables the limit.
    """

    def __init__(
        self,
        context: PipelineContext,
        *,
        host: str,
        port: int,
        max_connections: int = 0,
    ) -> None:
        self._context = context
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._server: Optional[asyncio.Server] = None
        self._streams: Set[asyncio.StreamWriter] = set()
        self._ids = itertools.count(1)

    @property
    def active_connections(self) -> int:
        return len(self._streams)

    @property
    def port(self) -> int:
        """Bound port, useful when listening on port 0."""
        if self._server is None or not self._server.sockets:
            return self._port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._on_connect, self._host, self._port)
        LOGGER.info(
            "listening",
            host=self._host,
            port=self.port,
            max_connections=self._max_connections or None,
        )

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for stream in list(self._streams):
            stream.close()
        await self._server.wait_closed()
        self._server = None
        LOGGER.info("listener_closed")

    async def __aenter__(self) -> "Listener":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        metrics = self._context.metrics
        peer = _format_peer(writer.get_extra_info("peername"))
        if self._max_connections and len(self._streams) >= self._max_connections:
            metrics.incr("connections_rejected")
            LOGGER.warning("connection_rejected", peer=peer, active=len(self._streams))
            await self._close_stream(writer)
            return

        self._streams.add(writer)
        metrics.incr("connections_accepted")
        set_context(connection_id=str(next(self._ids)), peer=peer)
        LOGGER.info("connection_opened")
        try:
            await ConnectionHandler(self._context, reader).run()
        except StorageError as exc:
            LOGGER.error("connection_failed", error=str(exc))
        except Exception:
            LOGGER.exception("connection_crashed")
        finally:
            self._streams.discard(writer)
            await self._close_stream(writer)
            clear_context()

    @staticmethod
    async def _close_stream(writer: asyncio.StreamWriter) -> None:
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
