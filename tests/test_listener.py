import asyncio
import json

from geoip_pipeline.errors import ResolutionError, StorageError
from geoip_pipeline.geo.resolver import GeoResolver
from geoip_pipeline.models import Coordinates
from geoip_pipeline.observability.metrics import MetricsRegistry
from geoip_pipeline.server.context import PipelineContext
from geoip_pipeline.server.listener import Listener
from geoip_pipeline.spatial.encoder import SpatialEncoder
from geoip_pipeline.storage.writers import RecordWriter

LOCATIONS = {
    "203.0.113.1": Coordinates(37.7749, -122.4194),
    "203.0.113.2": Coordinates(48.8566, 2.3522),
}


class TableResolver(GeoResolver):
    async def resolve(self, ip):
        await asyncio.sleep(0)
        try:
            return LOCATIONS[ip]
        except KeyError:
            raise ResolutionError(f"No location for {ip}") from None


class MemoryWriter(RecordWriter):
    def __init__(self, failing_users=()):
        super().__init__(client=None)
        self.records = []
        self.failing_users = set(failing_users)

    async def write(self, record, retention_policy=None):
        await asyncio.sleep(0)
        if record.username in self.failing_users:
            raise StorageError("write refused")
        self.records.append(record)


def _context(writer, **kwargs):
    return PipelineContext(
        resolver=TableResolver(),
        encoder=SpatialEncoder.create("geohash", 5),
        writer=writer,
        metrics=MetricsRegistry(),
        **kwargs,
    )


def _line(username, ip):
    return (json.dumps({"username": username, "ip": ip, "port": "22"}) + "\n").encode()


async def _wait_for(predicate, timeout=5.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


def test_concurrent_connections_are_independent():
    writer = MemoryWriter()
    context = _context(writer)

    async def _client(port, username, ip, count):
        reader, stream = await asyncio.open_connection("127.0.0.1", port)
        for _ in range(count):
            stream.write(_line(username, ip))
            await stream.drain()
        stream.write_eof()
        await reader.read()
        stream.close()
        await stream.wait_closed()

    async def _run():
        async with Listener(context, host="127.0.0.1", port=0, max_connections=0) as listener:
            await asyncio.gather(
                _client(listener.port, "alice", "203.0.113.1", 20),
                _client(listener.port, "bob", "203.0.113.2", 20),
            )
            await _wait_for(lambda: listener.active_connections == 0)

    asyncio.run(_run())
    assert len(writer.records) == 40
    alice = [record for record in writer.records if record.username == "alice"]
    bob = [record for record in writer.records if record.username == "bob"]
    assert len(alice) == len(bob) == 20
    assert {(record.ip, record.spatial_token) for record in alice} == {("203.0.113.1", "9q8yy")}
    assert {(record.ip, record.spatial_token) for record in bob} == {("203.0.113.2", "u09tv")}
    assert context.metrics.get("connections_accepted") == 2


def test_write_failure_closes_only_that_connection():
    writer = MemoryWriter(failing_users={"mallory"})
    context = _context(writer)

    async def _run():
        async with Listener(context, host="127.0.0.1", port=0) as listener:
            failing_reader, failing = await asyncio.open_connection("127.0.0.1", listener.port)
            healthy_reader, healthy = await asyncio.open_connection("127.0.0.1", listener.port)

            failing.write(_line("mallory", "203.0.113.1") + _line("after", "203.0.113.1"))
            await failing.drain()
            assert await asyncio.wait_for(failing_reader.read(), 5.0) == b""

            healthy.write(_line("carol", "203.0.113.2") + _line("dave", "203.0.113.9") + _line("erin", "203.0.113.1"))
            await healthy.drain()
            await _wait_for(lambda: len(writer.records) == 2)

            for stream in (failing, healthy):
                stream.close()
            await _wait_for(lambda: listener.active_connections == 0)

    asyncio.run(_run())
    assert [record.username for record in writer.records] == ["carol", "erin"]
    assert context.metrics.get("write_failures") == 1
    assert context.metrics.get("resolution_failures") == 1


def test_connections_over_limit_are_rejected():
    writer = MemoryWriter()
    context = _context(writer)

    async def _run():
        async with Listener(context, host="127.0.0.1", port=0, max_connections=1) as listener:
            _, first = await asyncio.open_connection("127.0.0.1", listener.port)
            first.write(_line("alice", "203.0.113.1"))
            await first.drain()
            await _wait_for(lambda: len(writer.records) == 1)

            second_reader, second = await asyncio.open_connection("127.0.0.1", listener.port)
            assert await asyncio.wait_for(second_reader.read(), 5.0) == b""
            second.close()

            first.close()
            await _wait_for(lambda: listener.active_connections == 0)

    asyncio.run(_run())
    assert context.metrics.get("connections_rejected") == 1
    assert context.metrics.get("connections_accepted") == 1
