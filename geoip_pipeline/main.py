"""Command-line entrypoints for the SSH auth-attempt GeoIP pipeline."""
from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import List, Optional

import structlog
from dotenv import load_dotenv

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop optional on some platforms
    uvloop = None

from geoip_pipeline.config import DEFAULT_SETTINGS_PATH, DECODE_POLICIES, PipelineConfig, build_config, load_settings
from geoip_pipeline.errors import ConfigError, EncodingError, ResolutionError
from geoip_pipeline.geo.resolver import create_resolver
from geoip_pipeline.observability.log import configure_logging
from geoip_pipeline.observability.metrics import MetricsRegistry
from geoip_pipeline.server.context import PipelineContext
from geoip_pipeline.server.listener import Listener
from geoip_pipeline.spatial import geohash
from geoip_pipeline.spatial.encoder import ALGORITHMS, GEOHASH, SpatialEncoder
from geoip_pipeline.storage.writers import RecordWriter

LOGGER = structlog.get_logger(__name__)

DEFAULT_LOGGING_CONFIG = Path("config/logging.yaml")


def _add_pipeline_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--listen", help="Listen address and port (host:port)")
    parser.add_argument("-p", "--port", type=int, help="Port to listen on, overrides the --listen port")
    parser.add_argument("--algorithm", choices=ALGORITHMS, help="Spatial encoding algorithm")
    parser.add_argument("--precision", type=int, help="Geohash length or S2 cell level")
    parser.add_argument("--maxmind", metavar="DATABASE_PATH", help="Path to the MaxMind city database")
    parser.add_argument("--ipstack-key", metavar="ACCESS_KEY", help="ipstack API access key")
    parser.add_argument("--retention-policy", help="InfluxDB retention policy for written points")
    parser.add_argument("--influx-url", help="InfluxDB URL")
    parser.add_argument("--influx-username", help="InfluxDB username")
    parser.add_argument("--influx-password", help="InfluxDB password")
    parser.add_argument("--influx-database", help="InfluxDB database")


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="geoip-pipeline", description="Geolocate SSH auth attempts into InfluxDB")
    parser.add_argument("--config", default=str(DEFAULT_SETTINGS_PATH), help="Path to settings.toml")
    parser.add_argument("--logging-config", default=str(DEFAULT_LOGGING_CONFIG), help="Path to logging.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Listen for log shipper connections")
    _add_pipeline_options(serve)
    serve.add_argument("--max-connections", type=int, help="Concurrent connection limit, 0 for unlimited")
    serve.add_argument("--decode-policy", choices=DECODE_POLICIES, help="What to do with a malformed line")
    serve.add_argument("--metrics-path", help="Write a JSON counter snapshot here on shutdown")

    resolve = sub.add_parser("resolve", help="Resolve and encode a single IP without writing it")
    _add_pipeline_options(resolve)
    resolve.add_argument("--ip", required=True, help="Address to look up")

    check = sub.add_parser("check-config", help="Print the effective configuration")
    _add_pipeline_options(check)

    return parser


def build_context(config: PipelineConfig, *, metrics: Optional[MetricsRegistry] = None) -> PipelineContext:
    """Construct the shared resolver, encoder and writer once for the process."""
    encoder = SpatialEncoder.create(config.algorithm, config.precision)
    writer = RecordWriter.from_config(config, token_tag=encoder.tag_key)
    resolver = create_resolver(config)
    return PipelineContext(
        resolver=resolver,
        encoder=encoder,
        writer=writer,
        retention_policy=config.retention_policy,
        decode_policy=config.decode_policy,
        metrics=metrics or MetricsRegistry(),
    )


async def run_server(config: PipelineConfig, context: PipelineContext) -> None:
    """Serve until cancelled, then release the shared collaborators."""
    listener = Listener(
        context,
        host=config.listen_host,
        port=config.listen_port,
        max_connections=config.max_connections,
    )
    try:
        await listener.start()
        await listener.serve_forever()
    finally:
        await listener.close()
        await context.close()
        LOGGER.info("metrics_snapshot", counters=context.metrics.snapshot())
        if config.metrics_path:
            context.metrics.export(path=Path(config.metrics_path))


async def resolve_once(config: PipelineConfig, ip: str) -> dict:
    """Resolve ``ip`` with the configured backend and return a printable summary."""
    encoder = SpatialEncoder.create(config.algorithm, config.precision)
    resolver = create_resolver(config)
    try:
        coordinates = await resolver.resolve(ip)
    finally:
        await resolver.close()
    token = encoder.encode(coordinates)
    summary = {
        "ip": ip,
        "backend": config.geoip_backend,
        "latitude": coordinates.latitude,
        "longitude": coordinates.longitude,
        "algorithm": encoder.algorithm,
        "precision": encoder.precision,
        encoder.tag_key: token,
    }
    if encoder.algorithm == GEOHASH:
        centre = geohash.decode(token)
        summary["cell_center"] = {"latitude": centre[0], "longitude": centre[1]}
    return summary


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(Path(args.logging_config))

    try:
        config = build_config(args, load_settings(Path(args.config)), os.environ)
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}")

    if args.command == "check-config":
        print(json.dumps(config.masked(), indent=2))
        return

    if args.command == "resolve":
        try:
            summary = asyncio.run(resolve_once(config, args.ip))
        except ConfigError as exc:
            raise SystemExit(f"Invalid configuration: {exc}")
        except (ResolutionError, EncodingError) as exc:
            raise SystemExit(f"Cannot locate {args.ip}: {exc}")
        print(json.dumps(summary, indent=2))
        return

    if args.command == "serve":
        try:
            context = build_context(config)
        except ConfigError as exc:
            raise SystemExit(f"Invalid configuration: {exc}")
        if uvloop is not None:
            uvloop.install()
        try:
            asyncio.run(run_server(config, context))
        except KeyboardInterrupt:
            LOGGER.info("shutdown_requested")


if __name__ == "__main__":
    main()
