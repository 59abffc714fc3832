"""Settings loading and validation for the pipeline process."""
from __future__ import annotations

import argparse
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from geoip_pipeline.errors import ConfigError
from geoip_pipeline.geo.ipstack import DEFAULT_BASE_URL as DEFAULT_IPSTACK_URL
from geoip_pipeline.geo.resolver import BACKENDS, IPSTACK, MAXMIND
from geoip_pipeline.spatial.encoder import GEOHASH, SpatialEncoder
from geoip_pipeline.storage.writers import DEFAULT_MEASUREMENT

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
DEFAULT_LISTEN = "127.0.0.1:7070"
DEFAULT_PRECISION = 5
DEFAULT_MAX_CONNECTIONS = 256
DECODE_POLICIES = ("skip", "close")

_SECRETS = ("influx_password", "ipstack_access_key")


@dataclass(frozen=True)
class PipelineConfig:
    """Effective configuration, fixed for the lifetime of the process."""

    listen_host: str
    listen_port: int
    algorithm: str
    precision: int
    geoip_backend: str
    influx_url: str
    influx_database: str
    maxmind_path: Optional[str] = None
    ipstack_access_key: Optional[str] = None
    ipstack_url: str = DEFAULT_IPSTACK_URL
    influx_username: Optional[str] = None
    influx_password: Optional[str] = None
    retention_policy: Optional[str] = None
    measurement: str = DEFAULT_MEASUREMENT
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    decode_policy: str = "skip"
    metrics_path: Optional[str] = None

    def masked(self) -> Dict[str, Any]:
        """Return the configuration as a dict with secrets hidden."""
        payload = asdict(self)
        for key in _SECRETS:
            if payload.get(key):
                payload[key] = "***"
        return payload


def load_settings(path: Path) -> Dict[str, Any]:
    """Read the TOML configuration file, returning an empty mapping when absent."""
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        try:
            return tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid settings file {path}: {exc}") from exc


def parse_listen_address(value: str) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ConfigError(f"Listen address must be host:port, got {value!r}")
    host = host.strip("[]")
    return host, _parse_port(port)


def _parse_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port {value!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range: {port}")
    return port


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, (bool, float)):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _pick(*candidates: Any, default: Any = None) -> Any:
    for candidate in candidates:
        if candidate is not None and candidate != "":
            return candidate
    return default


def _select_backend(args: argparse.Namespace, geoip: Mapping[str, Any], environ: Mapping[str, str]) -> str:
    cli_maxmind = getattr(args, "maxmind", None)
    cli_ipstack = getattr(args, "ipstack_key", None)
    if cli_maxmind and cli_ipstack:
        raise ConfigError("Use either --maxmind or --ipstack-key, not both")
    if cli_maxmind:
        return MAXMIND
    if cli_ipstack:
        return IPSTACK
    backend = geoip.get("backend")
    if backend is None:
        if _pick(environ.get("MAXMIND_DB_PATH"), geoip.get("database_path")):
            backend = MAXMIND
        elif _pick(environ.get("IPSTACK_ACCESS_KEY"), geoip.get("access_key")):
            backend = IPSTACK
        else:
            raise ConfigError("Missing geoip source: configure a MaxMind database or an ipstack access key")
    if backend not in BACKENDS:
        raise ConfigError(f"Unknown geoip backend {backend!r}, expected one of {', '.join(BACKENDS)}")
    return backend


def build_config(
    args: argparse.Namespace,
    settings: Mapping[str, Any],
    environ: Mapping[str, str],
) -> PipelineConfig:
    """Merge CLI flags, environment variables and settings into a validated config.

    Precedence is flag, then environment, then settings file, then default.
    """
    server = settings.get("server", {})
    spatial = settings.get("spatial", {})
    geoip = settings.get("geoip", {})
    influx = settings.get("influx", {})

    host, port = parse_listen_address(_pick(getattr(args, "listen", None), server.get("listen"), default=DEFAULT_LISTEN))
    port_override = _pick(getattr(args, "port", None), server.get("port"))
    if port_override is not None:
        port = _parse_port(port_override)

    algorithm = _pick(getattr(args, "algorithm", None), spatial.get("algorithm"), default=GEOHASH)
    precision = _parse_int(
        _pick(getattr(args, "precision", None), spatial.get("precision"), default=DEFAULT_PRECISION),
        "precision",
    )
    SpatialEncoder.create(algorithm, precision)

    backend = _select_backend(args, geoip, environ)
    maxmind_path = _pick(getattr(args, "maxmind", None), environ.get("MAXMIND_DB_PATH"), geoip.get("database_path"))
    ipstack_key = _pick(getattr(args, "ipstack_key", None), environ.get("IPSTACK_ACCESS_KEY"), geoip.get("access_key"))
    if backend == MAXMIND and not maxmind_path:
        raise ConfigError("The maxmind backend needs a database path")
    if backend == IPSTACK and not ipstack_key:
        raise ConfigError("The ipstack backend needs an access key")

    influx_url = _pick(getattr(args, "influx_url", None), environ.get("INFLUX_URL"), influx.get("url"))
    influx_database = _pick(
        getattr(args, "influx_database", None), environ.get("INFLUX_DATABASE"), influx.get("database")
    )
    if not influx_url:
        raise ConfigError("Missing InfluxDB URL (--influx-url or INFLUX_URL)")
    if not influx_database:
        raise ConfigError("Missing InfluxDB database (--influx-database or INFLUX_DATABASE)")

    max_connections = _parse_int(
        _pick(getattr(args, "max_connections", None), server.get("max_connections"), default=DEFAULT_MAX_CONNECTIONS),
        "max_connections",
    )
    if max_connections < 0:
        raise ConfigError(f"max_connections must be >= 0, got {max_connections}")

    decode_policy = _pick(getattr(args, "decode_policy", None), server.get("decode_policy"), default="skip")
    if decode_policy not in DECODE_POLICIES:
        raise ConfigError(f"decode_policy must be one of {', '.join(DECODE_POLICIES)}, got {decode_policy!r}")

    return PipelineConfig(
        listen_host=host,
        listen_port=port,
        algorithm=algorithm,
        precision=precision,
        geoip_backend=backend,
        maxmind_path=str(maxmind_path) if maxmind_path else None,
        ipstack_access_key=ipstack_key,
        ipstack_url=_pick(geoip.get("ipstack_url"), default=DEFAULT_IPSTACK_URL),
        influx_url=influx_url,
        influx_database=influx_database,
        influx_username=_pick(
            getattr(args, "influx_username", None), environ.get("INFLUX_USERNAME"), influx.get("username")
        ),
        influx_password=_pick(
            getattr(args, "influx_password", None), environ.get("INFLUX_PASSWORD"), influx.get("password")
        ),
        retention_policy=_pick(getattr(args, "retention_policy", None), influx.get("retention_policy")),
        measurement=_pick(influx.get("measurement"), default=DEFAULT_MEASUREMENT),
        max_connections=max_connections,
        decode_policy=decode_policy,
        metrics_path=_pick(getattr(args, "metrics_path", None), settings.get("metrics", {}).get("path")),
    )
