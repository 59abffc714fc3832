import json

import pytest

from geoip_pipeline import main as app_main
from geoip_pipeline.geo.resolver import GeoResolver
from geoip_pipeline.models import Coordinates


class StaticResolver(GeoResolver):
    name = "static"

    def __init__(self):
        self.closed = False

    async def resolve(self, ip):
        return Coordinates(37.7749, -122.4194)

    async def close(self):
        self.closed = True


@pytest.fixture()
def settings_path(tmp_path, monkeypatch):
    for name in ("INFLUX_URL", "INFLUX_DATABASE", "INFLUX_USERNAME", "INFLUX_PASSWORD", "IPSTACK_ACCESS_KEY", "MAXMIND_DB_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "settings.toml"
    path.write_text(
        "[geoip]\n"
        'backend = "ipstack"\n'
        'access_key = "secret-key"\n'
        "[influx]\n"
        'url = "http://localhost:8086"\n'
        'database = "ssh"\n',
        encoding="utf-8",
    )
    return path


def _run(argv, settings_path):
    app_main.main(["--config", str(settings_path), "--logging-config", "missing.yaml", *argv])


def test_check_config_masks_secrets(settings_path, capsys):
    _run(["check-config", "--influx-password", "hunter2"], settings_path)
    output = json.loads(capsys.readouterr().out)
    assert output["geoip_backend"] == "ipstack"
    assert output["ipstack_access_key"] == "***"
    assert output["influx_password"] == "***"
    assert output["listen_port"] == 7070


def test_check_config_rejects_invalid_level(settings_path):
    with pytest.raises(SystemExit):
        _run(["check-config", "--algorithm", "s2", "--precision", "31"], settings_path)


def test_resolve_prints_token(settings_path, capsys, monkeypatch):
    resolver = StaticResolver()
    monkeypatch.setattr(app_main, "create_resolver", lambda config: resolver)
    _run(["resolve", "--ip", "203.0.113.7", "--precision", "5"], settings_path)
    output = json.loads(capsys.readouterr().out)
    assert output["geohash"] == "9q8yy"
    assert output["cell_center"]["latitude"] == pytest.approx(37.77, abs=0.05)
    assert resolver.closed


def test_build_context_shares_token_tag(settings_path, monkeypatch):
    monkeypatch.setattr(app_main, "create_resolver", lambda config: StaticResolver())
    args = app_main.build_arg_parser().parse_args(["serve", "--algorithm", "s2", "--precision", "10", "--retention-policy", "rp"])
    config = app_main.build_config(args, app_main.load_settings(settings_path), {})
    context = app_main.build_context(config)
    assert context.encoder.tag_key == "s2_cell"
    assert context.retention_policy == "rp"
    assert context.writer.retention_policy == "rp"
