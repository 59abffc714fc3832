import json

from geoip_pipeline.observability.metrics import MetricsRegistry, record_duration


def test_pipeline_counters_start_at_zero():
    metrics = MetricsRegistry()
    snapshot = metrics.snapshot()
    for name in ("connections_accepted", "lines_received", "records_written", "write_failures"):
        assert snapshot[name] == 0
    assert metrics.get("not_a_counter") == 0


def test_export_writes_snapshot(tmp_path):
    metrics = MetricsRegistry()
    metrics.incr("records_written", 3)
    with record_duration(metrics, "write_duration_ms"):
        pass
    path = metrics.export(path=tmp_path / "metrics" / "counters.json")
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["counters"]["records_written"] == 3
    assert "generated_at" in payload
