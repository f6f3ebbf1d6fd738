#!/usr/bin/env python3
"""Tests for the analyzer engine."""
import pytest

from meteranalyzer.config import Config
from meteranalyzer.engine import AnalyzerEngine
from meteranalyzer.errors import ValidationError
from meteranalyzer.family import EMPTY, Context, DownsamplingType
from meteranalyzer.series import Sample

T = 1_700_000_000_000


def _engine(rules, **overrides):
    config = Config(**{
        "exporters": {"prometheus": {"enabled": True}, "otel": {"enabled": False}},
        "rules": rules,
        **overrides,
    })
    return AnalyzerEngine(config, start_exporters=False)


def _counter(ts, **values):
    return [Sample(ts, value, {"service": name}) for name, value in values.items()]


def test_rate_rule_uses_recorded_history():
    engine = _engine([{
        "name": "requests_per_second",
        "source": "requests_total",
        "pipeline": [{"op": "rate", "args": ["PT1M"]}],
    }])

    engine.ingest("requests_total", _counter(T - 60_000, api=10.0, web=0.0))
    assert [s.value for s in engine.evaluate()["requests_per_second"].samples] == [0.0, 0.0]

    engine.ingest("requests_total", _counter(T, api=70.0, web=120.0))
    results = engine.evaluate()
    assert [s.value for s in results["requests_per_second"].samples] == [1.0, 2.0]
    assert engine.family("requests_per_second") is results["requests_per_second"]


def test_first_evaluation_uses_miss_policy():
    engine = _engine(
        [{"name": "r", "source": "m", "pipeline": [{"op": "increase", "args": ["PT1M"]}]}],
        lookback={"miss_policy": "zero"},
    )
    engine.ingest("m", _counter(T, api=42.0))
    assert engine.evaluate()["r"].samples[0].value == 42.0


def test_rules_can_reference_earlier_results():
    engine = _engine([
        {"name": "total", "source": "m", "pipeline": [{"op": "sum"}]},
        {"name": "share", "source": "m", "pipeline": [
            {"op": "sum", "kwargs": {"by": []}},
            {"op": "div", "args": [{"metric": "total"}]},
        ]},
    ])
    engine.ingest("m", _counter(T, api=1.0, web=3.0))
    results = engine.evaluate()
    assert results["total"].samples[0].value == 4.0
    assert results["share"].samples[0].value == 1.0


def test_failing_rule_does_not_stop_others():
    engine = _engine([
        {"name": "bad", "source": "m", "pipeline": [{"op": "histogram_percentile", "args": [[50]]}]},
        {"name": "good", "source": "m", "pipeline": [{"op": "sum"}]},
    ])
    engine.ingest("m", _counter(T, api=1.0))
    results = engine.evaluate()
    assert "bad" not in results
    assert results["good"].samples[0].value == 1.0
    assert engine.family("bad") is EMPTY


def test_unknown_source_evaluates_to_empty():
    engine = _engine([{"name": "r", "source": "never_ingested", "pipeline": [{"op": "sum"}]}])
    assert engine.evaluate()["r"] is EMPTY


def test_rule_downsampling_applied_to_source():
    engine = _engine([{"name": "r", "source": "m", "downsampling": "LATEST"}])
    engine.ingest("m", _counter(T, api=1.0), Context(downsampling=DownsamplingType.SUM))
    assert engine.evaluate()["r"].context.downsampling is DownsamplingType.LATEST


def test_ingest_rejects_empty_sample_set():
    engine = _engine([])
    with pytest.raises(ValidationError):
        engine.ingest("m", [])


def test_self_metrics_recorded():
    from prometheus_client import generate_latest

    engine = _engine([{"name": "r", "source": "m"}])
    engine.ingest("m", _counter(T, api=1.0, web=2.0))
    engine.evaluate()

    output = generate_latest(engine.prom_exporter.registry).decode("utf-8")
    assert 'meter_analyzer_samples_ingested_total{metric_name="m"} 2.0' in output
    assert 'meter_analyzer_evaluations_total{rule="r"} 1.0' in output
    assert 'meter_analyzer_output_series{rule="r"} 2.0' in output


def test_rate_after_multiply_compares_scaled_values():
    """Each rate step keeps its own history of the values it was given."""
    engine = _engine([
        {"name": "raw", "source": "m", "pipeline": [{"op": "rate", "args": ["PT60S"]}]},
        {"name": "doubled", "source": "m", "pipeline": [
            {"op": "multiply", "args": [2]},
            {"op": "rate", "args": ["PT60S"]},
        ]},
    ])
    engine.ingest("m", [Sample(T - 60_000, 10.0, {"svc": "a"})])
    engine.evaluate()
    engine.ingest("m", [Sample(T, 70.0, {"svc": "a"})])
    results = engine.evaluate()

    assert results["raw"].samples[0].value == pytest.approx(1.0)
    assert results["doubled"].samples[0].value == pytest.approx(2.0)
    assert set(engine.histories) == {("raw", 0), ("doubled", 1)}


def test_rate_after_sum_looks_up_aggregated_series():
    engine = _engine([{"name": "r", "source": "m", "pipeline": [
        {"op": "sum", "kwargs": {"by": ["svc"]}},
        {"op": "rate", "args": ["PT60S"]},
    ]}])
    engine.ingest("m", [Sample(T - 60_000, 10.0, {"svc": "a", "inst": "1"})])
    engine.evaluate()
    engine.ingest("m", [Sample(T, 70.0, {"svc": "a", "inst": "1"})])

    result = engine.evaluate()["r"]
    assert result.samples[0].labels == {"svc": "a"}
    assert result.samples[0].value == pytest.approx(1.0)


def test_ingest_alone_records_no_history():
    engine = _engine(
        [{"name": "r", "source": "m", "pipeline": [{"op": "increase", "args": ["PT1M"]}]}],
        lookback={"miss_policy": "drop"},
    )
    engine.ingest("m", _counter(T - 60_000, api=10.0))
    engine.ingest("m", _counter(T, api=70.0))
    assert engine.evaluate()["r"] is EMPTY
