#!/usr/bin/env python3
"""Tests for increase, rate and irate."""
from datetime import timedelta

import pytest

from meteranalyzer import rate
from meteranalyzer.errors import ParseError, ValidationError
from meteranalyzer.family import EMPTY, SampleFamily
from meteranalyzer.lookback import InMemoryLookbackResolver, LookbackMissPolicy, LookbackResolver
from meteranalyzer.series import Sample

T = 1_700_000_000_000


class RecordingResolver(LookbackResolver):
    """Wraps an in-memory resolver and remembers every batch it was asked."""

    def __init__(self, inner):
        self.inner = inner
        self.batches = []

    def lookup_many(self, requests):
        self.batches.append(list(requests))
        return self.inner.lookup_many(requests)


class FailingResolver(LookbackResolver):
    def lookup_many(self, requests):
        raise ConnectionError("history backend unavailable")


def _history(*points):
    resolver = InMemoryLookbackResolver()
    resolver.record_all(Sample(ts, value, labels) for ts, value, labels in points)
    return resolver


def test_rate_per_second():
    resolver = _history((T - 60_000, 10.0, {"svc": "a"}))
    family = SampleFamily.build([Sample(T, 70.0, {"svc": "a"})])
    result = family.rate("PT60S", resolver)
    assert result.samples[0].value == 1.0
    assert result.samples[0].timestamp == T
    assert result.samples[0].labels == {"svc": "a"}


def test_increase_is_raw_delta():
    resolver = _history((T - 300_000, 40.0, {"svc": "a"}))
    family = SampleFamily.build([Sample(T, 100.0, {"svc": "a"})])
    assert family.increase("PT5M", resolver).samples[0].value == 60.0


def test_increase_of_decreasing_counter_is_negative():
    """No counter-reset correction is applied."""
    resolver = _history((T - 60_000, 500.0, {"svc": "a"}))
    family = SampleFamily.build([Sample(T, 20.0, {"svc": "a"})])
    assert family.increase("PT1M", resolver).samples[0].value == -480.0


def test_rate_uses_most_recent_point_at_or_before_instant():
    resolver = _history(
        (T - 90_000, 0.0, {"svc": "a"}),
        (T - 70_000, 10.0, {"svc": "a"}),
        (T - 30_000, 50.0, {"svc": "a"}),
    )
    family = SampleFamily.build([Sample(T, 80.0, {"svc": "a"})])
    # Baseline is the point at T-70s: (80 - 10) / 70
    assert family.rate("PT60S", resolver).samples[0].value == pytest.approx(1.0)


def test_rate_under_one_second_is_zero():
    resolver = _history((T - 500, 10.0, {"svc": "a"}))
    family = SampleFamily.build([Sample(T, 70.0, {"svc": "a"})])
    assert family.rate(timedelta(milliseconds=400), resolver).samples[0].value == 0.0


def test_rate_counts_whole_seconds():
    resolver = _history((T - 2_500, 0.0, {"svc": "a"}))
    family = SampleFamily.build([Sample(T, 10.0, {"svc": "a"})])
    assert family.rate("PT2S", resolver).samples[0].value == 5.0


def test_irate_uses_fixed_one_second_lookback():
    """irate asks for t - 1s whatever range other rules use."""
    resolver = RecordingResolver(_history(
        (T - 60_000, 0.0, {"svc": "a"}),
        (T - 1_000, 68.0, {"svc": "a"}),
    ))
    family = SampleFamily.build([Sample(T, 70.0, {"svc": "a"})])
    result = family.irate(resolver)
    assert result.samples[0].value == 2.0
    assert resolver.batches == [[(family.samples[0].labels, T - 1_000)]]


def test_lookups_are_batched_per_call():
    resolver = RecordingResolver(_history(
        (T - 60_000, 0.0, {"svc": "a"}),
        (T - 60_000, 0.0, {"svc": "b"}),
    ))
    family = SampleFamily.build([
        Sample(T, 60.0, {"svc": "a"}),
        Sample(T, 120.0, {"svc": "b"}),
    ])
    result = rate.rate(family, "PT1M", resolver)
    assert [s.value for s in result.samples] == [1.0, 2.0]
    assert len(resolver.batches) == 1
    assert [at for _, at in resolver.batches[0]] == [T - 60_000, T - 60_000]


def test_miss_policy_self_gives_zero():
    family = SampleFamily.build([Sample(T, 70.0, {"svc": "a"})])
    resolver = InMemoryLookbackResolver()
    assert family.increase("PT1M", resolver).samples[0].value == 0.0
    assert family.rate("PT1M", resolver, LookbackMissPolicy.SELF).samples[0].value == 0.0


def test_miss_policy_zero_baseline():
    family = SampleFamily.build([Sample(T, 120.0, {"svc": "a"})])
    resolver = InMemoryLookbackResolver()
    assert family.increase("PT1M", resolver, LookbackMissPolicy.ZERO).samples[0].value == 120.0
    assert family.rate("PT1M", resolver, "zero").samples[0].value == 2.0


def test_miss_policy_drop():
    resolver = _history((T - 60_000, 10.0, {"svc": "a"}))
    family = SampleFamily.build([
        Sample(T, 70.0, {"svc": "a"}),
        Sample(T, 70.0, {"svc": "b"}),
    ])
    result = family.increase("PT1M", resolver, LookbackMissPolicy.DROP)
    assert [dict(s.labels) for s in result.samples] == [{"svc": "a"}]

    only_missing = SampleFamily.build([Sample(T, 1.0, {"svc": "b"})])
    assert only_missing.rate("PT1M", resolver, LookbackMissPolicy.DROP) is EMPTY


def test_unknown_miss_policy_rejected():
    family = SampleFamily.build([Sample(T, 1.0)])
    with pytest.raises(ValidationError):
        family.rate("PT1M", InMemoryLookbackResolver(), "guess")


def test_bad_ranges_rejected():
    family = SampleFamily.build([Sample(T, 1.0)])
    resolver = InMemoryLookbackResolver()
    with pytest.raises(ParseError):
        family.rate("60s", resolver)
    with pytest.raises(ParseError):
        family.increase("", resolver)
    with pytest.raises(ValidationError):
        family.rate("PT0S", resolver)
    with pytest.raises(ValidationError):
        family.rate("-PT1M", resolver)
    with pytest.raises(ValidationError):
        EMPTY.rate("PT0S", resolver)


def test_rate_on_empty_is_empty():
    assert EMPTY.rate("PT1M", InMemoryLookbackResolver()) is EMPTY
    assert EMPTY.irate(InMemoryLookbackResolver()) is EMPTY


def test_resolver_errors_propagate():
    family = SampleFamily.build([Sample(T, 1.0)])
    with pytest.raises(ConnectionError):
        family.rate("PT1M", FailingResolver())
