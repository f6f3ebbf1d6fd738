#!/usr/bin/env python3
"""Tests for label-grouped sum."""
import pytest

from meteranalyzer.errors import ValidationError
from meteranalyzer.family import EMPTY, Context, DownsamplingType, SampleFamily
from meteranalyzer.series import Sample


def test_sum_without_by_collapses_family():
    family = SampleFamily.build([
        Sample(1000, 5.0, {"a": "1"}),
        Sample(2000, 7.0, {"b": "2"}),
    ])
    result = family.sum()
    assert len(result) == 1
    assert result.samples[0].value == 12.0
    assert result.samples[0].labels == {}
    assert result.samples[0].timestamp == 1000


def test_sum_by_projects_labels():
    family = SampleFamily.build([
        Sample(1000, 3.0, {"service": "x", "inst": "1"}),
        Sample(1000, 4.0, {"service": "x", "inst": "2"}),
    ])
    result = family.sum(["service"])
    assert len(result) == 1
    assert result.samples[0].labels == {"service": "x"}
    assert result.samples[0].value == 7.0


def test_sum_by_missing_key_defaults_to_empty_string():
    family = SampleFamily.build([
        Sample(0, 1.0, {"service": "x"}),
        Sample(0, 2.0, {"other": "y"}),
        Sample(0, 3.0, {}),
    ])
    result = family.sum(["service"])
    assert [(dict(s.labels), s.value) for s in result.samples] == [
        ({"service": "x"}, 1.0),
        ({"service": ""}, 5.0),
    ]


def test_sum_by_uses_first_member_timestamp_and_order():
    """Groups appear in first-seen order and take the first member's timestamp."""
    family = SampleFamily.build([
        Sample(3000, 1.0, {"service": "b"}),
        Sample(1000, 1.0, {"service": "a"}),
        Sample(2000, 1.0, {"service": "b"}),
        Sample(500, 1.0, {"service": "a"}),
    ])
    result = family.sum(["service"])
    assert [(s.labels["service"], s.timestamp, s.value) for s in result.samples] == [
        ("b", 3000, 2.0),
        ("a", 1000, 2.0),
    ]


def test_sum_keeps_context():
    family = SampleFamily.build([Sample(0, 1.0)], Context(downsampling=DownsamplingType.LATEST))
    assert family.sum().context.downsampling is DownsamplingType.LATEST


def test_sum_on_empty():
    assert EMPTY.sum() is EMPTY
    assert EMPTY.sum(["service"]) is EMPTY


def test_sum_by_string_rejected():
    family = SampleFamily.build([Sample(0, 1.0, {"service": "x"})])
    with pytest.raises(ValidationError):
        family.sum("service")
