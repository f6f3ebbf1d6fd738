"""Operator library over sample families.

Every operator is a pure function: it never mutates its input family and
always returns a new family (or ``EMPTY``).
"""
import numbers
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from meteranalyzer.errors import ParseError, ValidationError
from meteranalyzer.family import EMPTY, Context, EmptyFamily, Family, SampleFamily, family_of
from meteranalyzer.rewrite import apply_rewrite
from meteranalyzer.series import LabelSet, Sample

LabelPredicate = Callable[[str, str], bool]


# Label filters

def _pairs(labels: Sequence[str]) -> List[Tuple[str, str]]:
    """Split flat key/value arguments into pairs."""
    if len(labels) % 2 != 0:
        raise ValidationError(
            f"Label filters take key/value pairs, got {len(labels)} arguments"
        )
    return [(labels[i], labels[i + 1]) for i in range(0, len(labels), 2)]


def _compile(pattern: str) -> "re.Pattern":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ParseError(f"Invalid regular expression {pattern!r}: {e}") from e


def match(family: Family, labels: Sequence[str], predicate: LabelPredicate) -> Family:
    """Keep samples where every given (key, value) pair satisfies the predicate.

    The predicate receives ``(sample_value, given_value)`` and is only asked
    when the sample carries the key.
    """
    pairs = _pairs(labels)
    if family.is_empty:
        return EMPTY

    selected = [
        sample for sample in family.samples
        if all(key in sample.labels and predicate(sample.labels[key], value) for key, value in pairs)
    ]
    return family_of(selected, family.context)


def tag_equal(family: Family, *labels: str) -> Family:
    return match(family, labels, lambda sample_value, given: sample_value == given)


def tag_not_equal(family: Family, *labels: str) -> Family:
    return match(family, labels, lambda sample_value, given: sample_value != given)


def _regex_predicate(labels: Sequence[str], negate: bool) -> LabelPredicate:
    patterns = {given: _compile(given) for _, given in _pairs(labels)}

    def predicate(sample_value: str, given: str) -> bool:
        return (patterns[given].fullmatch(sample_value) is not None) != negate

    return predicate


def tag_match(family: Family, *labels: str) -> Family:
    return match(family, labels, _regex_predicate(labels, negate=False))


def tag_not_match(family: Family, *labels: str) -> Family:
    return match(family, labels, _regex_predicate(labels, negate=True))


# Arithmetic

def _scalar(value) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValidationError(f"Expected a number, got {value!r}")
    return float(value)


def _apply(values: np.ndarray, other, op: Callable) -> np.ndarray:
    """Evaluate ``op`` with IEEE-754 semantics (x/0 is inf, 0/0 is nan)."""
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        return op(values, other)


def _with_values(family: SampleFamily, values: np.ndarray, context: Optional[Context] = None) -> SampleFamily:
    samples = [sample.with_value(float(v)) for sample, v in zip(family.samples, values)]
    return SampleFamily.build(samples, context or family.context)


def _values(family: SampleFamily) -> np.ndarray:
    return np.fromiter((s.value for s in family.samples), dtype=np.float64, count=len(family.samples))


def _scalar_op(family: Family, number, op: Callable) -> Family:
    constant = _scalar(number)
    if family.is_empty:
        return EMPTY
    return _with_values(family, _apply(_values(family), np.float64(constant), op))


def _join(left: SampleFamily, right: SampleFamily, op: Callable) -> Family:
    """Combine samples whose label sets are exactly equal; unmatched samples are dropped."""
    right_by_labels: Dict[LabelSet, Sample] = {}
    for sample in right.samples:
        right_by_labels.setdefault(sample.labels, sample)

    matched: List[Sample] = []
    right_values: List[float] = []
    for sample in left.samples:
        other = right_by_labels.get(sample.labels)
        if other is not None:
            matched.append(sample)
            right_values.append(other.value)

    if not matched:
        return EMPTY

    lhs = np.fromiter((s.value for s in matched), dtype=np.float64, count=len(matched))
    rhs = np.asarray(right_values, dtype=np.float64)
    result = _apply(lhs, rhs, op)
    return SampleFamily.build(
        [sample.with_value(float(v)) for sample, v in zip(matched, result)],
        left.context,
    )


def _is_family(value) -> bool:
    return isinstance(value, (SampleFamily, EmptyFamily))


def negative(family: Family) -> Family:
    if family.is_empty:
        return EMPTY
    return _with_values(family, -_values(family))


def plus(family: Family, other) -> Family:
    if not _is_family(other):
        return _scalar_op(family, other, np.add)
    if family.is_empty:
        return other
    if other.is_empty:
        return family
    return _join(family, other, np.add)


def minus(family: Family, other) -> Family:
    if not _is_family(other):
        return _scalar_op(family, other, np.subtract)
    if family.is_empty and other.is_empty:
        return EMPTY
    if family.is_empty:
        return negative(other)
    if other.is_empty:
        return family
    return _join(family, other, np.subtract)


def multiply(family: Family, other) -> Family:
    if not _is_family(other):
        return _scalar_op(family, other, np.multiply)
    if family.is_empty or other.is_empty:
        return EMPTY
    return _join(family, other, np.multiply)


def div(family: Family, other) -> Family:
    if not _is_family(other):
        return _scalar_op(family, other, np.divide)
    if family.is_empty and other.is_empty:
        return EMPTY
    if family.is_empty:
        # 0.0 divided by each value of the right family
        return _with_values(other, _apply(np.float64(0.0), _values(other), np.divide))
    if other.is_empty:
        return _scalar_op(family, 0.0, np.divide)
    return _join(family, other, np.divide)


# Aggregation

def sum_by(family: Family, by: Optional[Sequence[str]] = None) -> Family:
    """Sum values, optionally grouped by the projection of labels onto ``by``.

    Groups come out in order of first appearance and each takes the timestamp
    of its first member.
    """
    if by is not None and isinstance(by, str):
        raise ValidationError("'by' must be a list of label names, not a string")
    if family.is_empty:
        return EMPTY

    if by is None:
        total = sum(s.value for s in family.samples)
        return SampleFamily.build(
            [Sample(family.samples[0].timestamp, total, LabelSet())],
            family.context,
        )

    groups: Dict[LabelSet, List[Sample]] = {}
    for sample in family.samples:
        key = LabelSet({name: sample.labels.get(name, "") for name in by})
        groups.setdefault(key, []).append(sample)

    return SampleFamily.build(
        [
            Sample(members[0].timestamp, sum(s.value for s in members), labels)
            for labels, members in groups.items()
        ],
        family.context,
    )


# Label rewrite

def tag(family: Family, rewrite) -> Family:
    """Rewrite every sample's labels through a caller-supplied rewrite.

    The rewrite gets a mutable copy of the labels; the original label set
    is never touched.
    """
    if not callable(rewrite):
        raise ValidationError(f"Label rewrite must be callable, got {rewrite!r}")
    if family.is_empty:
        return EMPTY
    return SampleFamily.build(
        [sample.with_labels(apply_rewrite(rewrite, sample.labels)) for sample in family.samples],
        family.context,
    )
