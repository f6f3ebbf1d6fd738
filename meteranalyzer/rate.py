"""Rate-style functions: increase, rate and irate.

Each call asks the lookback resolver, in one batch, for every sample's value
at ``timestamp - range``. No counter-reset correction is applied: a counter
that went down produces a negative increase.
"""
from datetime import timedelta
from typing import Callable, List, Optional, Union

from meteranalyzer.duration import parse_range_ms
from meteranalyzer.errors import ValidationError
from meteranalyzer.family import EMPTY, Family, family_of
from meteranalyzer.lookback import LookbackMissPolicy, LookbackPoint, LookbackResolver
from meteranalyzer.series import Sample

IRATE_RANGE = "PT1S"

RangeArg = Union[str, timedelta]

# (current sample, baseline point) -> new value
Delta = Callable[[Sample, LookbackPoint], float]


def _increase(current: Sample, lower: LookbackPoint) -> float:
    return current.value - lower.value


def _per_second(current: Sample, lower: LookbackPoint) -> float:
    elapsed = current.timestamp - lower.timestamp
    if elapsed < 1000:
        return 0.0
    return (current.value - lower.value) / (elapsed // 1000)


def _policy(miss_policy) -> LookbackMissPolicy:
    if miss_policy is None:
        return LookbackMissPolicy.SELF
    try:
        return LookbackMissPolicy(miss_policy)
    except ValueError as e:
        raise ValidationError(f"Unknown lookback miss policy: {miss_policy!r}") from e


def _evaluate(
    family: Family,
    range_: RangeArg,
    resolver: LookbackResolver,
    miss_policy,
    delta: Delta,
) -> Family:
    range_ms = parse_range_ms(range_)
    policy = _policy(miss_policy)
    if family.is_empty:
        return EMPTY
    if resolver is None:
        raise ValidationError("A lookback resolver is required for rate-style functions")

    lowers = resolver.lookup_many(
        [(sample.labels, sample.timestamp - range_ms) for sample in family.samples]
    )
    if len(lowers) != len(family.samples):
        raise ValidationError(
            f"Lookback resolver answered {len(lowers)} of {len(family.samples)} requests"
        )

    samples: List[Sample] = []
    for sample, lower in zip(family.samples, lowers):
        if lower is None:
            if policy is LookbackMissPolicy.DROP:
                continue
            if policy is LookbackMissPolicy.ZERO:
                lower = LookbackPoint(0.0, sample.timestamp - range_ms)
            else:
                lower = LookbackPoint(sample.value, sample.timestamp)
        samples.append(sample.with_value(delta(sample, lower)))

    return family_of(samples, family.context)


def increase(
    family: Family,
    range_: RangeArg,
    resolver: LookbackResolver,
    miss_policy: Optional[LookbackMissPolicy] = None,
) -> Family:
    """Raw delta between each sample and its value ``range_`` ago."""
    return _evaluate(family, range_, resolver, miss_policy, _increase)


def rate(
    family: Family,
    range_: RangeArg,
    resolver: LookbackResolver,
    miss_policy: Optional[LookbackMissPolicy] = None,
) -> Family:
    """Per-second average increase over ``range_``.

    Elapsed time is counted in whole seconds; less than one second gives 0.0.
    """
    return _evaluate(family, range_, resolver, miss_policy, _per_second)


def irate(
    family: Family,
    resolver: LookbackResolver,
    miss_policy: Optional[LookbackMissPolicy] = None,
) -> Family:
    """Same as ``rate`` but always with a one second lookback."""
    return _evaluate(family, IRATE_RANGE, resolver, miss_policy, _per_second)
