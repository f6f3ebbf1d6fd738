"""Histogram bucket de-accumulation and percentile hand-off."""
import math
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from meteranalyzer.errors import ParseError, ValidationError
from meteranalyzer.family import EMPTY, Family, SampleFamily
from meteranalyzer.series import LabelSet, Sample

BOUND_LABEL = "le"


class TimeUnit(Enum):
    """Unit of the bucket bounds, valued in milliseconds."""
    NANOSECONDS = 1e-6
    MICROSECONDS = 1e-3
    MILLISECONDS = 1
    SECONDS = 1_000
    MINUTES = 60_000
    HOURS = 3_600_000
    DAYS = 86_400_000

    def to_millis(self, amount: int = 1) -> int:
        return int(amount * self.value)


def _unit(unit) -> TimeUnit:
    if unit is None:
        return TimeUnit.SECONDS
    if isinstance(unit, TimeUnit):
        return unit
    try:
        return TimeUnit[str(unit).upper()]
    except KeyError as e:
        raise ValidationError(f"Unknown time unit: {unit!r}") from e


def _parse_bound(raw: str) -> float:
    try:
        bound = float(raw)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Bucket bound {raw!r} is not a number") from e
    if math.isnan(bound):
        raise ParseError(f"Bucket bound {raw!r} is not a number")
    if bound == -math.inf:
        raise ParseError(f"Bucket bound {raw!r} has no finite lower edge")
    return bound


def histogram(family: Family, le: str = BOUND_LABEL, unit: Optional[TimeUnit] = None) -> Family:
    """Turn cumulative bucket counts into per-bucket counts.

    Samples are grouped by their labels other than ``le``; each group is one
    histogram. Within a group buckets are walked in ascending bound order and
    each output sample carries ``current - previous`` as its value and the
    *previous* bucket's bound (starting at 0), scaled to milliseconds, as its
    ``le`` label.
    """
    scale = _unit(unit).to_millis(1)
    if scale <= 0:
        raise ValidationError(f"Time unit {unit} is finer than one millisecond")
    if family.is_empty:
        return EMPTY

    groups: Dict[LabelSet, List[Tuple[float, Sample]]] = {}
    for sample in family.samples:
        if le not in sample.labels:
            continue
        bound = _parse_bound(sample.labels[le])
        rest = LabelSet({k: v for k, v in sample.labels.items() if k != le})
        groups.setdefault(rest, []).append((bound, sample))

    if not groups:
        return EMPTY

    samples: List[Sample] = []
    for rest, buckets in groups.items():
        buckets.sort(key=lambda item: item[0])
        previous = 0.0
        previous_bound = "0"
        seen = set()
        for bound, sample in buckets:
            if bound in seen:
                raise ValidationError(f"Duplicate bucket bound {sample.labels[le]!r} in {rest.key()}")
            seen.add(bound)

            labels = rest.to_dict()
            labels[BOUND_LABEL] = str(int(_parse_bound(previous_bound) * scale))
            samples.append(Sample(sample.timestamp, sample.value - previous, labels))

            previous = sample.value
            previous_bound = sample.labels[le]

    return SampleFamily.build(samples, family.context.as_histogram())


def histogram_percentile(family: Family, percentiles: Sequence[int]) -> Family:
    """Attach the requested percentile ranks to a histogram family's context.

    No percentile is computed here; storage does that from the bucket deltas.
    """
    if percentiles is None or isinstance(percentiles, (str, bytes)):
        raise ValidationError(f"Percentiles must be a list of integers, got {percentiles!r}")
    ranks = list(percentiles)
    for rank in ranks:
        if isinstance(rank, bool) or not isinstance(rank, int) or not 0 <= rank <= 100:
            raise ValidationError(f"Percentile rank must be an integer in [0, 100], got {rank!r}")
    if family.is_empty:
        return EMPTY
    if not family.context.is_histogram:
        raise ValidationError("histogram_percentile needs a histogram family, call histogram() first")
    return SampleFamily.build(family.samples, family.context.with_percentiles(ranks))
