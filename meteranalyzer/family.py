"""Sample family types: the populated family, the EMPTY sentinel and their context."""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from meteranalyzer.errors import ValidationError
from meteranalyzer.series import Sample


class DownsamplingType(str, Enum):
    """Aggregation applied by storage when compacting points into an interval."""
    AVG = "AVG"
    SUM = "SUM"
    LATEST = "LATEST"
    SUM_PER_MIN = "SUM_PER_MIN"
    MAX = "MAX"
    MIN = "MIN"


@dataclass(frozen=True)
class Context:
    """Metadata carried alongside a family for downstream consumers."""
    is_histogram: bool = False
    percentiles: Optional[Tuple[int, ...]] = None
    downsampling: DownsamplingType = DownsamplingType.AVG

    def as_histogram(self) -> "Context":
        return replace(self, is_histogram=True)

    def with_percentiles(self, percentiles: Iterable[int]) -> "Context":
        return replace(self, percentiles=tuple(percentiles))

    def to_dict(self) -> dict:
        return {
            "is_histogram": self.is_histogram,
            "percentiles": list(self.percentiles) if self.percentiles is not None else None,
            "downsampling": self.downsampling.value,
        }


class FamilyOperations:
    """Operator methods shared by both family variants.

    Every method delegates to a pure function from the operator modules, so
    ``family.plus(other)`` and ``operators.plus(family, other)`` are the same
    call.
    """

    # Label filters
    def tag_equal(self, *labels: str) -> "Family":
        from meteranalyzer import operators
        return operators.tag_equal(self, *labels)

    def tag_not_equal(self, *labels: str) -> "Family":
        from meteranalyzer import operators
        return operators.tag_not_equal(self, *labels)

    def tag_match(self, *labels: str) -> "Family":
        from meteranalyzer import operators
        return operators.tag_match(self, *labels)

    def tag_not_match(self, *labels: str) -> "Family":
        from meteranalyzer import operators
        return operators.tag_not_match(self, *labels)

    # Arithmetic
    def plus(self, other) -> "Family":
        from meteranalyzer import operators
        return operators.plus(self, other)

    def minus(self, other) -> "Family":
        from meteranalyzer import operators
        return operators.minus(self, other)

    def multiply(self, other) -> "Family":
        from meteranalyzer import operators
        return operators.multiply(self, other)

    def div(self, other) -> "Family":
        from meteranalyzer import operators
        return operators.div(self, other)

    def negative(self) -> "Family":
        from meteranalyzer import operators
        return operators.negative(self)

    __add__ = plus
    __sub__ = minus
    __mul__ = multiply
    __truediv__ = div
    __neg__ = negative

    # Aggregation and functions
    def sum(self, by: Optional[Sequence[str]] = None) -> "Family":
        from meteranalyzer import operators
        return operators.sum_by(self, by)

    def tag(self, rewrite) -> "Family":
        from meteranalyzer import operators
        return operators.tag(self, rewrite)

    def increase(self, range_, resolver, miss_policy=None) -> "Family":
        from meteranalyzer import rate
        return rate.increase(self, range_, resolver, miss_policy)

    def rate(self, range_, resolver, miss_policy=None) -> "Family":
        from meteranalyzer import rate
        return rate.rate(self, range_, resolver, miss_policy)

    def irate(self, resolver, miss_policy=None) -> "Family":
        from meteranalyzer import rate
        return rate.irate(self, resolver, miss_policy)

    def histogram(self, le: str = "le", unit=None) -> "Family":
        from meteranalyzer import histogram
        return histogram.histogram(self, le, unit)

    def histogram_percentile(self, percentiles: Sequence[int]) -> "Family":
        from meteranalyzer import histogram
        return histogram.histogram_percentile(self, percentiles)


class SampleFamily(FamilyOperations):
    """An immutable, ordered, non-empty collection of samples plus context."""

    __slots__ = ("samples", "context")

    def __init__(self, samples: Tuple[Sample, ...], context: Context):
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "context", context)

    @classmethod
    def build(cls, samples: Iterable[Sample], context: Optional[Context] = None) -> "SampleFamily":
        """Build a populated family; at least one sample is required."""
        if samples is None:
            raise ValidationError("samples must not be None")
        samples = tuple(samples)
        if not samples:
            raise ValidationError("a sample family needs at least one sample")
        return cls(samples, context if context is not None else Context())

    @property
    def is_empty(self) -> bool:
        return False

    def __setattr__(self, name, value):
        raise AttributeError("SampleFamily is immutable")

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self):
        return iter(self.samples)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SampleFamily):
            return NotImplemented
        return self.samples == other.samples and self.context == other.context

    def __hash__(self) -> int:
        return hash((self.samples, self.context))

    def __repr__(self) -> str:
        return f"SampleFamily(samples={list(self.samples)!r}, context={self.context!r})"

    def to_dict(self) -> dict:
        return {
            "empty": False,
            "samples": [s.to_dict() for s in self.samples],
            "context": self.context.to_dict(),
        }


class EmptyFamily(FamilyOperations):
    """The "no data" family. Only one instance, ``EMPTY``, exists."""

    _instance = None
    samples: Tuple[Sample, ...] = ()
    context = Context()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def is_empty(self) -> bool:
        return True

    def __len__(self) -> int:
        return 0

    def __iter__(self):
        return iter(())

    def __eq__(self, other) -> bool:
        return other is self

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return "EMPTY"

    def to_dict(self) -> dict:
        return {"empty": True, "samples": [], "context": self.context.to_dict()}


EMPTY = EmptyFamily()

Family = Union[SampleFamily, EmptyFamily]


def family_of(samples: List[Sample], context: Optional[Context] = None) -> Family:
    """Build a family from operator output, collapsing no samples to EMPTY."""
    if not samples:
        return EMPTY
    return SampleFamily.build(samples, context)
