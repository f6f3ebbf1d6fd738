"""Data structures for samples and label sets."""
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional


class LabelSet(Mapping[str, str]):
    """Immutable label mapping identifying one time series.

    Two label sets are equal when their full contents are equal. A label set
    also compares equal to a plain dict holding the same items.
    """

    __slots__ = ("_labels", "_hash")

    def __init__(self, labels: Optional[Mapping[str, str]] = None, **kwargs: str):
        items = dict(labels or {})
        items.update(kwargs)
        self._labels: Dict[str, str] = items
        self._hash: Optional[int] = None

    def __getitem__(self, key: str) -> str:
        return self._labels[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._labels.items()))
        return self._hash

    def __eq__(self, other) -> bool:
        if isinstance(other, LabelSet):
            return self._labels == other._labels
        if isinstance(other, Mapping):
            return self._labels == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"LabelSet({{{self.key()}}})"

    def key(self) -> str:
        """Generate a stable key from sorted labels."""
        return ",".join(f"{k}={v}" for k, v in sorted(self._labels.items()))

    def to_dict(self) -> Dict[str, str]:
        """Return a mutable copy of the labels."""
        return dict(self._labels)


EMPTY_LABELS = LabelSet()


@dataclass(frozen=True)
class Sample:
    """A single metric data point: timestamp in ms, value and labels."""
    timestamp: int
    value: float
    labels: LabelSet = field(default=EMPTY_LABELS)

    def __post_init__(self):
        if not isinstance(self.labels, LabelSet):
            object.__setattr__(self, "labels", LabelSet(self.labels))
        object.__setattr__(self, "timestamp", int(self.timestamp))
        object.__setattr__(self, "value", float(self.value))

    def with_value(self, value: float) -> "Sample":
        return Sample(self.timestamp, value, self.labels)

    def with_labels(self, labels: Mapping[str, str]) -> "Sample":
        return Sample(self.timestamp, self.value, LabelSet(labels))

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "value": self.value,
            "labels": self.labels.to_dict(),
        }
