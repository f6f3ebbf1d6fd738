"""Lookback resolver contract and an in-memory implementation.

Rate-style operators need the value a series had at or before some earlier
instant. The operators only depend on :class:`LookbackResolver`; where the
history actually lives (a storage backend, a remote service, process memory)
is up to the implementation.
"""
import bisect
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from meteranalyzer.series import LabelSet, Sample


@dataclass(frozen=True)
class LookbackPoint:
    """A recorded value of one series."""
    value: float
    timestamp: int


LookupRequest = Tuple[LabelSet, int]


class LookbackMissPolicy(str, Enum):
    """What rate-style operators do when the resolver has no earlier point.

    SELF: the current sample is its own baseline (increase 0, rate 0).
    ZERO: the baseline is value 0.0 at the lookback instant.
    DROP: the sample is left out of the result.
    """
    SELF = "self"
    ZERO = "zero"
    DROP = "drop"


class LookbackResolver(ABC):
    """Answers "what was series L's value at or before time T"."""

    @abstractmethod
    def lookup_many(self, requests: Sequence[LookupRequest]) -> List[Optional[LookbackPoint]]:
        """Resolve a batch of (labels, at_or_before_ms) requests in one round-trip.

        Returns one entry per request, in request order; ``None`` means no
        point was recorded at or before the instant.
        """
        pass

    def lookup(self, labels: Mapping[str, str], at_or_before: int) -> Optional[LookbackPoint]:
        """Resolve a single request."""
        return self.lookup_many([(LabelSet(labels), at_or_before)])[0]


class InMemoryLookbackResolver(LookbackResolver):
    """Keeps per-series history in memory, sorted by timestamp.

    Args:
        retention_ms: points older than the newest recorded point of the same
            series minus this window are pruned on record. ``None`` keeps
            everything.
    """

    def __init__(self, retention_ms: Optional[int] = None):
        self.retention_ms = retention_ms
        self._timestamps: Dict[LabelSet, List[int]] = {}
        self._values: Dict[LabelSet, List[float]] = {}
        self._lock = threading.Lock()

    def record(self, sample: Sample):
        """Record one sample; a repeated timestamp overwrites the earlier value."""
        with self._lock:
            timestamps = self._timestamps.setdefault(sample.labels, [])
            values = self._values.setdefault(sample.labels, [])

            idx = bisect.bisect_left(timestamps, sample.timestamp)
            if idx < len(timestamps) and timestamps[idx] == sample.timestamp:
                values[idx] = sample.value
            else:
                timestamps.insert(idx, sample.timestamp)
                values.insert(idx, sample.value)

            if self.retention_ms is not None:
                cutoff = bisect.bisect_left(timestamps, timestamps[-1] - self.retention_ms)
                if cutoff:
                    del timestamps[:cutoff]
                    del values[:cutoff]

    def record_all(self, samples: Iterable[Sample]):
        for sample in samples:
            self.record(sample)

    def lookup_many(self, requests: Sequence[LookupRequest]) -> List[Optional[LookbackPoint]]:
        results: List[Optional[LookbackPoint]] = []
        with self._lock:
            for labels, at_or_before in requests:
                timestamps = self._timestamps.get(LabelSet(labels))
                if not timestamps:
                    results.append(None)
                    continue
                idx = bisect.bisect_right(timestamps, at_or_before)
                if idx == 0:
                    results.append(None)
                    continue
                values = self._values[LabelSet(labels)]
                results.append(LookbackPoint(values[idx - 1], timestamps[idx - 1]))
        return results

    def series_count(self) -> int:
        with self._lock:
            return len(self._timestamps)

    def clear(self):
        with self._lock:
            self._timestamps.clear()
            self._values.clear()
