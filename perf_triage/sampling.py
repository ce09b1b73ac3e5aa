"""Sample named counters over a window and average the results."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Protocol

import psutil

from .errors import CollectionFailure
from .logger import get_logger

log = get_logger("Sampler")

TOTAL = "_Total"


@dataclass(frozen=True)
class CounterSpec:
    category: str
    name: str

    def __str__(self) -> str:
        return f"{self.category}/{self.name}"


@dataclass(frozen=True)
class MetricSample:
    category: str
    counter: str
    instance: str
    value: float
    timestamp: datetime


class CounterSource(Protocol):
    def supports(self, spec: CounterSpec) -> bool:
        """Whether the platform exposes ``spec`` at all."""

    def read(self, spec: CounterSpec) -> Dict[str, float]:
        """Return the current value of ``spec`` for every instance."""


class MetricSampler:
    """Poll a counter source ``count`` times, ``interval`` seconds apart."""

    def __init__(
        self,
        source: CounterSource,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._source = source
        self._sleep = sleep
        self._clock = clock

    def sample(self, spec: CounterSpec, interval: float, count: int) -> List[MetricSample]:
        if not self._source.supports(spec):
            log.debug("Counter {} is not exposed on this platform", spec)
            return []
        samples: List[MetricSample] = []
        try:
            # Rate counters need a baseline reading before the window starts.
            self._source.read(spec)
            for _ in range(count):
                self._sleep(interval)
                stamp = self._clock()
                for instance, value in sorted(self._source.read(spec).items()):
                    samples.append(MetricSample(spec.category, spec.name, instance, float(value), stamp))
        except (CollectionFailure, psutil.Error, OSError, ValueError, KeyError) as exc:
            log.warning("Counter {} unavailable: {}", spec, exc)
            return []
        log.debug("Counter {} produced {} samples", spec, len(samples))
        return samples


def average_by_instance(samples: Iterable[MetricSample], include_total: bool = False) -> Dict[str, float]:
    """Mean value per instance; the ``_Total`` aggregate is dropped unless requested."""
    buckets: Dict[str, List[float]] = defaultdict(list)
    for sample in samples:
        if sample.instance == TOTAL and not include_total:
            continue
        buckets[sample.instance].append(sample.value)
    return {instance: sum(values) / len(values) for instance, values in sorted(buckets.items())}


def average_total(samples: Iterable[MetricSample]) -> Dict[str, float]:
    """Mean of the ``_Total`` instance only."""
    averaged = average_by_instance(samples, include_total=True)
    return {TOTAL: averaged[TOTAL]} if TOTAL in averaged else {}
