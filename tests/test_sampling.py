from datetime import datetime

import psutil
import pytest
from loguru import logger

from perf_triage.errors import CollectionFailure
from perf_triage.sampling import TOTAL, CounterSpec, MetricSample, MetricSampler, average_by_instance, average_total

SPEC = CounterSpec("disk", "write_latency")
STAMP = datetime(2026, 10, 19, 9, 30, 0)


class SequenceSource:
    def __init__(self, readings, supported=True):
        self.readings = list(readings)
        self.supported = supported
        self.calls = 0

    def supports(self, spec):
        return self.supported

    def read(self, spec):
        reading = self.readings[min(self.calls, len(self.readings) - 1)]
        self.calls += 1
        if isinstance(reading, Exception):
            raise reading
        return dict(reading)


def make_sampler(source, sleeps=None):
    sleeps = sleeps if sleeps is not None else []
    return MetricSampler(source, sleep=sleeps.append, clock=lambda: STAMP)


def test_sample_primes_then_reads_count_times():
    source = SequenceSource([{}, {"sda": 1.0, TOTAL: 1.0}, {"sda": 3.0, TOTAL: 3.0}, {"sda": 5.0, TOTAL: 5.0}])
    sleeps = []
    samples = make_sampler(source, sleeps).sample(SPEC, interval=3, count=3)
    assert source.calls == 4
    assert sleeps == [3, 3, 3]
    assert len(samples) == 6
    assert samples[0] == MetricSample("disk", "write_latency", "_Total", 1.0, STAMP)


@pytest.mark.parametrize(
    "failure",
    [CollectionFailure("unsupported"), psutil.AccessDenied(), OSError("gone"), ValueError("bad number")],
)
def test_sample_failure_returns_empty(failure):
    source = SequenceSource([{}, {"sda": 1.0}, failure])
    assert make_sampler(source).sample(SPEC, interval=1, count=3) == []


def test_average_by_instance_excludes_total_by_default():
    samples = [
        MetricSample("disk", "write_latency", "sda", value, STAMP) for value in (0.010, 0.030)
    ] + [MetricSample("disk", "write_latency", TOTAL, 0.5, STAMP)]
    assert average_by_instance(samples) == {"sda": pytest.approx(0.020)}
    assert average_by_instance(samples, include_total=True) == {"_Total": 0.5, "sda": pytest.approx(0.020)}


def test_average_total_only_keeps_total():
    samples = [
        MetricSample("cpu", "utilization", TOTAL, 80.0, STAMP),
        MetricSample("cpu", "utilization", TOTAL, 90.0, STAMP),
        MetricSample("cpu", "utilization", "0", 10.0, STAMP),
    ]
    assert average_total(samples) == {TOTAL: 85.0}
    assert average_total(samples[2:]) == {}


def test_average_of_no_samples_is_empty():
    assert average_by_instance([]) == {}


def test_unsupported_counter_is_skipped_without_reading():
    source = SequenceSource([{"sda": 1.0}], supported=False)
    sleeps = []
    warnings = []
    handler_id = logger.add(warnings.append, level="WARNING")
    try:
        assert make_sampler(source, sleeps).sample(SPEC, interval=1, count=3) == []
    finally:
        logger.remove(handler_id)
    assert warnings == []
    assert source.calls == 0
    assert sleeps == []
