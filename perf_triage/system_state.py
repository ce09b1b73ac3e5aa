"""Snapshot types shared by collectors, the classifier and the report."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import psutil

from .sampling import TOTAL

MetricKey = Tuple[str, str]

GIB = 1024**3
LEAK_VIRTUAL_FLOOR_BYTES = 2 * GIB
LEAK_WORKING_SET_RATIO = 0.30

# Metric names used in snapshots and classifier rules.
READ_LATENCY_MS = "read_latency_ms"
WRITE_LATENCY_MS = "write_latency_ms"
DISK_QUEUE_LENGTH = "queue_length"
CPU_UTILIZATION = "utilization_percent"
CONTEXT_SWITCHES = "context_switches_per_sec"
PROCESSOR_QUEUE_LENGTH = "processor_queue_length"
CLOCK_THROTTLE = "clock_throttle_percent"
THREAD_COUNT = "thread_count"
AVAILABLE_MEMORY = "available_percent"
PAGING_RATE = "pages_per_sec"
PAGE_FAULTS = "page_faults_per_sec"
PAGE_FILE_USAGE = "page_file_usage_percent"
COMMITTED_MEMORY = "committed_percent"
LEAK_SUSPECTS = "leak_suspects"
THROUGHPUT = "bytes_per_sec"
OUTPUT_QUEUE_LENGTH = "output_queue_length"
PACKET_ERRORS = "packet_errors_per_sec"
RETRANSMITS = "retransmits_per_sec"
ESTABLISHED_CONNECTIONS = "established_connections"
TIME_WAIT_CONNECTIONS = "time_wait_connections"
MISALIGNED_PARTITIONS = "misaligned_partitions"
DEGRADED_VOLUMES = "degraded_volumes"
SMART_WEAR = "smart_wear_percent"
DRIVE_TEMPERATURE = "temperature_celsius"
UNHEALTHY_ISCSI_SESSIONS = "unhealthy_iscsi_sessions"


class Domain(str, Enum):
    DISK = "Disk"
    CPU = "CPU"
    MEMORY = "Memory"
    NETWORK = "Network"
    DATABASE = "Database"
    STORAGE = "Storage"
    DISK_BENCHMARK = "Disk Benchmark"


@dataclass(frozen=True)
class DetailTable:
    title: str
    headers: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class DomainSnapshot:
    """Averaged metrics for one domain plus presentation detail.

    ``metrics`` maps ``(metric, instance)`` to the mean over the sampling
    window and is read-only once built.
    """

    domain: Domain
    metrics: Mapping[MetricKey, float] = field(default_factory=dict)
    tables: Tuple[DetailTable, ...] = ()
    notes: Tuple[str, ...] = ()
    gaps: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))

    def value(self, metric: str, instance: str = TOTAL) -> Optional[float]:
        return self.metrics.get((metric, instance))

    def instances(self, metric: str) -> List[Tuple[str, float]]:
        return sorted(
            (instance, value) for (name, instance), value in self.metrics.items() if name == metric
        )


class SnapshotBuilder:
    def __init__(self, domain: Domain) -> None:
        self.domain = domain
        self._metrics: Dict[MetricKey, float] = {}
        self._tables: List[DetailTable] = []
        self._notes: List[str] = []
        self._gaps: List[str] = []

    def add(self, metric: str, values: Mapping[str, float]) -> None:
        for instance, value in values.items():
            self._metrics[(metric, instance)] = float(value)

    def set(self, metric: str, value: float, instance: str = TOTAL) -> None:
        self._metrics[(metric, instance)] = float(value)

    def table(self, title: str, headers: Sequence[str], rows: Iterable[Sequence[str]]) -> None:
        self._tables.append(DetailTable(title, tuple(headers), tuple(tuple(row) for row in rows)))

    def note(self, text: str) -> None:
        self._notes.append(text)

    def gap(self, what: str) -> None:
        self._gaps.append(what)

    def build(self) -> DomainSnapshot:
        return DomainSnapshot(
            domain=self.domain,
            metrics=self._metrics,
            tables=tuple(self._tables),
            notes=tuple(self._notes),
            gaps=tuple(self._gaps),
        )


@dataclass(frozen=True)
class ProcessUsage:
    pid: int
    name: str
    cpu_percent: float
    working_set_bytes: int
    virtual_bytes: int
    threads: int


def is_leak_suspect(process: ProcessUsage) -> bool:
    """Large address space with a small resident share hints at a leak."""
    return (
        process.virtual_bytes > LEAK_VIRTUAL_FLOOR_BYTES
        and process.working_set_bytes < LEAK_WORKING_SET_RATIO * process.virtual_bytes
    )


def top_by_cpu(processes: Sequence[ProcessUsage], limit: int = 10) -> List[ProcessUsage]:
    return sorted(processes, key=lambda p: (-p.cpu_percent, p.pid))[:limit]


def top_by_working_set(processes: Sequence[ProcessUsage], limit: int = 10) -> List[ProcessUsage]:
    return sorted(processes, key=lambda p: (-p.working_set_bytes, p.pid))[:limit]


def scan_processes(
    sample_seconds: float = 1.0,
    process_iter: Callable[[], Iterable[psutil.Process]] = psutil.process_iter,
    sleep: Callable[[float], None] = time.sleep,
) -> List[ProcessUsage]:
    """Measure every visible process; CPU is averaged over ``sample_seconds``."""
    processes = list(process_iter())
    _prime_cpu_percent(processes)
    sleep(sample_seconds)
    return _process_usage(processes)


def _prime_cpu_percent(processes: Iterable[psutil.Process]) -> None:
    for proc in processes:
        try:
            proc.cpu_percent(None)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


def _process_usage(processes: Iterable[psutil.Process]) -> List[ProcessUsage]:
    usage: List[ProcessUsage] = []
    for proc in processes:
        try:
            with proc.oneshot():
                mem_info = proc.memory_info()
                usage.append(
                    ProcessUsage(
                        pid=proc.pid,
                        name=proc.name(),
                        cpu_percent=proc.cpu_percent(None),
                        working_set_bytes=mem_info.rss,
                        virtual_bytes=mem_info.vms,
                        threads=proc.num_threads(),
                    )
                )
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return usage
