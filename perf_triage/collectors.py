"""Passive domain collectors: sample counters and build domain snapshots."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple

import psutil

from . import counters as c
from . import system_state as m
from .config import Settings
from .formatting import format_bytes, format_value
from .logger import get_logger
from .modes import Cadence
from .sampling import TOTAL, CounterSpec, MetricSampler, average_by_instance, average_total
from .system_state import (
    Domain,
    DomainSnapshot,
    ProcessUsage,
    SnapshotBuilder,
    is_leak_suspect,
    scan_processes,
    top_by_cpu,
    top_by_working_set,
)

log = get_logger("Collectors")


def _tcp_connections() -> List[Any]:
    return psutil.net_connections(kind="tcp")


@dataclass
class CollectionContext:
    """Everything a collector needs for one run."""

    sampler: MetricSampler
    cadence: Cadence
    settings: Settings = field(default_factory=Settings)
    top_n: int = 10
    scratch_dir: Path = Path(".")
    disk_test_size_gb: int = 1
    block_sizes: Tuple[int, ...] = ()
    process_scanner: Callable[[float], List[ProcessUsage]] = scan_processes
    connections: Callable[[], List[Any]] = _tcp_connections
    _processes: Optional[List[ProcessUsage]] = field(default=None, init=False, repr=False)

    def processes(self) -> List[ProcessUsage]:
        """One process scan per run, shared by the CPU, memory and database collectors."""
        if self._processes is None:
            self._processes = self.process_scanner(self.cadence.interval)
            log.debug("Scanned {} processes", len(self._processes))
        return self._processes


def _sample(
    ctx: CollectionContext,
    builder: SnapshotBuilder,
    spec: CounterSpec,
    metric: str,
    *,
    include_total: bool = False,
    total_only: bool = False,
    scale: float = 1.0,
) -> Dict[str, float]:
    samples = ctx.sampler.sample(spec, ctx.cadence.interval, ctx.cadence.count)
    if not samples:
        builder.gap(str(spec))
        return {}
    averaged = average_total(samples) if total_only else average_by_instance(samples, include_total)
    values = {instance: value * scale for instance, value in averaged.items()}
    builder.add(metric, values)
    return values


def _cell(values: Dict[str, float], key: str) -> str:
    return format_value(values[key]) if key in values else "n/a"


def collect_disk(ctx: CollectionContext) -> DomainSnapshot:
    builder = SnapshotBuilder(Domain.DISK)
    reads = _sample(ctx, builder, c.DISK_READ_LATENCY, m.READ_LATENCY_MS, scale=1000.0)
    writes = _sample(ctx, builder, c.DISK_WRITE_LATENCY, m.WRITE_LATENCY_MS, scale=1000.0)
    queues = _sample(ctx, builder, c.DISK_QUEUE_LENGTH, m.DISK_QUEUE_LENGTH)
    disks = sorted(set(reads) | set(writes) | set(queues))
    builder.table(
        "Physical disks",
        ["Disk", "Read latency (ms)", "Write latency (ms)", "Queue length"],
        [[disk, _cell(reads, disk), _cell(writes, disk), _cell(queues, disk)] for disk in disks],
    )
    return builder.build()


def collect_cpu(ctx: CollectionContext) -> DomainSnapshot:
    builder = SnapshotBuilder(Domain.CPU)
    utilization = _sample(ctx, builder, c.CPU_UTILIZATION, m.CPU_UTILIZATION, include_total=True)
    _sample(ctx, builder, c.CPU_CONTEXT_SWITCHES, m.CONTEXT_SWITCHES, total_only=True)
    _sample(ctx, builder, c.CPU_QUEUE_LENGTH, m.PROCESSOR_QUEUE_LENGTH, total_only=True)
    _sample(ctx, builder, c.CPU_CLOCK_THROTTLE, m.CLOCK_THROTTLE, total_only=True)

    per_cpu = sorted((k for k in utilization if k != TOTAL), key=lambda k: int(k) if k.isdigit() else k)
    if per_cpu:
        builder.table("Per-CPU utilization", ["CPU", "Utilization %"], [[k, _cell(utilization, k)] for k in per_cpu])

    processes = ctx.processes()
    builder.set(m.THREAD_COUNT, sum(p.threads for p in processes))
    builder.table(
        f"Top {ctx.top_n} processes by CPU",
        ["PID", "Process", "CPU %", "Threads", "Working set"],
        [
            [str(p.pid), p.name, f"{p.cpu_percent:.1f}", str(p.threads), format_bytes(p.working_set_bytes)]
            for p in top_by_cpu(processes, ctx.top_n)
        ],
    )
    busiest = sorted(processes, key=lambda p: (-p.threads, p.pid))[: ctx.top_n]
    builder.table(
        f"Top {ctx.top_n} processes by thread count",
        ["PID", "Process", "Threads"],
        [[str(p.pid), p.name, str(p.threads)] for p in busiest],
    )
    return builder.build()


def collect_memory(ctx: CollectionContext) -> DomainSnapshot:
    builder = SnapshotBuilder(Domain.MEMORY)
    _sample(ctx, builder, c.MEMORY_AVAILABLE, m.AVAILABLE_MEMORY, total_only=True)
    _sample(ctx, builder, c.MEMORY_PAGES, m.PAGING_RATE, total_only=True)
    _sample(ctx, builder, c.MEMORY_PAGE_FAULTS, m.PAGE_FAULTS, total_only=True)
    _sample(ctx, builder, c.MEMORY_PAGE_FILE_USAGE, m.PAGE_FILE_USAGE, total_only=True)
    _sample(ctx, builder, c.MEMORY_COMMITTED, m.COMMITTED_MEMORY, total_only=True)

    processes = ctx.processes()
    suspects = [p for p in processes if is_leak_suspect(p)]
    builder.set(m.LEAK_SUSPECTS, len(suspects))
    builder.table(
        f"Top {ctx.top_n} processes by working set",
        ["PID", "Process", "Working set", "Virtual size", "Leak suspect"],
        [
            [
                str(p.pid),
                p.name,
                format_bytes(p.working_set_bytes),
                format_bytes(p.virtual_bytes),
                "yes" if is_leak_suspect(p) else "no",
            ]
            for p in top_by_working_set(processes, ctx.top_n)
        ],
    )
    for proc in sorted(suspects, key=lambda p: (-p.virtual_bytes, p.pid))[: ctx.top_n]:
        builder.note(
            f"Leak suspect: {proc.name} (pid {proc.pid}) virtual {format_bytes(proc.virtual_bytes)}, "
            f"working set {format_bytes(proc.working_set_bytes)}"
        )
    return builder.build()


def collect_network(ctx: CollectionContext) -> DomainSnapshot:
    builder = SnapshotBuilder(Domain.NETWORK)
    throughput = _sample(ctx, builder, c.NETWORK_THROUGHPUT, m.THROUGHPUT, include_total=True)
    queues = _sample(ctx, builder, c.NETWORK_OUTPUT_QUEUE, m.OUTPUT_QUEUE_LENGTH)
    errors = _sample(ctx, builder, c.NETWORK_PACKET_ERRORS, m.PACKET_ERRORS, include_total=True)
    _sample(ctx, builder, c.NETWORK_RETRANSMITS, m.RETRANSMITS, total_only=True)
    nics = sorted((set(throughput) | set(errors) | set(queues)) - {TOTAL})
    builder.table(
        "Network interfaces",
        ["Interface", "Throughput", "Packet errors/s", "Output queue"],
        [
            [
                nic,
                f"{format_bytes(throughput[nic])}/s" if nic in throughput else "n/a",
                _cell(errors, nic),
                _cell(queues, nic),
            ]
            for nic in nics
        ],
    )
    return builder.build()


@dataclass(frozen=True)
class DatabaseEngine:
    key: str
    label: str
    pattern: Pattern[str]
    port: int


DATABASE_ENGINES: Tuple[DatabaseEngine, ...] = (
    DatabaseEngine("sqlserver", "SQL Server", re.compile(r"^sqlservr", re.I), 1433),
    DatabaseEngine("mysql", "MySQL", re.compile(r"^(mysqld|mariadbd)", re.I), 3306),
    DatabaseEngine("postgresql", "PostgreSQL", re.compile(r"^postgres", re.I), 5432),
    DatabaseEngine("oracle", "Oracle", re.compile(r"^(oracle|tnslsnr)", re.I), 1521),
    DatabaseEngine("mongodb", "MongoDB", re.compile(r"^mongod", re.I), 27017),
    DatabaseEngine("redis", "Redis", re.compile(r"^redis-server", re.I), 6379),
)


def detect_engines(process_names: Sequence[str]) -> List[DatabaseEngine]:
    """Engines with at least one process whose name matches its pattern."""
    return [engine for engine in DATABASE_ENGINES if any(engine.pattern.match(name) for name in process_names)]


def count_connections(connections: Sequence[Any], engines: Sequence[DatabaseEngine]) -> Tuple[Dict[str, int], int]:
    """Established connections per engine port, and TIME_WAIT across all of them."""
    ports = {engine.port: engine.key for engine in engines}
    established = {engine.key: 0 for engine in engines}
    time_wait = 0
    for conn in connections:
        local = conn.laddr.port if conn.laddr else None
        remote = conn.raddr.port if conn.raddr else None
        if conn.status == psutil.CONN_ESTABLISHED and local in ports:
            established[ports[local]] += 1
        elif conn.status == psutil.CONN_TIME_WAIT and (local in ports or remote in ports):
            time_wait += 1
    return established, time_wait


def collect_database(ctx: CollectionContext) -> DomainSnapshot:
    builder = SnapshotBuilder(Domain.DATABASE)
    engines = detect_engines([p.name for p in ctx.processes()])
    if not engines:
        builder.note("No supported database engine detected")
        return builder.build()

    try:
        connections = ctx.connections()
    except (psutil.AccessDenied, OSError) as exc:
        log.warning("Cannot enumerate TCP connections: {}", exc)
        builder.gap("database/connections")
        builder.note(f"Detected: {', '.join(e.label for e in engines)}")
        return builder.build()

    established, time_wait = count_connections(connections, engines)
    builder.add(m.ESTABLISHED_CONNECTIONS, established)
    builder.set(m.TIME_WAIT_CONNECTIONS, time_wait)
    builder.table(
        "Database engines",
        ["Engine", "Port", "Established connections"],
        [[e.label, str(e.port), str(established[e.key])] for e in engines],
    )
    builder.note(f"TIME_WAIT connections on database ports: {time_wait}")
    return builder.build()

