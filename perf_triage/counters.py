"""Counter catalogue backed by psutil and, where psutil is silent, /proc."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import psutil

from .errors import CollectionFailure
from .sampling import TOTAL, CounterSpec
from .storage import SKIPPED_DEVICE_PREFIXES

PAGE_SIZE = 4096

DISK_READ_LATENCY = CounterSpec("disk", "read_latency")
DISK_WRITE_LATENCY = CounterSpec("disk", "write_latency")
DISK_QUEUE_LENGTH = CounterSpec("disk", "queue_length")

CPU_UTILIZATION = CounterSpec("cpu", "utilization")
CPU_CONTEXT_SWITCHES = CounterSpec("cpu", "context_switches")
CPU_QUEUE_LENGTH = CounterSpec("cpu", "queue_length")
CPU_CLOCK_THROTTLE = CounterSpec("cpu", "clock_throttle")

MEMORY_AVAILABLE = CounterSpec("memory", "available")
MEMORY_PAGES = CounterSpec("memory", "pages")
MEMORY_PAGE_FAULTS = CounterSpec("memory", "page_faults")
MEMORY_PAGE_FILE_USAGE = CounterSpec("memory", "page_file_usage")
MEMORY_COMMITTED = CounterSpec("memory", "committed")

NETWORK_THROUGHPUT = CounterSpec("network", "throughput")
NETWORK_PACKET_ERRORS = CounterSpec("network", "packet_errors")
NETWORK_OUTPUT_QUEUE = CounterSpec("network", "output_queue_length")
NETWORK_RETRANSMITS = CounterSpec("network", "retransmits")


class PsutilCounterSource:
    """Reads counters on demand.

    Rate counters remember the previous raw reading per counter and report
    the change per second since then; the first read of a rate counter
    returns no instances.
    """

    def __init__(
        self,
        proc_root: Path = Path("/proc"),
        sys_root: Path = Path("/sys"),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._proc_root = Path(proc_root)
        self._sys_root = Path(sys_root)
        self._clock = clock
        self._previous: Dict[CounterSpec, Tuple[float, Any]] = {}
        self._readers: Dict[CounterSpec, Callable[[], Dict[str, float]]] = {
            DISK_READ_LATENCY: lambda: self._disk_latency(DISK_READ_LATENCY, "read"),
            DISK_WRITE_LATENCY: lambda: self._disk_latency(DISK_WRITE_LATENCY, "write"),
            DISK_QUEUE_LENGTH: self._disk_queue_length,
            CPU_UTILIZATION: self._cpu_utilization,
            CPU_CONTEXT_SWITCHES: self._context_switches,
            CPU_QUEUE_LENGTH: self._cpu_queue_length,
            CPU_CLOCK_THROTTLE: self._clock_throttle,
            MEMORY_AVAILABLE: self._memory_available,
            MEMORY_PAGES: self._pages,
            MEMORY_PAGE_FAULTS: self._page_faults,
            MEMORY_PAGE_FILE_USAGE: self._page_file_usage,
            MEMORY_COMMITTED: self._committed,
            NETWORK_THROUGHPUT: lambda: self._nic_rate(NETWORK_THROUGHPUT, ("bytes_sent", "bytes_recv")),
            NETWORK_PACKET_ERRORS: lambda: self._nic_rate(NETWORK_PACKET_ERRORS, ("errin", "errout")),
            NETWORK_RETRANSMITS: self._retransmits,
        }

    def supports(self, spec: CounterSpec) -> bool:
        return spec in self._readers

    def read(self, spec: CounterSpec) -> Dict[str, float]:
        reader = self._readers.get(spec)
        if reader is None:
            raise CollectionFailure(f"counter {spec} is not exposed on this platform")
        return reader()

    def _delta(self, spec: CounterSpec, raw: Any) -> Optional[Tuple[float, Any, Any]]:
        now = self._clock()
        previous = self._previous.get(spec)
        self._previous[spec] = (now, raw)
        if previous is None:
            return None
        elapsed = now - previous[0]
        if elapsed <= 0:
            return None
        return elapsed, previous[1], raw

    def _disk_counters(self) -> Dict[str, Any]:
        counters = psutil.disk_io_counters(perdisk=True)
        if not counters:
            raise CollectionFailure("no disk I/O counters reported")
        # perdisk=True also reports partitions; only whole disks appear under /sys/block.
        block = self._sys_root / "block"
        disks = {
            name: value
            for name, value in counters.items()
            if not name.startswith(SKIPPED_DEVICE_PREFIXES) and (block / name).is_dir()
        }
        if not disks:
            raise CollectionFailure(f"no whole-disk I/O counters under {block}")
        return disks

    def _disk_latency(self, spec: CounterSpec, kind: str) -> Dict[str, float]:
        delta = self._delta(spec, self._disk_counters())
        if delta is None:
            return {}
        _, before, after = delta
        values: Dict[str, float] = {}
        total_time = 0
        total_count = 0
        for disk, now in after.items():
            if disk not in before:
                continue
            busy_ms = getattr(now, f"{kind}_time") - getattr(before[disk], f"{kind}_time")
            ops = getattr(now, f"{kind}_count") - getattr(before[disk], f"{kind}_count")
            values[disk] = busy_ms / ops / 1000.0 if ops > 0 else 0.0
            total_time += busy_ms
            total_count += ops
        values[TOTAL] = total_time / total_count / 1000.0 if total_count > 0 else 0.0
        return values

    def _disk_queue_length(self) -> Dict[str, float]:
        delta = self._delta(DISK_QUEUE_LENGTH, self._disk_counters())
        if delta is None:
            return {}
        elapsed, before, after = delta
        values: Dict[str, float] = {}
        for disk, now in after.items():
            if disk not in before:
                continue
            waited_ms = (now.read_time - before[disk].read_time) + (now.write_time - before[disk].write_time)
            # Little's law: total time spent in queue divided by wall time.
            values[disk] = waited_ms / (elapsed * 1000.0)
        values[TOTAL] = sum(values.values())
        return values

    def _cpu_utilization(self) -> Dict[str, float]:
        per_cpu = psutil.cpu_percent(interval=None, percpu=True)
        if not per_cpu:
            raise CollectionFailure("no per-CPU utilization reported")
        values = {str(index): float(value) for index, value in enumerate(per_cpu)}
        values[TOTAL] = sum(per_cpu) / len(per_cpu)
        return values

    def _context_switches(self) -> Dict[str, float]:
        delta = self._delta(CPU_CONTEXT_SWITCHES, psutil.cpu_stats().ctx_switches)
        if delta is None:
            return {}
        elapsed, before, after = delta
        return {TOTAL: max(0, after - before) / elapsed}

    def _cpu_queue_length(self) -> Dict[str, float]:
        load_1m = psutil.getloadavg()[0]
        cores = psutil.cpu_count() or 1
        return {TOTAL: max(0.0, load_1m - cores)}

    def _clock_throttle(self) -> Dict[str, float]:
        freq = psutil.cpu_freq()
        if freq is None or not freq.max:
            raise CollectionFailure("CPU frequency limits not reported")
        return {TOTAL: max(0.0, (1.0 - freq.current / freq.max) * 100.0)}

    def _memory_available(self) -> Dict[str, float]:
        memory = psutil.virtual_memory()
        return {TOTAL: memory.available / memory.total * 100.0}

    def _pages(self) -> Dict[str, float]:
        swap = psutil.swap_memory()
        delta = self._delta(MEMORY_PAGES, swap.sin + swap.sout)
        if delta is None:
            return {}
        elapsed, before, after = delta
        return {TOTAL: max(0, after - before) / PAGE_SIZE / elapsed}

    def _page_faults(self) -> Dict[str, float]:
        vmstat = _read_key_values(self._proc_root / "vmstat")
        if "pgfault" not in vmstat:
            raise CollectionFailure("pgfault missing from vmstat")
        delta = self._delta(MEMORY_PAGE_FAULTS, vmstat["pgfault"])
        if delta is None:
            return {}
        elapsed, before, after = delta
        return {TOTAL: max(0, after - before) / elapsed}

    def _page_file_usage(self) -> Dict[str, float]:
        return {TOTAL: float(psutil.swap_memory().percent)}

    def _committed(self) -> Dict[str, float]:
        meminfo = _read_key_values(self._proc_root / "meminfo")
        limit = meminfo.get("CommitLimit:")
        committed = meminfo.get("Committed_AS:")
        if not limit or committed is None:
            raise CollectionFailure("commit accounting missing from meminfo")
        return {TOTAL: committed / limit * 100.0}

    def _nic_rate(self, spec: CounterSpec, fields: Tuple[str, ...]) -> Dict[str, float]:
        counters = psutil.net_io_counters(pernic=True)
        if not counters:
            raise CollectionFailure("no network interface counters reported")
        delta = self._delta(spec, counters)
        if delta is None:
            return {}
        elapsed, before, after = delta
        values: Dict[str, float] = {}
        for nic, now in after.items():
            if nic not in before:
                continue
            moved = sum(getattr(now, field) - getattr(before[nic], field) for field in fields)
            values[nic] = max(0, moved) / elapsed
        values[TOTAL] = sum(values.values())
        return values

    def _retransmits(self) -> Dict[str, float]:
        tcp = _read_snmp_table(self._proc_root / "net" / "snmp", "Tcp:")
        if "RetransSegs" not in tcp:
            raise CollectionFailure("RetransSegs missing from net/snmp")
        delta = self._delta(NETWORK_RETRANSMITS, tcp["RetransSegs"])
        if delta is None:
            return {}
        elapsed, before, after = delta
        return {TOTAL: max(0, after - before) / elapsed}


def _read_key_values(path: Path) -> Dict[str, int]:
    """Parse ``key value`` lines such as /proc/vmstat or /proc/meminfo."""
    if not path.exists():
        raise CollectionFailure(f"{path} not present")
    values: Dict[str, int] = {}
    for line in path.read_text().splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1].isdigit():
            values[parts[0]] = int(parts[1])
    return values


def _read_snmp_table(path: Path, prefix: str) -> Dict[str, int]:
    """Parse a header/value line pair from /proc/net/snmp."""
    if not path.exists():
        raise CollectionFailure(f"{path} not present")
    rows = [line.split() for line in path.read_text().splitlines() if line.startswith(prefix)]
    if len(rows) < 2:
        raise CollectionFailure(f"{prefix} table missing from {path}")
    header, values = rows[0][1:], rows[1][1:]
    return {name: int(value) for name, value in zip(header, values)}
