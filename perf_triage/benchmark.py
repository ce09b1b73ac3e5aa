"""Active sequential read/write benchmark against a scratch file."""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence

from .config import DISK_TEST_SIZES_GB
from .errors import CleanupFailure, CollectionFailure, ConfigurationError
from .formatting import format_block_size
from .logger import get_logger
from .system_state import Domain, DomainSnapshot, SnapshotBuilder

log = get_logger("DiskBenchmark")

GIB = 1024**3
MIB = 1024**2


@dataclass(frozen=True)
class BenchmarkResult:
    operation: str
    block_size: int
    mb_per_sec: float
    iops: float
    latency_ms: float


@contextmanager
def scratch_file(directory: Path, size_bytes: int) -> Iterator[Path]:
    """Own a preallocated scratch file inside a private directory.

    Both are removed when the block exits, however it exits.
    """
    workdir = Path(tempfile.mkdtemp(prefix="perf-triage-", dir=str(directory)))
    path = workdir / "scratch.dat"
    try:
        with open(path, "wb") as handle:
            if hasattr(os, "posix_fallocate"):
                os.posix_fallocate(handle.fileno(), 0, size_bytes)
            else:
                handle.truncate(size_bytes)
        yield path
    finally:
        _release(workdir)


def _release(workdir: Path) -> None:
    try:
        shutil.rmtree(workdir)
    except OSError as exc:
        failure = CleanupFailure(f"could not remove {workdir}: {exc}")
        log.warning("{}", failure)
    else:
        log.debug("Removed scratch directory {}", workdir)


def _measure_write(path: Path, block_size: int, volume: int) -> BenchmarkResult:
    buffer = os.urandom(block_size)
    ops = max(1, volume // block_size)
    with open(path, "r+b", buffering=0) as handle:
        start = time.perf_counter()
        for _ in range(ops):
            handle.write(buffer)
        os.fsync(handle.fileno())
        elapsed = time.perf_counter() - start
    return _result("write", block_size, ops, elapsed)


def _measure_read(path: Path, block_size: int, volume: int) -> BenchmarkResult:
    ops = max(1, volume // block_size)
    with open(path, "rb", buffering=0) as handle:
        if hasattr(os, "posix_fadvise"):
            os.posix_fadvise(handle.fileno(), 0, 0, os.POSIX_FADV_DONTNEED)
        start = time.perf_counter()
        for _ in range(ops):
            if not handle.read(block_size):
                handle.seek(0)
        elapsed = time.perf_counter() - start
    return _result("read", block_size, ops, elapsed)


def _result(operation: str, block_size: int, ops: int, elapsed: float) -> BenchmarkResult:
    elapsed = max(elapsed, 1e-9)
    return BenchmarkResult(
        operation=operation,
        block_size=block_size,
        mb_per_sec=ops * block_size / MIB / elapsed,
        iops=ops / elapsed,
        latency_ms=elapsed / ops * 1000.0,
    )


class DiskBenchmark:
    def __init__(self, size_gb: int, block_sizes: Sequence[int], sample_mb: int = 100) -> None:
        if size_gb not in DISK_TEST_SIZES_GB:
            raise ConfigurationError(f"Unsupported disk test size {size_gb} GB")
        if not block_sizes:
            raise ConfigurationError("At least one benchmark block size is required")
        self.size_gb = size_gb
        self.size_bytes = size_gb * GIB
        self.block_sizes = tuple(block_sizes)
        self.sample_bytes = sample_mb * MIB

    def measure(self, directory: Path) -> List[BenchmarkResult]:
        volume = min(self.sample_bytes, self.size_bytes)
        results: List[BenchmarkResult] = []
        log.info(
            "Benchmarking {} with a {} GB scratch file, blocks {}",
            directory,
            self.size_gb,
            ", ".join(format_block_size(b) for b in self.block_sizes),
        )
        try:
            with scratch_file(directory, self.size_bytes) as path:
                for block_size in self.block_sizes:
                    results.append(_measure_write(path, block_size, volume))
                    results.append(_measure_read(path, block_size, volume))
        except OSError as exc:
            raise CollectionFailure(f"disk benchmark failed: {exc}") from exc
        return results

    def run(self, directory: Path) -> DomainSnapshot:
        builder = SnapshotBuilder(Domain.DISK_BENCHMARK)
        results = self.measure(directory)
        for result in results:
            label = format_block_size(result.block_size)
            builder.set(f"{result.operation}_mb_per_sec", result.mb_per_sec, instance=label)
            builder.set(f"{result.operation}_iops", result.iops, instance=label)
            builder.set(f"{result.operation}_latency_ms", result.latency_ms, instance=label)
        builder.table(
            "Sequential throughput",
            ["Block", "Operation", "MB/s", "IOPS", "Avg latency (ms)"],
            [
                [
                    format_block_size(r.block_size),
                    r.operation,
                    f"{r.mb_per_sec:.1f}",
                    f"{r.iops:.0f}",
                    f"{r.latency_ms:.3f}",
                ]
                for r in results
            ],
        )
        builder.note(f"Scratch file {self.size_gb} GB in {directory}, {self.sample_bytes // MIB} MB per block size")
        return builder.build()
