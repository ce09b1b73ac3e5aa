import pytest

from perf_triage import benchmark
from perf_triage.benchmark import DiskBenchmark, scratch_file
from perf_triage.diagnostics import classify
from perf_triage.errors import CollectionFailure, ConfigurationError
from perf_triage.system_state import Domain

KIB = 1024
MIB = 1024**2


def make_benchmark(block_sizes=(64 * KIB, MIB)):
    bench = DiskBenchmark(size_gb=1, block_sizes=block_sizes, sample_mb=1)
    bench.size_bytes = 4 * MIB
    return bench


def leftovers(directory):
    return sorted(p.name for p in directory.iterdir())


def test_scratch_file_is_preallocated_and_removed(tmp_path):
    with scratch_file(tmp_path, 2 * MIB) as path:
        assert path.stat().st_size == 2 * MIB
        assert path.parent.name.startswith("perf-triage-")
    assert leftovers(tmp_path) == []


def test_run_reports_throughput_per_block_size(tmp_path):
    snapshot = make_benchmark().run(tmp_path)
    assert snapshot.domain is Domain.DISK_BENCHMARK
    for label in ("64K", "1M"):
        for metric in ("write_mb_per_sec", "read_mb_per_sec", "write_iops", "read_latency_ms"):
            assert snapshot.value(metric, label) > 0
    table = snapshot.tables[0]
    assert [row[:2] for row in table.rows] == [("64K", "write"), ("64K", "read"), ("1M", "write"), ("1M", "read")]
    assert classify(snapshot) == []
    assert leftovers(tmp_path) == []


@pytest.mark.parametrize("failure", [RuntimeError("boom"), KeyboardInterrupt()])
def test_scratch_removed_when_interrupted(tmp_path, monkeypatch, failure):
    def explode(path, block_size, volume):
        raise failure

    monkeypatch.setattr(benchmark, "_measure_read", explode)
    with pytest.raises(type(failure)):
        make_benchmark().measure(tmp_path)
    assert leftovers(tmp_path) == []


def test_io_errors_become_collection_failures(tmp_path, monkeypatch):
    def disk_full(path, block_size, volume):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(benchmark, "_measure_write", disk_full)
    with pytest.raises(CollectionFailure):
        make_benchmark().measure(tmp_path)
    assert leftovers(tmp_path) == []


def test_cleanup_failure_is_logged_not_raised(tmp_path, monkeypatch):
    def refuse(path):
        raise PermissionError("locked")

    monkeypatch.setattr(benchmark.shutil, "rmtree", refuse)
    with scratch_file(tmp_path, MIB) as path:
        assert path.exists()


@pytest.mark.parametrize("size_gb", [0, 2, 1000])
def test_rejects_unsupported_sizes(size_gb):
    with pytest.raises(ConfigurationError):
        DiskBenchmark(size_gb=size_gb, block_sizes=(MIB,))


def test_requires_block_sizes():
    with pytest.raises(ConfigurationError):
        DiskBenchmark(size_gb=1, block_sizes=())
