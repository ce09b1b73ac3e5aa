"""Drive a diagnostic run: pre-flight, collectors, classification, report, case."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

import psutil

from .benchmark import DiskBenchmark
from .collectors import CollectionContext, collect_cpu, collect_database, collect_disk, collect_memory, collect_network
from .config import RunOptions, Settings
from .counters import PsutilCounterSource
from .diagnostics import classify
from .errors import CollectionFailure, PerfTriageError, PrivilegeFailure
from .logger import get_logger
from .modes import CollectorId, plan_for
from .report import DiagnosticReport, RunState, finalize, write_report
from .results import Outcome
from .sampling import MetricSampler
from .storage import collect_storage
from .support import SupportCaseSubmitter, submit_findings
from .system_info import collect_system_identity
from .system_state import DomainSnapshot

log = get_logger("Runner")

Step = Callable[[CollectionContext, RunState], None]


class RunInterrupted(PerfTriageError):
    """The operator stopped the run; ``report`` is the incomplete artifact."""

    def __init__(self, report: DiagnosticReport) -> None:
        super().__init__(f"run interrupted, partial report at {report.artifact_path}")
        self.report = report


@dataclass(frozen=True)
class RunResult:
    report: DiagnosticReport
    artifact: Path
    submission: Optional[Outcome[str]] = None


def _passive(collect: Callable[[CollectionContext], DomainSnapshot]) -> Step:
    def step(ctx: CollectionContext, state: RunState) -> None:
        snapshot = collect(ctx)
        state.record(snapshot, classify(snapshot))

    return step


def _system_info(ctx: CollectionContext, state: RunState) -> None:
    state.identity = collect_system_identity(ctx.settings)


def _disk_benchmark(ctx: CollectionContext, state: RunState) -> None:
    benchmark = DiskBenchmark(ctx.disk_test_size_gb, ctx.block_sizes, ctx.settings.benchmark_sample_mb)
    snapshot = benchmark.run(ctx.scratch_dir)
    state.record(snapshot, classify(snapshot))


COLLECTORS: Dict[CollectorId, Step] = {
    CollectorId.SYSTEM_INFO: _system_info,
    CollectorId.DISK: _passive(collect_disk),
    CollectorId.CPU: _passive(collect_cpu),
    CollectorId.MEMORY: _passive(collect_memory),
    CollectorId.NETWORK: _passive(collect_network),
    CollectorId.DATABASE: _passive(collect_database),
    CollectorId.STORAGE: _passive(collect_storage),
    CollectorId.DISK_BENCHMARK: _disk_benchmark,
}


def check_privileges() -> None:
    """Counters, sockets and SMART data need an administrator."""
    if os.name == "nt":
        import ctypes

        if not ctypes.windll.shell32.IsUserAnAdmin():
            raise PrivilegeFailure("perf-triage must run from an elevated (Administrator) prompt")
    elif os.geteuid() != 0:
        raise PrivilegeFailure("perf-triage must run as root (try: sudo perf-triage)")


def run_diagnostics(
    options: RunOptions,
    settings: Settings,
    *,
    sampler: Optional[MetricSampler] = None,
    submitter: Optional[SupportCaseSubmitter] = None,
    collectors: Mapping[CollectorId, Step] = COLLECTORS,
    privilege_check: Callable[[], None] = check_privileges,
    clock: Callable[[], datetime] = datetime.now,
) -> RunResult:
    privilege_check()

    plan = plan_for(options.mode)
    ctx = CollectionContext(
        sampler=sampler or MetricSampler(PsutilCounterSource()),
        cadence=plan.cadence,
        settings=settings,
        scratch_dir=Path(options.output_path),
        disk_test_size_gb=options.disk_test_size_gb,
        block_sizes=plan.block_sizes,
    )
    state = RunState(options.mode, clock())
    log.info(
        "Starting {} run: {} every {:g}s x {} ({:g}s per counter)",
        options.mode.value,
        ", ".join(c.value for c in plan.collectors),
        plan.cadence.interval,
        plan.cadence.count,
        plan.cadence.window_seconds,
    )

    try:
        for collector_id in plan.collectors:
            started = time.monotonic()
            try:
                collectors[collector_id](ctx, state)
            except (CollectionFailure, psutil.Error, OSError) as exc:
                log.warning("{} collector failed, continuing: {}", collector_id.value, exc)
                state.fail(collector_id.value, str(exc))
            except Exception as exc:
                log.opt(exception=exc).error("{} collector crashed, continuing", collector_id.value)
                state.fail(collector_id.value, f"{type(exc).__name__}: {exc}")
            log.debug("{} collector finished in {:.1f}s", collector_id.value, time.monotonic() - started)
    except KeyboardInterrupt:
        report = finalize(state, options.output_path, clock(), complete=False)
        write_report(report)
        raise RunInterrupted(report) from None

    report = finalize(state, options.output_path, clock())
    artifact = write_report(report)
    submission = submit_findings(report, submitter, options.severity, settings, options.create_support_case)
    return RunResult(report=report, artifact=artifact, submission=submission)
