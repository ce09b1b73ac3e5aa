from datetime import datetime

import psutil
import pytest

from perf_triage.config import RunOptions, Settings
from perf_triage.diagnostics import classify
from perf_triage.errors import CollectionFailure, PrivilegeFailure
from perf_triage.modes import CollectorId, Mode, plan_for
from perf_triage.results import Outcome
from perf_triage.runner import RunInterrupted, run_diagnostics
from perf_triage.system_state import Domain, DomainSnapshot, SnapshotBuilder

STARTED = datetime(2026, 10, 19, 9, 0, 0)
DOMAINS = {
    CollectorId.DISK: Domain.DISK,
    CollectorId.CPU: Domain.CPU,
    CollectorId.MEMORY: Domain.MEMORY,
    CollectorId.NETWORK: Domain.NETWORK,
    CollectorId.DATABASE: Domain.DATABASE,
    CollectorId.STORAGE: Domain.STORAGE,
    CollectorId.DISK_BENCHMARK: Domain.DISK_BENCHMARK,
}


class RecordingSubmitter:
    def __init__(self):
        self.calls = []

    def submit(self, **kwargs):
        self.calls.append(kwargs)
        return Outcome.ok("case-9")


def make_steps(calls, snapshots=None, failures=None):
    """One recording step per collector; ``failures`` maps an id to the exception it raises."""
    snapshots = snapshots or {}
    failures = failures or {}

    def make_step(collector_id):
        def step(ctx, state):
            calls.append(collector_id)
            if collector_id in failures:
                raise failures[collector_id]
            if collector_id in DOMAINS:
                snapshot = snapshots.get(collector_id, DomainSnapshot(DOMAINS[collector_id]))
                state.record(snapshot, classify(snapshot, STARTED))

        return step

    return {collector_id: make_step(collector_id) for collector_id in CollectorId}


def run(tmp_path, mode=Mode.QUICK, steps=None, submitter=None, create_case=False, privilege_check=lambda: None):
    options = RunOptions(mode=mode, output_path=tmp_path, create_support_case=create_case)
    return run_diagnostics(
        options,
        Settings(),
        submitter=submitter,
        collectors=steps if steps is not None else make_steps([]),
        privilege_check=privilege_check,
        clock=lambda: STARTED,
    )


def low_memory():
    builder = SnapshotBuilder(Domain.MEMORY)
    builder.set("available_percent", 3.0)
    return builder.build()


@pytest.mark.parametrize("mode", list(Mode))
def test_mode_runs_exactly_its_collectors(tmp_path, mode):
    calls = []
    run(tmp_path, mode=mode, steps=make_steps(calls))
    assert tuple(calls) == plan_for(mode).collectors


def test_cpu_only_runs_no_disk_or_memory(tmp_path):
    calls = []
    result = run(tmp_path, mode=Mode.CPU_ONLY, steps=make_steps(calls))
    assert calls == [CollectorId.SYSTEM_INFO, CollectorId.CPU]
    assert [s.domain for s in result.report.snapshots] == [Domain.CPU]


@pytest.mark.parametrize(
    "failure",
    [
        CollectionFailure("counter missing"),
        psutil.AccessDenied(),
        PermissionError("denied"),
        ValueError("invalid literal for int() with base 10: ''"),
        KeyError("blockdevices"),
    ],
)
def test_collector_failure_does_not_abort_run(tmp_path, failure):
    calls = []
    result = run(tmp_path, steps=make_steps(calls, failures={CollectorId.DISK: failure}))
    assert calls == list(plan_for(Mode.QUICK).collectors)
    assert result.report.complete
    assert any(gap.startswith("disk: ") for gap in result.report.gaps)
    assert result.artifact.exists()


def test_privilege_failure_stops_before_collection(tmp_path):
    calls = []

    def not_admin():
        raise PrivilegeFailure("must run as root")

    with pytest.raises(PrivilegeFailure):
        run(tmp_path, steps=make_steps(calls), privilege_check=not_admin)
    assert calls == []
    assert list(tmp_path.iterdir()) == []


def test_interrupt_writes_incomplete_report(tmp_path):
    calls = []
    steps = make_steps(calls, failures={CollectorId.MEMORY: KeyboardInterrupt()})
    with pytest.raises(RunInterrupted) as excinfo:
        run(tmp_path, steps=steps)
    report = excinfo.value.report
    assert not report.complete
    assert [s.domain for s in report.snapshots] == [Domain.DISK, Domain.CPU]
    text = report.artifact_path.read_text(encoding="utf-8")
    assert "INCOMPLETE" in text


def test_healthy_run_skips_support_case(tmp_path):
    submitter = RecordingSubmitter()
    result = run(tmp_path, submitter=submitter, create_case=True)
    assert result.report.healthy
    assert result.submission is None
    assert submitter.calls == []
    assert "The system looks healthy." in result.artifact.read_text(encoding="utf-8")


def test_findings_open_a_case_when_requested(tmp_path):
    submitter = RecordingSubmitter()
    steps = make_steps([], snapshots={CollectorId.MEMORY: low_memory()})
    result = run(tmp_path, steps=steps, submitter=submitter, create_case=True)
    assert [f.issue for f in result.report.findings] == ["Low available memory"]
    assert result.submission.value == "case-9"
    assert submitter.calls[0]["severity"] == "normal"
    assert submitter.calls[0]["attachments"][0][0] == "perf-triage-20261019-090000.txt"


def test_findings_without_request_do_not_submit(tmp_path):
    submitter = RecordingSubmitter()
    steps = make_steps([], snapshots={CollectorId.MEMORY: low_memory()})
    result = run(tmp_path, steps=steps, submitter=submitter)
    assert result.submission is None
    assert submitter.calls == []
    assert result.artifact == tmp_path / "perf-triage-20261019-090000.txt"


def test_unexpected_collector_error_is_reported_as_gap(tmp_path):
    steps = make_steps([], failures={CollectorId.CPU: ValueError("bad sysfs value")})
    result = run(tmp_path, steps=steps)
    assert "cpu: ValueError: bad sysfs value" in result.report.gaps
    assert [s.domain for s in result.report.snapshots] == [Domain.DISK, Domain.MEMORY]
    assert "cpu: ValueError: bad sysfs value" in result.artifact.read_text(encoding="utf-8")
