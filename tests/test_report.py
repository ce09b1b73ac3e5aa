import json
from datetime import datetime
from pathlib import Path

from perf_triage.diagnostics import classify
from perf_triage.modes import Mode
from perf_triage.report import (
    RunState,
    artifact_path,
    finalize,
    render_report,
    render_support_body,
    report_to_dict,
    write_report,
)
from perf_triage.results import Outcome
from perf_triage.system_info import SystemIdentity
from perf_triage.system_state import Domain, DomainSnapshot, SnapshotBuilder

STARTED = datetime(2026, 10, 19, 14, 5, 9)
FINISHED = datetime(2026, 10, 19, 14, 6, 0)


def make_identity(cloud=None):
    return SystemIdentity(
        hostname="db01",
        os_name="Linux",
        os_release="6.1.0",
        os_build="#1 SMP",
        architecture="x86_64",
        cpu_model="Example CPU @ 3.00GHz",
        logical_cpus=8,
        physical_cpus=4,
        total_memory_bytes=16 * 1024**3,
        boot_time=datetime(2026, 10, 1, 8, 0, 0),
        cloud=cloud or Outcome.unavailable("timed out"),
    )


def make_state(*snapshots):
    state = RunState(Mode.STANDARD, STARTED)
    state.identity = make_identity()
    for snapshot in snapshots:
        state.record(snapshot, classify(snapshot, STARTED))
    return state


def memory_and_cpu():
    memory = SnapshotBuilder(Domain.MEMORY)
    memory.set("available_percent", 5.0)
    memory.set("page_faults_per_sec", 2500.0)
    cpu = SnapshotBuilder(Domain.CPU)
    cpu.set("utilization_percent", 92.5)
    cpu.gap("cpu/clock_throttle")
    return memory.build(), cpu.build()


def test_artifact_name_embeds_start_time(tmp_path):
    assert artifact_path(tmp_path, STARTED) == tmp_path / "perf-triage-20261019-140509.txt"


def test_finalize_collects_findings_and_gaps(tmp_path):
    state = make_state(*memory_and_cpu())
    state.fail("network", "psutil.AccessDenied")
    report = finalize(state, tmp_path, FINISHED)
    assert [f.issue for f in report.findings] == ["Low available memory", "High page fault rate", "High CPU utilization"]
    assert report.gaps == ("cpu/clock_throttle", "network: psutil.AccessDenied")
    assert not report.healthy
    assert report.complete


def test_findings_rendered_critical_first(tmp_path):
    text = render_report(finalize(make_state(*memory_and_cpu()), tmp_path, FINISHED))
    critical = text.index("Critical (1)")
    high = text.index("High (1)")
    medium = text.index("Medium (1)")
    assert critical < high < medium
    assert "Low (" not in text
    assert "  - [Memory] Low available memory: 5.00% (threshold 10%) at 2026-10-19 14:05:09" in text
    assert "- cpu/clock_throttle (no evidence collected)" in text


def test_rendering_is_deterministic(tmp_path):
    report = finalize(make_state(*memory_and_cpu()), tmp_path, FINISHED)
    assert render_report(report) == render_report(report)


def test_healthy_report(tmp_path):
    report = finalize(make_state(DomainSnapshot(Domain.DISK)), tmp_path, FINISHED)
    text = render_report(report)
    assert report.healthy
    assert "No bottlenecks detected. The system looks healthy." in text
    assert "Status: complete" in text
    assert text.rstrip().endswith("None")


def test_incomplete_report_is_marked(tmp_path):
    report = finalize(make_state(), tmp_path, FINISHED, complete=False)
    assert "Status: INCOMPLETE (run aborted by operator)" in render_report(report)


def test_write_report_matches_rendered_text(tmp_path):
    report = finalize(make_state(*memory_and_cpu()), tmp_path / "out", FINISHED)
    path = write_report(report)
    assert path == report.artifact_path
    assert path.read_text(encoding="utf-8") == render_report(report)


def test_identity_section(tmp_path):
    text = render_report(finalize(make_state(), tmp_path, FINISHED))
    assert "Host name: db01" in text
    assert "Total memory: 16.0 GiB" in text
    assert "Cloud instance: not available" in text


def test_support_body_mentions_attachment():
    report = finalize(make_state(*memory_and_cpu()), Path("reports"), FINISHED)
    body = render_support_body(report)
    assert body.startswith("Automated perf-triage run (standard) found 3 potential bottleneck(s).")
    assert body.endswith("attached as perf-triage-20261019-140509.txt.")


def test_report_to_dict_is_json_serializable(tmp_path):
    report = finalize(make_state(*memory_and_cpu()), tmp_path, FINISHED)
    payload = json.loads(json.dumps(report_to_dict(report)))
    assert payload["mode"] == "standard"
    assert payload["identity"]["cloud"]["status"] == "unavailable"
    assert payload["findings"][0]["impact"] == "Critical"
    assert payload["gaps"] == ["cpu/clock_throttle"]
