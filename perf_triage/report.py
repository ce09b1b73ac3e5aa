"""Run-scoped accumulation, report finalization and text rendering."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .diagnostics import BottleneckRecord, group_by_impact
from .formatting import format_bytes, format_value, render_table, section
from .logger import get_logger
from .modes import Mode
from .system_info import SystemIdentity
from .system_state import DomainSnapshot

log = get_logger("Report")

TOOL_NAME = "perf-triage"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class RunState:
    """Mutable accumulator for a single run; finalized into a DiagnosticReport."""

    def __init__(self, mode: Mode, started_at: datetime) -> None:
        self.mode = mode
        self.started_at = started_at
        self.identity: Optional[SystemIdentity] = None
        self.snapshots: List[DomainSnapshot] = []
        self.findings: List[BottleneckRecord] = []
        self.failures: List[str] = []

    def record(self, snapshot: DomainSnapshot, findings: Sequence[BottleneckRecord]) -> None:
        self.snapshots.append(snapshot)
        self.findings.extend(findings)
        for finding in findings:
            log.info("Finding [{}] {}", finding.impact.label, finding.describe())

    def fail(self, collector: str, detail: str) -> None:
        self.failures.append(f"{collector}: {detail}")

    def gaps(self) -> List[str]:
        gaps = [gap for snapshot in self.snapshots for gap in snapshot.gaps]
        return gaps + list(self.failures)


@dataclass(frozen=True)
class DiagnosticReport:
    tool_name: str
    mode: Mode
    identity: Optional[SystemIdentity]
    snapshots: Tuple[DomainSnapshot, ...]
    findings: Tuple[BottleneckRecord, ...]
    gaps: Tuple[str, ...]
    started_at: datetime
    finished_at: datetime
    artifact_path: Path
    complete: bool = True

    @property
    def healthy(self) -> bool:
        return not self.findings


def artifact_path(output_dir: Path, started_at: datetime) -> Path:
    return Path(output_dir) / f"{TOOL_NAME}-{started_at:%Y%m%d-%H%M%S}.txt"


def finalize(
    state: RunState,
    output_dir: Path,
    finished_at: Optional[datetime] = None,
    complete: bool = True,
) -> DiagnosticReport:
    return DiagnosticReport(
        tool_name=TOOL_NAME,
        mode=state.mode,
        identity=state.identity,
        snapshots=tuple(state.snapshots),
        findings=tuple(state.findings),
        gaps=tuple(state.gaps()),
        started_at=state.started_at,
        finished_at=finished_at or datetime.now(),
        artifact_path=artifact_path(output_dir, state.started_at),
        complete=complete,
    )


def render_identity(identity: Optional[SystemIdentity]) -> List[str]:
    if identity is None:
        return ["System identity was not collected."]
    return [
        f"Host name: {identity.hostname}",
        f"Operating system: {identity.os_name} {identity.os_release}",
        f"OS build: {identity.os_build}",
        f"Architecture: {identity.architecture}",
        f"CPU model: {identity.cpu_model}",
        f"CPU cores: {identity.physical_cpus} physical / {identity.logical_cpus} logical",
        f"Total memory: {format_bytes(identity.total_memory_bytes)}",
        f"Boot time: {identity.boot_time:{TIMESTAMP_FORMAT}}",
        f"Cloud instance: {identity.cloud.describe()}",
    ]


def render_findings(findings: Sequence[BottleneckRecord]) -> List[str]:
    if not findings:
        return ["No bottlenecks detected. The system looks healthy."]
    lines: List[str] = []
    for level, records in group_by_impact(findings).items():
        if not records:
            continue
        lines.append(f"{level.label} ({len(records)})")
        for record in records:
            lines.append(f"  - [{record.category}] {record.describe()} at {record.detected_at:{TIMESTAMP_FORMAT}}")
    return lines


def render_snapshot(snapshot: DomainSnapshot) -> List[str]:
    lines = [section(snapshot.domain.value)]
    if snapshot.metrics:
        rows = [
            [metric, instance, format_value(value)]
            for (metric, instance), value in sorted(snapshot.metrics.items())
        ]
        lines.append(render_table(["Metric", "Instance", "Average"], rows))
    for table in snapshot.tables:
        lines.append("")
        lines.append(f"{table.title}:")
        lines.append(render_table(table.headers, table.rows) if table.rows else "(no data)")
    for note in snapshot.notes:
        lines.append(f"Note: {note}")
    lines.append("")
    return lines


def render_report(report: DiagnosticReport) -> str:
    """Serialize a finalized report; the same report always renders to the same text."""
    status = "complete" if report.complete else "INCOMPLETE (run aborted by operator)"
    lines = [
        section(f"{report.tool_name} diagnostic report"),
        f"Status: {status}",
        f"Mode: {report.mode.value}",
        f"Started: {report.started_at:{TIMESTAMP_FORMAT}}",
        f"Finished: {report.finished_at:{TIMESTAMP_FORMAT}}",
        f"Artifact: {report.artifact_path}",
        f"Findings: {len(report.findings)}",
        "",
        section("System"),
        *render_identity(report.identity),
        "",
        section("Findings"),
        *render_findings(report.findings),
        "",
    ]
    for snapshot in report.snapshots:
        lines.extend(render_snapshot(snapshot))
    lines.append(section("Collection gaps"))
    if report.gaps:
        lines.extend(f"- {gap} (no evidence collected)" for gap in report.gaps)
    else:
        lines.append("None")
    return "\n".join(lines) + "\n"


def render_support_body(report: DiagnosticReport) -> str:
    """Short case body: who the host is and what was found."""
    lines = [
        f"Automated {report.tool_name} run ({report.mode.value}) found {len(report.findings)} potential bottleneck(s).",
        "",
        *render_identity(report.identity),
        "",
        *render_findings(report.findings),
        "",
        f"The full report is attached as {report.artifact_path.name}.",
    ]
    return "\n".join(lines)


def write_report(report: DiagnosticReport) -> Path:
    path = report.artifact_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(report), encoding="utf-8")
    log.info("Report written to {}", path)
    return path


def report_to_dict(report: DiagnosticReport) -> Dict[str, Any]:
    identity = report.identity
    return {
        "tool": report.tool_name,
        "mode": report.mode.value,
        "complete": report.complete,
        "started_at": report.started_at.isoformat(),
        "finished_at": report.finished_at.isoformat(),
        "artifact_path": str(report.artifact_path),
        "identity": None
        if identity is None
        else {
            "hostname": identity.hostname,
            "os": f"{identity.os_name} {identity.os_release}",
            "os_build": identity.os_build,
            "architecture": identity.architecture,
            "cpu_model": identity.cpu_model,
            "logical_cpus": identity.logical_cpus,
            "physical_cpus": identity.physical_cpus,
            "total_memory_bytes": identity.total_memory_bytes,
            "boot_time": identity.boot_time.isoformat(),
            "cloud": {"status": identity.cloud.status.value, "detail": identity.cloud.describe()},
        },
        "findings": [
            {
                "category": f.category,
                "issue": f.issue,
                "instance": f.instance,
                "observed": f.observed,
                "threshold": f.threshold,
                "impact": f.impact.label,
                "detected_at": f.detected_at.isoformat(),
            }
            for f in report.findings
        ],
        "domains": {
            s.domain.value: {
                "metrics": [
                    {"metric": metric, "instance": instance, "value": value}
                    for (metric, instance), value in sorted(s.metrics.items())
                ],
                "notes": list(s.notes),
            }
            for s in report.snapshots
        },
        "gaps": list(report.gaps),
    }
