"""Entry point for the perf-triage command line tool."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import DISK_TEST_SIZES_GB, SEVERITIES, RunOptions, load_settings
from .diagnostics import group_by_impact
from .errors import ConfigurationError, PrivilegeFailure
from .logger import configure_logging
from .modes import Mode
from .report import DiagnosticReport, report_to_dict
from .results import OutcomeStatus
from .runner import RunInterrupted, RunResult, run_diagnostics
from .sampling import TOTAL
from .support import HttpSupportCaseSubmitter

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130

IMPACT_STYLES = {"Critical": "bold red", "High": "red", "Medium": "yellow", "Low": "cyan"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="perf-triage",
        description="Sample server resource counters, flag bottlenecks and optionally open a support case.",
    )
    parser.add_argument(
        "--mode",
        type=Mode.parse,
        default=Mode.STANDARD,
        help="Quick, Standard, Deep, DiskOnly, CPUOnly or MemoryOnly (default: Standard)",
    )
    parser.add_argument("--create-support-case", action="store_true", help="Open a support case when bottlenecks are found")
    parser.add_argument("--severity", choices=SEVERITIES, default="normal", help="Support case severity")
    parser.add_argument("--output-path", type=Path, default=Path("."), help="Directory for the report file")
    parser.add_argument(
        "--disk-test-size-gb",
        type=int,
        choices=DISK_TEST_SIZES_GB,
        default=1,
        help="Scratch file size for the disk benchmark",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file")
    parser.add_argument("--json", action="store_true", help="Print the finished report as JSON")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console(stderr=args.json)

    try:
        settings = load_settings(args.config)
        options = RunOptions(
            mode=args.mode,
            create_support_case=args.create_support_case,
            severity=args.severity,
            output_path=args.output_path,
            disk_test_size_gb=args.disk_test_size_gb,
        )
    except ConfigurationError as exc:
        console.print(Panel(str(exc), title="Configuration error", style="bold red"))
        return EXIT_FATAL

    configure_logging(args.log_level or settings.log_level, settings.log_file)

    try:
        result = run_diagnostics(options, settings, submitter=HttpSupportCaseSubmitter.from_settings(settings))
    except PrivilegeFailure as exc:
        console.print(Panel(str(exc), title="Insufficient privileges", style="bold red"))
        return EXIT_FATAL
    except RunInterrupted as exc:
        console.print(Panel(f"Run aborted. Partial report: {exc.report.artifact_path}", style="bold yellow"))
        return EXIT_INTERRUPTED

    if args.json:
        print(json.dumps(report_to_dict(result.report), ensure_ascii=False, indent=2))
    _render_rich(console, result, options)
    return EXIT_OK


def _render_rich(console: Console, result: RunResult, options: RunOptions) -> None:
    report = result.report
    console.print(Panel(f"{report.tool_name} - {report.mode.value} run - {report.started_at:%Y-%m-%d %H:%M:%S}", style="bold cyan"))

    if report.identity is not None:
        summary = Table(show_header=False, box=box.ROUNDED)
        summary.add_row("Host", report.identity.hostname)
        summary.add_row("OS", f"{report.identity.os_name} {report.identity.os_release}")
        summary.add_row("CPU", report.identity.cpu_model)
        summary.add_row("Cloud", report.identity.cloud.describe())
        console.print(summary)

    console.print(_findings_table(report))
    if report.gaps:
        console.print(f"[yellow]{len(report.gaps)} counter(s) produced no evidence; see the report.[/yellow]")
    console.print(f"Report: [bold]{result.artifact}[/bold]")

    if report.healthy:
        console.print(Panel("No bottlenecks detected. The system looks healthy.", style="bold green"))
        return
    if not options.create_support_case:
        console.print(
            Panel(
                f"{len(report.findings)} bottleneck(s) found. Rerun with --create-support-case to open a support case.",
                style="bold yellow",
            )
        )
        return
    submission = result.submission
    if submission is None:
        return
    if submission.status is OutcomeStatus.OK:
        message = f"Support case opened: {submission.value}"
        if submission.detail:
            message += f" ({submission.detail})"
        console.print(Panel(message, style="bold green"))
    else:
        console.print(
            Panel(
                f"Diagnostics completed, but the support case was not created: {submission.detail}",
                title="Support case",
                style="bold yellow",
            )
        )


def _findings_table(report: DiagnosticReport) -> Table:
    table = Table(title="Bottlenecks", box=box.SIMPLE_HEAD)
    table.add_column("Impact", style="bold")
    table.add_column("Category")
    table.add_column("Issue")
    table.add_column("Observed", justify="right")
    table.add_column("Threshold", justify="right")

    if not report.findings:
        table.add_row("-", "-", "none", "-", "-")
        return table

    for level, records in group_by_impact(report.findings).items():
        for record in records:
            issue = record.issue if record.instance == TOTAL else f"{record.issue} [{record.instance}]"
            table.add_row(
                f"[{IMPACT_STYLES[level.label]}]{level.label}[/]",
                record.category,
                issue,
                f"{record.observed:.2f}{record.unit}",
                f"{record.threshold:g}{record.unit}",
            )
    return table


if __name__ == "__main__":
    sys.exit(main())
