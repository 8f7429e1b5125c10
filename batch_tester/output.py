"""Output formatting: canonical JSON report + Rich table rendering."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from batch_tester.models import BatchReport, BatchTestResult
from batch_tester.security import check_output_permissions, redact_url


def _status_cell(result: BatchTestResult) -> Text:
    if result.status is None:
        return Text("—", style="dim red")
    label = f"{result.status} {result.status_text or ''}".rstrip()
    if result.status >= 500:
        return Text(label, style="red bold")
    if result.status >= 400:
        return Text(label, style="yellow")
    return Text(label, style="green" if result.success else "magenta")


def render_table(report: BatchReport, console: Optional[Console] = None) -> None:
    """Print a Rich table of per-test results followed by a summary line."""
    console = console or Console()
    table = Table(title="Batch Test Results", show_lines=True)
    table.add_column("Test", style="cyan")
    table.add_column("Method")
    table.add_column("URL", overflow="fold")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Assertions", justify="right")
    table.add_column("Result / Error")

    for r in report.results:
        assertions = ""
        if r.assertion_summary is not None:
            assertions = f"{r.assertion_summary.passed}/{r.assertion_summary.total}"
        outcome = Text("PASS", style="green") if r.success else Text(r.error or "FAIL", style="red")
        if r.attempts > 1:
            outcome.append(f" ({r.attempts} attempts)", style="dim")
        table.add_row(
            r.name,
            r.method,
            redact_url(r.url),
            _status_cell(r),
            f"{r.duration_ms:.0f}ms",
            assertions,
            outcome,
        )
    console.print(table)

    s = report.summary
    passed = f"[green]{report.successful_tests}[/green]" if report.successful_tests else "0"
    failed = f"[red]{report.failed_tests}[/red]" if report.failed_tests else "0"
    console.print()
    console.print(
        f"  [bold]Summary:[/bold] {report.total_tests} tests, {passed} passed, {failed} failed "
        f"({s.success_rate:.1f}%)"
    )
    parts = [f"avg {s.avg_duration:.0f}ms", f"min {s.min_duration:.0f}ms", f"max {s.max_duration:.0f}ms"]
    if s.assertion_totals is not None:
        parts.append(f"assertions {s.assertion_totals.passed}/{s.assertion_totals.total}")
    parts.append(f"total {report.total_duration_ms:.0f}ms")
    if report.cancelled:
        parts.append("[red]cancelled[/red]")
    elif report.stopped:
        parts.append("[yellow]stopped on failure[/yellow]")
    console.print(f"  [dim]{' · '.join(parts)}[/dim]")
    console.print()


def report_json(report: BatchReport) -> str:
    return json.dumps(report.to_dict(), indent=2, ensure_ascii=False)


def write_json(
    report: BatchReport,
    path: Path,
    force_insecure: bool = False,
    console: Optional[Console] = None,
) -> bool:
    """Write the canonical JSON report. Returns True on success."""
    console = console or Console(stderr=True)
    if not check_output_permissions(path, force=force_insecure):
        console.print(
            f"[red]Refusing to write to {path}: world-readable or linked. "
            f"Use --force-insecure-output to override.[/red]"
        )
        return False
    path.write_text(report_json(report) + "\n")
    console.print(f"[green]Report written to {path}[/green]")
    return True
