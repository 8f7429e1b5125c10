"""CLI entry point: python -m batch_tester.

Usage:
    python -m batch_tester --tests batch.json
    python -m batch_tester --tests batch.json --parallel --max-concurrent 4
    python -m batch_tester --tests batch.json --output report.json
    python -m batch_tester --self-test
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from batch_tester.errors import ConfigError


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="batch_tester",
        description="HTTP API batch tester: runs declarative request tests and checks their assertions.",
    )
    p.add_argument("--tests", type=Path, help="Batch file: a list of tests or {\"tests\": [...], \"options\": {...}}")
    p.add_argument("--parallel", action="store_true", default=None, help="Run tests concurrently")
    p.add_argument("--max-concurrent", type=int, metavar="N", help="Parallel in-flight bound (1-10)")
    p.add_argument("--stop-on-failure", action="store_true", default=None, help="Stop scheduling after a failure")
    p.add_argument("--delay-between", type=float, metavar="MS", help="Delay between test starts in ms")
    p.add_argument("--timeout", type=float, metavar="MS", help="Per-request timeout in ms")
    p.add_argument("--retry-attempts", type=int, metavar="N",
                   help="Re-run failed tests up to N times (transport errors and 5xx only)")
    p.add_argument("--executor-retries", type=int, metavar="N", help="Per-request retries for transport errors/5xx")
    p.add_argument("--output", type=Path, help="Write JSON report to file")
    p.add_argument("--json", action="store_true", help="Print JSON report to stdout")
    p.add_argument("--force-insecure-output", action="store_true", help="Skip file permission check")
    p.add_argument("--env", type=Path, help="Path to .env file with BATCH_TESTER_* settings")
    p.add_argument("--run-log", type=Path, help="Append JSON-lines run events to this file")
    p.add_argument("--quiet", "-q", action="store_true", help="Suppress table output, only exit code")
    p.add_argument("--self-test", action="store_true", help="Run engine self-test suite")
    p.add_argument("--version", action="store_true", help="Show version and exit")
    return p


def load_batch_file(path: Path) -> tuple[list, dict]:
    """Read a batch file. Returns (tests, options)."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    try:
        data = json.loads(path.read_text())
    except ValueError as exc:
        raise ConfigError(f"{path}: invalid JSON: {exc}") from None
    if isinstance(data, list):
        return data, {}
    if isinstance(data, dict) and isinstance(data.get("tests"), list):
        options = data.get("options") or {}
        if not isinstance(options, dict):
            raise ConfigError(f"{path}: options must be an object")
        return data["tests"], dict(options)
    raise ConfigError(f"{path}: expected a list of tests or an object with a \"tests\" list")


def merge_cli_options(options: dict, args: argparse.Namespace, settings) -> dict:
    """Layer settings defaults, then file options, then explicit CLI flags."""
    merged = {
        "timeout": settings.timeout_ms,
        "maxConcurrent": settings.max_concurrent,
        "retryDelay": settings.retry_delay_ms,
        **options,
    }
    flags = {
        "parallel": args.parallel,
        "maxConcurrent": args.max_concurrent,
        "stopOnFailure": args.stop_on_failure,
        "delayBetween": args.delay_between,
        "timeout": args.timeout,
        "retryAttempts": args.retry_attempts,
        "executorRetryAttempts": args.executor_retries,
    }
    merged.update({k: v for k, v in flags.items() if v is not None})
    if args.retry_attempts:
        merged["retryOnFailure"] = True
    return merged


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    console = Console(quiet=args.quiet)

    if args.version:
        from batch_tester import __version__
        console.print(f"batch_tester {__version__}")
        return 0

    if args.self_test:
        from batch_tester.self_test import run_self_test
        ok = asyncio.run(run_self_test(console))
        return 0 if ok else 1

    if not args.tests:
        console.print("[red]--tests is required (or use --self-test)[/red]")
        return 2

    from batch_tester.config import load_settings
    from batch_tester.orchestrator import BatchOrchestrator
    from batch_tester.output import render_table, report_json, write_json
    from batch_tester.run_log import RunLog

    try:
        settings = load_settings(args.env)
        tests, file_options = load_batch_file(args.tests)
        options = merge_cli_options(file_options, args, settings)
        orchestrator = BatchOrchestrator(
            run_log=RunLog(args.run_log or settings.run_log),
            retry_backoff_ms=settings.retry_backoff_ms,
        )
        report = asyncio.run(orchestrator.run_batch(tests, options))
    except ConfigError as exc:
        Console(stderr=True).print(f"[red]{exc}[/red]")
        return 2
    except KeyboardInterrupt:
        Console(stderr=True).print("[yellow]Interrupted[/yellow]")
        return 130

    if not report.results:
        if not args.quiet:
            console.print("[yellow]No tests to run.[/yellow]")
        return 0

    if not args.quiet and not args.json:
        render_table(report, console)

    if args.json:
        print(report_json(report))

    if args.output:
        if not write_json(report, args.output, force_insecure=args.force_insecure_output, console=console):
            return 2

    return 1 if report.failed_tests else 0


if __name__ == "__main__":
    sys.exit(main())
