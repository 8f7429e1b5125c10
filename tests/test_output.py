"""Tests for report output, redaction and the run log."""

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console

from batch_tester.models import AssertionSummary, BatchTestResult
from batch_tester.orchestrator import build_report
from batch_tester.output import render_table, report_json, write_json
from batch_tester.run_log import RunLog
from batch_tester.security import (
    REDACTED,
    check_output_permissions,
    redact_headers,
    redact_text,
    redact_url,
)


def _report():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    results = [
        BatchTestResult(name="list users", url="http://api.test/users?api_key=s3cr3t", method="GET",
                        success=True, duration_ms=12.0, status=200, status_text="OK",
                        assertion_summary=AssertionSummary(2, 0, 2)),
        BatchTestResult(name="broken", url="http://api.test/broken", method="POST", success=False,
                        duration_ms=30.0, status=500, status_text="Internal Server Error",
                        error="HTTP 500 Internal Server Error", attempts=3),
        BatchTestResult(name="offline", url="http://down.test/", method="GET", success=False,
                        duration_ms=5.0, error="ConnectError: refused"),
    ]
    return build_report(now, now, results, stopped=False)


class TestRenderTable:
    def test_renders_rows_and_summary(self):
        console = Console(record=True, width=200)
        render_table(_report(), console)
        text = console.export_text()
        assert "list users" in text
        assert "HTTP 500 Internal Server Error" in text
        assert "(3 attempts)" in text
        assert "3 tests" in text
        assert "assertions 2/2" in text

    def test_urls_redacted(self):
        console = Console(record=True, width=200)
        render_table(_report(), console)
        assert "s3cr3t" not in console.export_text()


class TestWriteJson:
    def test_writes_canonical_report(self, tmp_path: Path):
        path = tmp_path / "report.json"
        assert write_json(_report(), path, force_insecure=True, console=Console(quiet=True))
        data = json.loads(path.read_text())
        assert data["totalTests"] == 3
        assert data["results"][1]["attempts"] == 3
        assert data["summary"]["totalAssertions"] == 2

    def test_refuses_symlink(self, tmp_path: Path):
        target = tmp_path / "target.json"
        target.write_text("")
        link = tmp_path / "link.json"
        link.symlink_to(target)
        assert not write_json(_report(), link, force_insecure=True, console=Console(quiet=True))
        assert target.read_text() == ""

    def test_refuses_world_readable_unless_forced(self, tmp_path: Path):
        path = tmp_path / "report.json"
        path.write_text("")
        os.chmod(path, 0o644)
        assert not check_output_permissions(path)
        assert check_output_permissions(path, force=True)

    def test_report_json_is_stable(self):
        report = _report()
        assert report_json(report) == report_json(report)


class TestRedaction:
    def test_headers(self):
        headers = redact_headers({"Authorization": "Bearer x", "Cookie": "a=b", "Accept": "*/*"})
        assert headers == {"Authorization": REDACTED, "Cookie": REDACTED, "Accept": "*/*"}

    def test_url_query_and_userinfo(self):
        url = redact_url("https://user:pw@api.test/x?token=abc&page=2")
        assert "abc" not in url and "pw" not in url
        assert "page=2" in url

    def test_text(self):
        text = redact_text('Bearer abcdef123 failed; client_secret=hunter2 "password": "pw1234"')
        assert "abcdef123" not in text
        assert "hunter2" not in text
        assert "pw1234" not in text

    def test_plain_words_untouched(self):
        assert redact_text("basic auth is not configured") == "basic auth is not configured"


class TestRunLog:
    def test_memory_only(self):
        log = RunLog()
        log.log("test_end", test="a", status=200, attempt=1, duration_ms=1.234)
        log.flush()
        (entry,) = log.history
        assert entry["status"] == 200
        assert entry["duration_ms"] == 1.23
        assert log.entry_count == 0

    def test_flush_appends_json_lines(self, tmp_path: Path):
        path = tmp_path / "logs" / "run.log"
        log = RunLog(path)
        log.log("batch_start")
        log.log("batch_end", detail="access_token=abc123")
        log.flush()
        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [e["event"] for e in lines] == ["batch_start", "batch_end"]
        assert "abc123" not in lines[1]["detail"]

    def test_rotation(self, tmp_path: Path):
        path = tmp_path / "run.log"
        path.write_text("x" * 20)
        log = RunLog(path)
        log.MAX_SIZE = 10
        log.log("batch_start")
        log.flush()
        assert (tmp_path / "run.log.1").read_text() == "x" * 20
        assert json.loads(path.read_text())["event"] == "batch_start"

    def test_refuses_symlink(self, tmp_path: Path):
        target = tmp_path / "target.log"
        target.write_text("")
        link = tmp_path / "link.log"
        link.symlink_to(target)
        log = RunLog(link)
        log.log("batch_start")
        log.flush()
        assert target.read_text() == ""
