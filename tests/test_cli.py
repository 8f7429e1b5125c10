"""Integration tests for the batch_tester command line, run against a local HTTP server."""

import json
import os
import subprocess
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
PYTHON = sys.executable


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path.startswith("/error"):
            self._reply(500, {"error": "boom"})
        else:
            self._reply(200, {"path": self.path, "auth": self.headers.get("Authorization")})

    def _reply(self, status, payload):
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture(scope="module")
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


def _run(args, cwd=ROOT, **kwargs):
    env = {
        k: v for k, v in os.environ.items()
        if not k.startswith("BATCH_TESTER_") and k.lower() not in ("http_proxy", "https_proxy", "all_proxy")
    }
    return subprocess.run(
        [PYTHON, "-m", "batch_tester"] + [str(a) for a in args],
        capture_output=True, text=True, cwd=str(cwd), timeout=30, env=env, **kwargs,
    )


def _write_batch(tmp_path: Path, data) -> Path:
    path = tmp_path / "batch.json"
    path.write_text(json.dumps(data))
    return path


class TestBasics:
    def test_version(self):
        r = _run(["--version"])
        assert r.returncode == 0
        assert "batch_tester" in r.stdout

    def test_tests_required(self):
        assert _run([]).returncode == 2

    def test_missing_file(self, tmp_path):
        r = _run(["--tests", tmp_path / "nope.json"])
        assert r.returncode == 2
        assert "File not found" in r.stderr

    def test_invalid_batch_file(self, tmp_path):
        path = tmp_path / "batch.json"
        path.write_text("{not json")
        assert _run(["--tests", path]).returncode == 2

    def test_invalid_options(self, tmp_path):
        path = _write_batch(tmp_path, [{"name": "a", "url": "http://127.0.0.1:9/"}])
        r = _run(["--tests", path, "--max-concurrent", "50"])
        assert r.returncode == 2
        assert "maxConcurrent" in r.stderr

    def test_self_test(self):
        r = _run(["--self-test"])
        assert r.returncode == 0, r.stdout
        assert "6/6 passed" in r.stdout


class TestRun:
    def test_all_pass_exit_zero(self, server, tmp_path):
        path = _write_batch(tmp_path, [
            {"name": "one", "url": f"{server}/one", "assertions": [{"type": "status", "expected": 200}]},
            {"name": "two", "url": f"{server}/two", "auth": {"type": "bearer", "token": "t0k"},
             "assertions": [{"type": "bodyJsonPath", "path": "$.auth", "expected": "Bearer t0k"}]},
        ])
        r = _run(["--tests", path])
        assert r.returncode == 0, r.stdout + r.stderr
        assert "Batch Test Results" in r.stdout

    def test_failure_exit_one(self, server, tmp_path):
        path = _write_batch(tmp_path, [{"name": "bad", "url": f"{server}/error"}])
        assert _run(["--tests", path, "--quiet"]).returncode == 1

    def test_json_stdout_with_options_object(self, server, tmp_path):
        path = _write_batch(tmp_path, {
            "tests": [{"name": f"t{i}", "url": f"{server}/{i}"} for i in range(4)],
            "options": {"parallel": True, "maxConcurrent": 2},
        })
        r = _run(["--tests", path, "--json"])
        assert r.returncode == 0
        report = json.loads(r.stdout)
        assert report["totalTests"] == 4
        assert report["summary"]["successRate"] == 100.0

    def test_stop_on_failure_flag(self, server, tmp_path):
        path = _write_batch(tmp_path, [
            {"name": "a", "url": f"{server}/a"},
            {"name": "b", "url": f"{server}/error"},
            {"name": "c", "url": f"{server}/c"},
        ])
        r = _run(["--tests", path, "--stop-on-failure", "--json"])
        report = json.loads(r.stdout)
        assert [t["name"] for t in report["results"]] == ["a", "b"]
        assert report["stopped"] is True

    def test_output_file_and_run_log(self, server, tmp_path):
        path = _write_batch(tmp_path, [{"name": "a", "url": f"{server}/a"}])
        out = tmp_path / "report.json"
        log = tmp_path / "run.log"
        r = _run(["--tests", path, "--quiet", "--output", out, "--force-insecure-output", "--run-log", log])
        assert r.returncode == 0
        assert json.loads(out.read_text())["successfulTests"] == 1
        events = [json.loads(line)["event"] for line in log.read_text().splitlines()]
        assert events[0] == "batch_start" and events[-1] == "batch_end"

    def test_env_file_settings(self, server, tmp_path):
        env = tmp_path / ".env"
        log = tmp_path / "from-env.log"
        env.write_text(f"BATCH_TESTER_RUN_LOG={log}\n")
        path = _write_batch(tmp_path, [{"name": "a", "url": f"{server}/a"}])
        assert _run(["--tests", path, "--quiet", "--env", env]).returncode == 0
        assert log.exists()
