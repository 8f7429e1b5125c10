"""Tests for batch_tester.models."""

import json
from datetime import datetime, timezone

import pytest

from batch_tester.credentials.bearer import BearerCredential
from batch_tester.errors import ConfigError
from batch_tester.models import (
    Assertion,
    AssertionSummary,
    BatchOptions,
    BatchReport,
    BatchSummary,
    BatchTestResult,
    ResponseBody,
    ResponseRecord,
    TestRequest,
    excerpt,
)


class TestAssertion:
    def test_from_dict(self):
        a = Assertion.from_dict({"type": "bodyJsonPath", "path": "$.id", "expected": 1, "operator": "equals"})
        assert a == Assertion("bodyJsonPath", expected=1, path="$.id", operator="equals")

    def test_unknown_type_rejected(self):
        with pytest.raises(ConfigError, match="Unknown assertion type"):
            Assertion.from_dict({"type": "bogus"})

    def test_unknown_operator_rejected(self):
        with pytest.raises(ConfigError, match="operator"):
            Assertion.from_dict({"type": "header", "path": "x", "operator": "nearly"})

    def test_to_dict_order(self):
        a = Assertion("header", expected="json", path="content-type", operator="contains")
        assert list(a.to_dict()) == ["type", "path", "expected", "operator"]


class TestTestRequest:
    def test_minimal(self):
        t = TestRequest.from_dict({"name": "ping", "url": "http://x/ping"})
        assert t.method == "GET"
        assert t.headers == {}
        assert t.credential is None
        assert t.assertions == ()

    def test_full(self):
        t = TestRequest.from_dict({
            "name": "create",
            "url": "http://x/items",
            "method": "post",
            "headers": {"X-Trace": "1"},
            "body": {"a": 1},
            "params": {"q": "v"},
            "auth": {"type": "bearer", "token": "abc"},
            "assertions": [{"type": "status", "expected": 201}],
            "delay": 50,
        })
        assert t.method == "POST"
        assert t.query_params == {"q": "v"}
        assert t.credential == BearerCredential(token="abc")
        assert t.assertions[0].expected == 201
        assert t.delay_ms == 50

    @pytest.mark.parametrize("data,match", [
        ({"url": "http://x"}, "name"),
        ({"name": "n"}, "url"),
        ({"name": "n", "url": "http://x", "method": "TRACE"}, "unsupported HTTP method"),
        ({"name": "n", "url": "http://x", "delay": 0}, "delay"),
        ({"name": "n", "url": "http://x", "assertions": {"type": "status"}}, "assertions must be a list"),
        ({"name": "n", "url": "http://x", "auth": {"type": "kerberos"}}, "Unknown auth type"),
    ])
    def test_invalid(self, data, match):
        with pytest.raises(ConfigError, match=match):
            TestRequest.from_dict(data)

    def test_to_dict_round_trip(self):
        data = {"name": "n", "url": "http://x", "method": "PUT", "params": {"a": "b"}, "delay": 10}
        assert TestRequest.from_dict(data).to_dict() == data


class TestBatchOptions:
    def test_defaults(self):
        o = BatchOptions.from_dict({})
        assert o == BatchOptions()
        assert o.max_concurrent == 5
        assert o.timeout_ms == 30000
        assert o.retry_delay_ms == 1000

    def test_null_values_use_defaults(self):
        assert BatchOptions.from_dict({"maxConcurrent": None, "parallel": None}) == BatchOptions()

    @pytest.mark.parametrize("data", [
        {"maxConcurrent": 0},
        {"maxConcurrent": 11},
        {"maxConcurrent": 2.5},
        {"delayBetween": -1},
        {"timeout": 0},
        {"retryAttempts": 4},
        {"executorRetryAttempts": 6},
        {"retryDelay": 0},
        {"maxTotalAttempts": 0},
        {"parallel": "yes"},
    ])
    def test_out_of_range(self, data):
        with pytest.raises(ConfigError):
            BatchOptions.from_dict(data)

    def test_effective_max_attempts(self):
        o = BatchOptions(retry_on_failure=True, retry_attempts=2, executor_retry_attempts=1)
        assert o.effective_max_attempts == 6
        capped = BatchOptions(retry_on_failure=True, retry_attempts=2, executor_retry_attempts=1,
                              max_total_attempts=4)
        assert capped.effective_max_attempts == 4

    def test_retry_attempts_ignored_without_retry_on_failure(self):
        assert BatchOptions(retry_attempts=3).effective_max_attempts == 1


class TestResponseBody:
    def test_json(self):
        assert ResponseBody.from_bytes(b'{"a": 1}') == ResponseBody("json", {"a": 1})

    def test_text(self):
        assert ResponseBody.from_bytes(b"hello") == ResponseBody("text", "hello")

    def test_empty_is_text(self):
        assert ResponseBody.from_bytes(b"") == ResponseBody("text", "")

    def test_binary(self):
        body = ResponseBody.from_bytes(b"\xff\xfe\x00")
        assert body.kind == "binary"

    def test_json_as_text_is_compact(self):
        assert ResponseBody("json", {"a": [1, 2]}).as_text() == '{"a":[1,2]}'

    def test_record_header_lookup_is_case_insensitive(self):
        r = ResponseRecord(200, "OK", {"content-type": "text/plain"}, ResponseBody("text", ""))
        assert r.header("Content-Type") == "text/plain"
        assert r.is_success


class TestExcerpt:
    def test_short_unchanged(self):
        assert excerpt("abc") == "abc"

    def test_truncated_with_ellipsis(self):
        assert excerpt("x" * 250) == "x" * 200 + "..."


class TestBatchReport:
    def _report(self, totals=None):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = BatchTestResult(name="t", url="http://x", method="GET", success=True, duration_ms=12.345,
                                 status=200, status_text="OK",
                                 assertion_summary=AssertionSummary(1, 0, 1) if totals else None)
        return BatchReport(
            start_time=start, end_time=start, total_duration_ms=12.3, total_tests=1,
            successful_tests=1, failed_tests=0, results=(result,),
            summary=BatchSummary(100.0, 12.345, 12.345, 12.345, assertion_totals=totals),
        )

    def test_to_dict_field_order(self):
        d = self._report().to_dict()
        assert list(d) == [
            "startTime", "endTime", "totalDuration", "totalTests", "successfulTests",
            "failedTests", "results", "summary", "stopped", "cancelled",
        ]
        assert d["startTime"] == "2024-01-01T00:00:00.000+00:00"

    def test_summary_omits_assertion_totals_when_absent(self):
        assert "totalAssertions" not in self._report().to_dict()["summary"]

    def test_summary_includes_assertion_totals(self):
        summary = self._report(AssertionSummary(1, 0, 1)).to_dict()["summary"]
        assert summary["totalAssertions"] == 1
        assert summary["passedAssertions"] == 1

    def test_json_serializable(self):
        json.dumps(self._report(AssertionSummary(1, 0, 1)).to_dict())
