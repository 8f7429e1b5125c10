"""Tests for AssertionEngine."""

import re

import pytest

from batch_tester.assertions import AssertionEngine, stable_json, validate
from batch_tester.models import Assertion, RequestMetrics, ResponseBody, ResponseRecord


def _response(body=None, status=200, headers=None, duration_ms=50.0, text=None):
    if text is not None:
        content = ResponseBody("text", text)
    else:
        content = ResponseBody("json", body if body is not None else {})
    metrics = RequestMetrics(start_time=0.0, duration_ms=duration_ms) if duration_ms is not None else None
    return ResponseRecord(status, "OK", {k.lower(): v for k, v in (headers or {}).items()}, content, metrics)


def _check(response, **assertion):
    return AssertionEngine().evaluate(response, Assertion(**assertion))


USER = {"user": {"id": 7, "name": "Ada", "tags": ["a", "b"], "active": True}, "items": [{"n": 1}, {"n": 2}]}


class TestStatus:
    def test_match(self):
        assert _check(_response(status=201), type="status", expected=201).passed

    def test_numeric_string(self):
        assert _check(_response(status=201), type="status", expected="201").passed

    def test_mismatch(self):
        r = _check(_response(status=500), type="status", expected=200)
        assert not r.passed
        assert r.actual == 500
        assert "500" in r.error


class TestHeader:
    def test_equals_case_insensitive_name(self):
        resp = _response(headers={"X-Request-Id": "abc"})
        assert _check(resp, type="header", path="x-request-id", expected="abc").passed
        assert _check(resp, type="header", path="X-REQUEST-ID", expected="abc").passed

    def test_contains(self):
        resp = _response(headers={"Cache-Control": "no-cache, private"})
        assert _check(resp, type="header", path="cache-control", expected="private", operator="contains").passed

    def test_missing_header(self):
        r = _check(_response(), type="header", path="X-Missing", expected="x")
        assert not r.passed
        assert r.error == "Header X-Missing not found"

    def test_missing_path_is_assertion_error(self):
        r = _check(_response(headers={"a": "b"}), type="header", expected="b")
        assert not r.passed
        assert "requires a path" in r.error


class TestBody:
    def test_equals_json_compact(self):
        assert _check(_response({"a": 1}), type="body", expected={"a": 1}).passed

    def test_equals_text(self):
        assert _check(_response(text="pong"), type="body", expected="pong").passed

    def test_contains(self):
        assert _check(_response(text="hello world"), type="body", expected="world", operator="contains").passed

    def test_contains_and_not_contains(self):
        resp = _response(text="status: ok")
        assert _check(resp, type="contains", expected="ok").passed
        assert _check(resp, type="notContains", expected="error").passed
        assert not _check(resp, type="notContains", expected="ok").passed

    def test_actual_is_truncated(self):
        r = _check(_response(text="x" * 500), type="contains", expected="y")
        assert not r.passed
        assert r.actual == "x" * 200 + "..."


class TestMatches:
    def test_search_not_fullmatch(self):
        assert _check(_response(text="id=12345;"), type="matches", expected=r"\d{5}").passed

    def test_compiled_pattern(self):
        assert _check(_response(text="ABC"), type="matches", expected=re.compile("abc", re.I)).passed

    def test_invalid_regex_fails_not_raises(self):
        r = _check(_response(text="x"), type="matches", expected="(unclosed")
        assert not r.passed
        assert "Invalid regular expression" in r.error


class TestJsonPath:
    @pytest.mark.parametrize("path,expected", [
        ("$.user.id", 7),
        ("$.user.name", "Ada"),
        ("$.user.tags", ["a", "b"]),
        ("$.user.active", True),
        ("$.items[1].n", 2),
    ])
    def test_equals(self, path, expected):
        assert _check(_response(USER), type="bodyJsonPath", path=path, expected=expected).passed

    def test_deep_equality_ignores_key_order(self):
        assert _check(_response({"o": {"a": 1, "b": 2}}), type="bodyJsonPath", path="$.o",
                      expected={"b": 2, "a": 1.0}).passed

    def test_exists(self):
        assert _check(_response(USER), type="bodyJsonPath", path="$.user", operator="exists").passed

    def test_contains(self):
        assert _check(_response(USER), type="bodyJsonPath", path="$.user.name", expected="Ad",
                      operator="contains").passed

    def test_no_match(self):
        r = _check(_response(USER), type="bodyJsonPath", path="$.user.missing", expected=1)
        assert not r.passed
        assert r.error == "JSONPath $.user.missing did not match any elements"

    def test_mismatch(self):
        r = _check(_response(USER), type="bodyJsonPath", path="$.user.id", expected=8)
        assert not r.passed
        assert r.actual == 7

    def test_wildcard_uses_first_match(self):
        assert _check(_response(USER), type="bodyJsonPath", path="$.items[*].n", expected=1).passed

    def test_bad_path(self):
        r = _check(_response(USER), type="bodyJsonPath", path="$[[[", expected=1)
        assert not r.passed
        assert "JSONPath error" in r.error


class TestResponseTime:
    def test_strictly_less(self):
        assert _check(_response(duration_ms=99.9), type="responseTime", expected=100).passed
        assert not _check(_response(duration_ms=100.0), type="responseTime", expected=100).passed

    def test_no_metrics(self):
        r = _check(_response(duration_ms=None), type="responseTime", expected=100)
        assert not r.passed
        assert r.error == "No response time recorded"

    def test_non_numeric_expected(self):
        assert not _check(_response(), type="responseTime", expected="fast").passed


class TestContentType:
    def test_case_insensitive_substring(self):
        resp = _response(headers={"Content-Type": "Application/JSON; charset=utf-8"})
        assert _check(resp, type="contentType", expected="application/json").passed

    def test_missing(self):
        assert not _check(_response(), type="contentType", expected="json").passed


class TestReport:
    def test_counts_and_order(self):
        assertions = [
            Assertion("status", expected=200),
            Assertion("status", expected=404),
            Assertion("bodyJsonPath", path="$.user.id", expected=7),
        ]
        report = validate(_response(USER), assertions)
        assert (report.total_assertions, report.passed_assertions, report.failed_assertions) == (3, 2, 1)
        assert not report.overall_passed
        assert [r.assertion for r in report.results] == assertions

    def test_empty_list_passes(self):
        report = validate(_response(), [])
        assert report.total_assertions == 0
        assert report.overall_passed

    def test_engine_reset_between_runs(self):
        engine = AssertionEngine()
        first = engine.validate(_response(status=200), [Assertion("status", expected=200)])
        second = engine.validate(_response(status=200), [Assertion("status", expected=200)])
        assert first == second
        assert second.total_assertions == 1

    def test_response_not_mutated(self):
        resp = _response(USER)
        before = stable_json(resp.body.value)
        validate(resp, [Assertion("bodyJsonPath", path="$.user.id", expected=7)])
        assert stable_json(resp.body.value) == before
