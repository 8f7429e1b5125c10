"""AssertionEngine: evaluates declarative assertions against a response.

Every assertion in the list is evaluated, in order. Problems with an
assertion itself (bad regex, bad JSONPath, missing path) become a failed
ValidationResult carrying an ``error``; validate() never raises for them and
never mutates the response.
"""

from __future__ import annotations

import re
import time
from typing import Any, Callable, Iterable, Optional

from jsonpath_ng.ext import parse as parse_jsonpath

from batch_tester.errors import ValidationError
from batch_tester.models import (
    Assertion,
    ResponseRecord,
    ValidationReport,
    ValidationResult,
    excerpt,
    to_json_text,
)


def _normalize(value: Any) -> Any:
    """Integral floats become ints so 1 and 1.0 compare equal, as in JSON."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def stable_json(value: Any) -> str:
    """Key-sorted compact JSON used for deep equality."""
    return to_json_text(_normalize(value), sort_keys=True)


def stringify(value: Any) -> str:
    return value if isinstance(value, str) else to_json_text(value)


def _number(value: Any, what: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{what} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{what} must be a number, got {value!r}") from None


def compile_pattern(expected: Any) -> re.Pattern:
    if isinstance(expected, re.Pattern):
        return expected
    try:
        return re.compile(str(expected))
    except re.error as exc:
        raise ValidationError(f"Invalid regular expression {expected!r}: {exc}") from None


class AssertionEngine:
    """Stateless between calls; the result buffer is reset by every validate()."""

    def __init__(self) -> None:
        self._results: list[ValidationResult] = []
        self._started = time.monotonic()

    def reset(self) -> None:
        self._results = []
        self._started = time.monotonic()

    def validate(self, response: ResponseRecord, assertions: Iterable[Assertion]) -> ValidationReport:
        self.reset()
        for assertion in assertions:
            self._results.append(self.evaluate(response, assertion))
        return self.report()

    def report(self) -> ValidationReport:
        passed = sum(1 for r in self._results if r.passed)
        return ValidationReport(
            total_assertions=len(self._results),
            passed_assertions=passed,
            failed_assertions=len(self._results) - passed,
            results=tuple(self._results),
            execution_time_ms=(time.monotonic() - self._started) * 1000,
        )

    def evaluate(self, response: ResponseRecord, assertion: Assertion) -> ValidationResult:
        check = self._checks.get(assertion.type)
        if check is None:
            return ValidationResult(assertion, False, error=f"Unsupported assertion type: {assertion.type}")
        try:
            return check(self, response, assertion)
        except ValidationError as exc:
            return ValidationResult(assertion, False, error=str(exc))
        except Exception as exc:
            return ValidationResult(assertion, False, error=f"{type(exc).__name__}: {exc}")

    # ── individual checks ──

    def _check_status(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        expected = a.expected
        if isinstance(expected, str) and expected.strip().isdigit():
            expected = int(expected)
        actual = response.status
        if actual == expected:
            return ValidationResult(a, True, actual=actual)
        return ValidationResult(a, False, actual=actual,
                                error=f"Status {actual} does not match expected {a.expected}")

    def _check_header(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        if not a.path:
            raise ValidationError("header assertion requires a path (the header name)")
        operator = a.operator or "equals"
        actual = response.header(a.path)
        expected = stringify(a.expected)
        if actual is None:
            return ValidationResult(a, False, error=f"Header {a.path} not found")
        if operator == "equals":
            if actual == expected:
                return ValidationResult(a, True, actual=actual)
            return ValidationResult(a, False, actual=actual,
                                    error=f'Header {a.path} value "{actual}" does not equal "{expected}"')
        if operator == "contains":
            if expected in actual:
                return ValidationResult(a, True, actual=actual)
            return ValidationResult(a, False, actual=actual,
                                    error=f'Header {a.path} value "{actual}" does not contain "{expected}"')
        raise ValidationError(f"Operator {operator} is not supported for header assertions")

    def _check_body(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        operator = a.operator or "equals"
        body = response.body.as_text()
        expected = stringify(a.expected)
        if operator == "equals":
            passed = body == expected
            error = "Body does not equal expected value"
        elif operator == "contains":
            passed = expected in body
            error = "Body does not contain expected value"
        else:
            raise ValidationError(f"Operator {operator} is not supported for body assertions")
        return ValidationResult(a, passed, actual=excerpt(body), error=None if passed else error)

    def _check_contains(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        return self._substring(response, a, should_contain=True)

    def _check_not_contains(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        return self._substring(response, a, should_contain=False)

    def _substring(self, response: ResponseRecord, a: Assertion, should_contain: bool) -> ValidationResult:
        body = response.body.as_text()
        needle = stringify(a.expected)
        passed = (needle in body) == should_contain
        error = None
        if not passed:
            error = f'Body {"does not contain" if should_contain else "contains"} "{needle}"'
        return ValidationResult(a, passed, actual=excerpt(body), error=error)

    def _check_matches(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        pattern = compile_pattern(a.expected)
        body = response.body.as_text()
        passed = pattern.search(body) is not None
        error = None if passed else f"Body does not match pattern {pattern.pattern}"
        return ValidationResult(a, passed, actual=excerpt(body), error=error)

    def _check_json_path(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        if not a.path:
            raise ValidationError("bodyJsonPath assertion requires a path")
        try:
            expr = parse_jsonpath(a.path)
        except Exception as exc:
            raise ValidationError(f"JSONPath error: {exc}") from None
        document = response.body.value if response.body.kind == "json" else response.body.as_text()
        matches = [m.value for m in expr.find(document)]
        operator = a.operator or "equals"
        if not matches:
            return ValidationResult(a, False, error=f"JSONPath {a.path} did not match any elements")
        actual = matches[0]
        if operator == "exists":
            return ValidationResult(a, True, actual=actual)
        if operator == "equals":
            passed = stable_json(actual) == stable_json(a.expected)
            error = f"JSONPath {a.path} value {stringify(actual)} does not equal {stringify(a.expected)}"
        elif operator == "contains":
            passed = stringify(a.expected) in stringify(actual)
            error = f"JSONPath {a.path} value does not contain {stringify(a.expected)}"
        else:
            raise ValidationError(f"Operator {operator} is not supported for bodyJsonPath assertions")
        return ValidationResult(a, passed, actual=actual, error=None if passed else error)

    def _check_response_time(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        limit = _number(a.expected, "responseTime expected")
        if response.metrics is None:
            return ValidationResult(a, False, error="No response time recorded")
        actual = response.metrics.duration_ms
        if actual < limit:
            return ValidationResult(a, True, actual=actual)
        return ValidationResult(a, False, actual=actual,
                                error=f"Response time {actual:g}ms exceeds maximum {limit:g}ms")

    def _check_content_type(self, response: ResponseRecord, a: Assertion) -> ValidationResult:
        content_type = response.header("content-type") or ""
        expected = stringify(a.expected)
        if expected.lower() in content_type.lower():
            return ValidationResult(a, True, actual=content_type)
        return ValidationResult(a, False, actual=content_type,
                                error=f'Content-Type "{content_type}" does not contain "{expected}"')

    _checks: dict[str, Callable[["AssertionEngine", ResponseRecord, Assertion], ValidationResult]] = {
        "status": _check_status,
        "header": _check_header,
        "body": _check_body,
        "bodyJsonPath": _check_json_path,
        "responseTime": _check_response_time,
        "contentType": _check_content_type,
        "contains": _check_contains,
        "notContains": _check_not_contains,
        "matches": _check_matches,
    }


def validate(response: ResponseRecord, assertions: Iterable[Assertion],
             engine: Optional[AssertionEngine] = None) -> ValidationReport:
    """Validate with a fresh engine unless one is supplied."""
    return (engine or AssertionEngine()).validate(response, assertions)
