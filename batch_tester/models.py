"""Data models for requests, responses, assertions and batch reports.

Records are frozen dataclasses. Inputs come in as JSON-shaped dicts through
``from_dict`` (camelCase keys, validated, ConfigError on bad input) and every
record serializes back with ``to_dict`` in a stable field order.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional, Union

from batch_tester.credentials import Credential
from batch_tester.errors import ConfigError

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

HTTP_METHODS: frozenset[str] = frozenset(HttpMethod.__args__)  # type: ignore[attr-defined]

AssertionType = Literal[
    "status",
    "header",
    "body",
    "bodyJsonPath",
    "responseTime",
    "contentType",
    "contains",
    "notContains",
    "matches",
]

ASSERTION_TYPES: frozenset[str] = frozenset(AssertionType.__args__)  # type: ignore[attr-defined]

Operator = Literal["equals", "contains", "lessThan", "greaterThan", "matches", "exists"]

OPERATORS: frozenset[str] = frozenset(Operator.__args__)  # type: ignore[attr-defined]

BodyKind = Literal["text", "json", "binary"]

_EXCERPT_LEN = 200


def to_json_text(value: Any, sort_keys: bool = False) -> str:
    """Compact JSON the way a browser's JSON.stringify renders it."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=sort_keys, default=str)


def excerpt(text: str, limit: int = _EXCERPT_LEN) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _require_mapping(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise ConfigError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _number(data: dict, key: str, default: Optional[float], *, what: str,
            minimum: Optional[float] = None, maximum: Optional[float] = None,
            exclusive_min: bool = False, integer: bool = False) -> Optional[float]:
    value = data.get(key)
    if value is None:
        value = default
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{what}.{key} must be a number")
    if integer and int(value) != value:
        raise ConfigError(f"{what}.{key} must be an integer")
    if minimum is not None:
        if exclusive_min and value <= minimum:
            raise ConfigError(f"{what}.{key} must be > {minimum}")
        if not exclusive_min and value < minimum:
            raise ConfigError(f"{what}.{key} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{what}.{key} must be <= {maximum}")
    return int(value) if integer else value


def _flag(data: dict, key: str, default: bool, *, what: str) -> bool:
    value = data.get(key)
    if value is None:
        value = default
    if not isinstance(value, bool):
        raise ConfigError(f"{what}.{key} must be a boolean")
    return value


def _string_map(data: dict, key: str, *, what: str) -> dict[str, str]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{what}.{key} must be an object")
    return {str(k): str(v) for k, v in value.items()}


# ── Assertions ──


@dataclass(frozen=True)
class Assertion:
    """A declarative check against one aspect of a response."""

    type: AssertionType
    expected: Any = None
    path: Optional[str] = None
    operator: Optional[Operator] = None
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Assertion":
        data = _require_mapping(data, "assertion")
        kind = data.get("type")
        if kind not in ASSERTION_TYPES:
            raise ConfigError(f"Unknown assertion type: {kind!r}. Available: {sorted(ASSERTION_TYPES)}")
        operator = data.get("operator")
        if operator is not None and operator not in OPERATORS:
            raise ConfigError(f"Unknown assertion operator: {operator!r}")
        path = data.get("path")
        if path is not None and not isinstance(path, str):
            raise ConfigError("assertion.path must be a string")
        message = data.get("message")
        return cls(
            type=kind,
            expected=data.get("expected"),
            path=path,
            operator=operator,
            message=str(message) if message is not None else None,
        )

    def to_dict(self) -> dict:
        expected = self.expected
        if isinstance(expected, re.Pattern):
            expected = expected.pattern
        out: dict[str, Any] = {"type": self.type}
        if self.path is not None:
            out["path"] = self.path
        out["expected"] = expected
        if self.operator is not None:
            out["operator"] = self.operator
        if self.message is not None:
            out["message"] = self.message
        return out


@dataclass(frozen=True)
class ValidationResult:
    assertion: Assertion
    passed: bool
    actual: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "assertion": self.assertion.to_dict(),
            "passed": self.passed,
            "actual": self.actual,
            "error": self.error,
        }


@dataclass(frozen=True)
class ValidationReport:
    total_assertions: int
    passed_assertions: int
    failed_assertions: int
    results: tuple[ValidationResult, ...] = ()
    execution_time_ms: float = field(default=0.0, compare=False)

    @property
    def overall_passed(self) -> bool:
        return self.failed_assertions == 0

    def to_dict(self) -> dict:
        return {
            "totalAssertions": self.total_assertions,
            "passedAssertions": self.passed_assertions,
            "failedAssertions": self.failed_assertions,
            "overallPassed": self.overall_passed,
            "results": [r.to_dict() for r in self.results],
            "executionTime": round(self.execution_time_ms, 2),
        }


# ── Requests and responses ──


@dataclass(frozen=True)
class TestRequest:
    """One declarative HTTP test. Immutable once handed to the orchestrator."""

    __test__ = False  # not a pytest class

    name: str
    url: str
    method: HttpMethod = "GET"
    headers: dict[str, str] = field(default_factory=dict, hash=False)
    body: Any = field(default=None, hash=False)
    query_params: dict[str, str] = field(default_factory=dict, hash=False)
    credential: Optional[Credential] = None
    assertions: tuple[Assertion, ...] = ()
    delay_ms: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any) -> "TestRequest":
        data = _require_mapping(data, "test")
        name = data.get("name")
        url = data.get("url")
        if not isinstance(name, str) or not name:
            raise ConfigError("test.name must be a non-empty string")
        if not isinstance(url, str) or not url:
            raise ConfigError(f"test {name!r}: url must be a non-empty string")
        method = str(data.get("method") or "GET").upper()
        if method not in HTTP_METHODS:
            raise ConfigError(f"test {name!r}: unsupported HTTP method {method}")
        what = f"test {name!r}"
        raw_assertions = data.get("assertions") or []
        if not isinstance(raw_assertions, list):
            raise ConfigError(f"{what}: assertions must be a list")
        auth = data.get("auth")
        return cls(
            name=name,
            url=url,
            method=method,  # type: ignore[arg-type]
            headers=_string_map(data, "headers", what=what),
            body=data.get("body"),
            query_params=_string_map(data, "params", what=what),
            credential=Credential.from_dict(auth) if auth is not None else None,
            assertions=tuple(Assertion.from_dict(a) for a in raw_assertions),
            delay_ms=_number(data, "delay", None, what=what, minimum=0, exclusive_min=True),
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"name": self.name, "url": self.url, "method": self.method}
        if self.headers:
            out["headers"] = dict(self.headers)
        if self.body is not None:
            out["body"] = self.body
        if self.query_params:
            out["params"] = dict(self.query_params)
        if self.credential is not None:
            out["auth"] = self.credential.to_dict()
        if self.assertions:
            out["assertions"] = [a.to_dict() for a in self.assertions]
        if self.delay_ms is not None:
            out["delay"] = self.delay_ms
        return out


@dataclass
class RequestMetrics:
    """Timing and size for one execute() call; owned by that call only."""

    start_time: float
    end_time: float = 0.0
    duration_ms: float = 0.0
    request_size_bytes: int = 0
    response_size_bytes: int = 0
    retry_count: int = 0
    total_duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "durationMs": round(self.duration_ms, 2),
            "requestSizeBytes": self.request_size_bytes,
            "responseSizeBytes": self.response_size_bytes,
            "retryCount": self.retry_count,
            "totalDurationMs": round(self.total_duration_ms, 2),
        }


@dataclass(frozen=True)
class ResponseBody:
    """Tagged response body: text, parsed JSON, or raw bytes."""

    kind: BodyKind
    value: Any

    @classmethod
    def from_bytes(cls, content: bytes) -> "ResponseBody":
        if not content:
            return cls("text", "")
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            return cls("binary", content)
        try:
            return cls("json", json.loads(text))
        except ValueError:
            return cls("text", text)

    def as_text(self) -> str:
        """Canonical string form used by body assertions."""
        if self.kind == "text":
            return self.value
        if self.kind == "binary":
            return bytes(self.value).decode("utf-8", errors="replace")
        if isinstance(self.value, str):
            return self.value
        return to_json_text(self.value)

    def to_dict(self) -> dict:
        value = self.value
        if self.kind == "binary":
            value = excerpt(self.as_text())
        return {"kind": self.kind, "value": value}


@dataclass(frozen=True)
class ResponseRecord:
    status: int
    status_text: str
    headers: dict[str, str] = field(hash=False)
    body: ResponseBody
    metrics: Optional[RequestMetrics] = field(default=None, hash=False, compare=False)

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class ExecutionResult:
    """What RequestExecutor hands back: a response, or the transport error."""

    metrics: RequestMetrics
    response: Optional[ResponseRecord] = None
    error: Optional[Exception] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.response is not None and self.error is None


# ── Batch ──


@dataclass(frozen=True)
class BatchOptions:
    parallel: bool = False
    max_concurrent: int = 5
    stop_on_failure: bool = False
    delay_between_ms: float = 0
    timeout_ms: float = 30000
    retry_on_failure: bool = False
    retry_attempts: int = 0
    executor_retry_attempts: int = 0
    retry_delay_ms: float = 1000
    max_total_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if not 1 <= self.max_concurrent <= 10:
            raise ConfigError("maxConcurrent must be between 1 and 10")
        if self.delay_between_ms < 0:
            raise ConfigError("delayBetween must be >= 0")
        if self.timeout_ms <= 0:
            raise ConfigError("timeout must be > 0")
        if not 0 <= self.retry_attempts <= 3:
            raise ConfigError("retryAttempts must be between 0 and 3")
        if not 0 <= self.executor_retry_attempts <= 5:
            raise ConfigError("executorRetryAttempts must be between 0 and 5")
        if self.retry_delay_ms <= 0:
            raise ConfigError("retryDelay must be > 0")
        if self.max_total_attempts is not None and self.max_total_attempts < 1:
            raise ConfigError("maxTotalAttempts must be >= 1")

    @property
    def effective_max_attempts(self) -> int:
        """Upper bound on HTTP attempts per test across both retry layers."""
        outer = self.retry_attempts + 1 if self.retry_on_failure else 1
        product = outer * (self.executor_retry_attempts + 1)
        if self.max_total_attempts is not None:
            return min(product, self.max_total_attempts)
        return product

    @classmethod
    def from_dict(cls, data: Any) -> "BatchOptions":
        data = _require_mapping(data or {}, "options")
        w = "options"
        return cls(
            parallel=_flag(data, "parallel", False, what=w),
            max_concurrent=_number(data, "maxConcurrent", 5, what=w, integer=True),
            stop_on_failure=_flag(data, "stopOnFailure", False, what=w),
            delay_between_ms=_number(data, "delayBetween", 0, what=w),
            timeout_ms=_number(data, "timeout", 30000, what=w),
            retry_on_failure=_flag(data, "retryOnFailure", False, what=w),
            retry_attempts=_number(data, "retryAttempts", 0, what=w, integer=True),
            executor_retry_attempts=_number(data, "executorRetryAttempts", 0, what=w, integer=True),
            retry_delay_ms=_number(data, "retryDelay", 1000, what=w),
            max_total_attempts=_number(data, "maxTotalAttempts", None, what=w, integer=True),
        )

    def to_dict(self) -> dict:
        return {
            "parallel": self.parallel,
            "maxConcurrent": self.max_concurrent,
            "stopOnFailure": self.stop_on_failure,
            "delayBetween": self.delay_between_ms,
            "timeout": self.timeout_ms,
            "retryOnFailure": self.retry_on_failure,
            "retryAttempts": self.retry_attempts,
            "executorRetryAttempts": self.executor_retry_attempts,
            "retryDelay": self.retry_delay_ms,
            "maxTotalAttempts": self.max_total_attempts,
        }


@dataclass(frozen=True)
class AssertionSummary:
    passed: int
    failed: int
    total: int

    def to_dict(self) -> dict:
        return {"passed": self.passed, "failed": self.failed, "total": self.total}


@dataclass(frozen=True)
class BatchTestResult:
    __test__ = False

    name: str
    url: str
    method: str
    success: bool
    duration_ms: float
    status: Optional[int] = None
    status_text: Optional[str] = None
    error: Optional[str] = None
    assertion_summary: Optional[AssertionSummary] = None
    attempts: int = 1

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "method": self.method,
            "success": self.success,
            "status": self.status,
            "statusText": self.status_text,
            "durationMs": round(self.duration_ms, 2),
            "error": self.error,
            "assertionResults": self.assertion_summary.to_dict() if self.assertion_summary else None,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class BatchSummary:
    success_rate: float
    avg_duration: float
    min_duration: float
    max_duration: float
    assertion_totals: Optional[AssertionSummary] = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "successRate": round(self.success_rate, 2),
            "averageDuration": round(self.avg_duration, 2),
            "minDuration": round(self.min_duration, 2),
            "maxDuration": round(self.max_duration, 2),
        }
        if self.assertion_totals is not None:
            out["totalAssertions"] = self.assertion_totals.total
            out["passedAssertions"] = self.assertion_totals.passed
            out["failedAssertions"] = self.assertion_totals.failed
        return out


@dataclass(frozen=True)
class BatchReport:
    """Aggregate result of one run_batch call."""

    start_time: datetime
    end_time: datetime
    total_duration_ms: float
    total_tests: int
    successful_tests: int
    failed_tests: int
    results: tuple[BatchTestResult, ...]
    summary: BatchSummary
    stopped: bool = False
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time.isoformat(timespec="milliseconds"),
            "endTime": self.end_time.isoformat(timespec="milliseconds"),
            "totalDuration": round(self.total_duration_ms, 2),
            "totalTests": self.total_tests,
            "successfulTests": self.successful_tests,
            "failedTests": self.failed_tests,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
            "stopped": self.stopped,
            "cancelled": self.cancelled,
        }


TestInput = Union[TestRequest, dict]
OptionsInput = Union[BatchOptions, dict, None]
