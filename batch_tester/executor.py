"""RequestExecutor: one HTTP test request end-to-end.

Applies credential headers, times the call, retries transport failures and
5xx responses with exponential backoff (retry_delay_ms * 2 ** attempt), and
records size/latency metrics. Every HTTP status is a response; only
transport-level failures are errors. 4xx is never retried.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Optional

import httpx

from batch_tester.auth import AuthProvider
from batch_tester.cancellation import CancellationToken
from batch_tester.credentials import merge_headers
from batch_tester.errors import AuthError, CancellationError, EngineError, NetworkError, TimeoutError
from batch_tester.models import ExecutionResult, RequestMetrics, ResponseBody, ResponseRecord, TestRequest
from batch_tester.run_log import RunLog
from batch_tester.security import redact_url


class AttemptBudget:
    """Caps HTTP attempts for one test across the executor and orchestrator retry loops."""

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    def consume(self) -> None:
        self.used += 1


def encode_body(body: Any) -> tuple[Optional[bytes], Optional[str]]:
    """Serialize a request body. Returns (content, implied content type)."""
    if body is None:
        return None, None
    if isinstance(body, bytes):
        return body, None
    if isinstance(body, str):
        return body.encode("utf-8"), None
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8"), "application/json"


def response_size(response: httpx.Response) -> int:
    """Body bytes plus serialized header lines."""
    header_bytes = sum(len(f"{k}: {v}\r\n".encode("utf-8")) for k, v in response.headers.items())
    return len(response.content) + header_bytes


def _now_ms() -> float:
    return time.time() * 1000


class RequestExecutor:
    def __init__(
        self,
        client: httpx.AsyncClient,
        auth: Optional[AuthProvider] = None,
        retry_attempts: int = 0,
        retry_delay_ms: float = 1000,
        run_log: Optional[RunLog] = None,
    ):
        self.client = client
        self.auth = auth or AuthProvider()
        self.retry_attempts = retry_attempts
        self.retry_delay_ms = retry_delay_ms
        self.run_log = run_log

    async def build_headers(self, request: TestRequest) -> dict[str, str]:
        """Credential headers first; request headers override case-insensitively."""
        auth_headers = await self.auth.resolve_headers(request.credential, self.client)
        return merge_headers(auth_headers, request.headers)

    def should_retry(self, error: Optional[Exception], response: Optional[httpx.Response]) -> bool:
        if error is not None:
            return isinstance(error, EngineError) and error.retryable
        return response is not None and 500 <= response.status_code < 600

    async def execute(
        self,
        request: TestRequest,
        timeout_ms: float = 30000,
        cancel: Optional[CancellationToken] = None,
        budget: Optional[AttemptBudget] = None,
    ) -> ExecutionResult:
        cancel = cancel or CancellationToken()
        budget = budget or AttemptBudget()
        first_start = time.monotonic()
        content, implied_type = encode_body(request.body)
        metrics = RequestMetrics(start_time=_now_ms(), request_size_bytes=len(content or b""))

        try:
            headers = await cancel.guard(self.build_headers(request))
        except (AuthError, CancellationError) as exc:
            return self._finish(metrics, first_start, first_start, error=exc, attempts=0)
        if implied_type and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = implied_type

        attempt = 0
        while True:
            attempt_start = time.monotonic()
            metrics.start_time = _now_ms()
            budget.consume()
            response: Optional[httpx.Response] = None
            error: Optional[Exception] = None
            try:
                # httpx timeouts are per phase; wait_for bounds the whole exchange
                response = await cancel.guard(asyncio.wait_for(self.client.request(
                    request.method,
                    request.url,
                    params=request.query_params or None,
                    headers=headers,
                    content=content,
                    timeout=timeout_ms / 1000,
                ), timeout_ms / 1000))
            except asyncio.TimeoutError:
                error = TimeoutError(f"Request timed out after {timeout_ms:g}ms")
            except httpx.TimeoutException as exc:
                error = TimeoutError(f"Request timed out after {timeout_ms:g}ms ({type(exc).__name__})")
            except httpx.InvalidURL as exc:
                error = NetworkError(f"Invalid URL: {exc}", retryable=False)
            except httpx.UnsupportedProtocol as exc:
                error = NetworkError(f"Unsupported protocol: {exc}", retryable=False)
            except httpx.TransportError as exc:
                error = NetworkError(f"{type(exc).__name__}: {exc}")
            except httpx.RequestError as exc:
                # Redirect loops, undecodable payloads: a retry would fail the same way
                error = NetworkError(f"{type(exc).__name__}: {exc}", retryable=False)
            except ValueError as exc:
                # Raised while building the request, e.g. a header value that is not ASCII
                error = NetworkError(f"Invalid request: {type(exc).__name__}: {exc}", retryable=False)
            except CancellationError as exc:
                error = exc

            if (
                attempt < self.retry_attempts
                and not budget.exhausted
                and not cancel.cancelled
                and self.should_retry(error, response)
            ):
                delay = self.retry_delay_ms * 2 ** attempt
                attempt += 1
                metrics.retry_count = attempt
                if self.run_log:
                    self.run_log.log(
                        "retry", test=request.name, method=request.method, url=redact_url(request.url),
                        status=response.status_code if response is not None else None,
                        attempt=attempt, detail=str(error) if error else "server error",
                    )
                try:
                    await cancel.sleep(delay)
                except CancellationError as exc:
                    return self._finish(metrics, first_start, attempt_start, error=exc, attempts=attempt)
                continue

            return self._finish(metrics, first_start, attempt_start, response=response, error=error,
                                attempts=attempt + 1)

    def _finish(
        self,
        metrics: RequestMetrics,
        first_start: float,
        attempt_start: float,
        response: Optional[httpx.Response] = None,
        error: Optional[Exception] = None,
        attempts: int = 1,
    ) -> ExecutionResult:
        end = time.monotonic()
        metrics.end_time = _now_ms()
        metrics.duration_ms = (end - attempt_start) * 1000
        metrics.total_duration_ms = (end - first_start) * 1000
        record = None
        if response is not None:
            metrics.response_size_bytes = response_size(response)
            record = ResponseRecord(
                status=response.status_code,
                status_text=response.reason_phrase,
                headers={k.lower(): v for k, v in response.headers.items()},
                body=ResponseBody.from_bytes(response.content),
                metrics=metrics,
            )
        return ExecutionResult(metrics=metrics, response=record, error=error, attempts=attempts)
