"""Batch orchestration engine: bounded concurrency, retries, delays, stop-on-failure.

Design notes:
- One httpx.AsyncClient per run_batch call (context-managed), shared by
  every test in the batch and by OAuth2 token fetches.
- Parallel mode admits a test only after taking one of max_concurrent
  semaphore slots; the slot is released when the test's result is recorded.
  Results are appended in completion order.
- stop_on_failure stops admitting new tests; tests already in flight drain.
- abort() fires the run's CancellationToken: nothing new starts and
  in-flight tests are interrupted and recorded as cancelled failures.
- Two retry layers compose: the executor retries transport errors and 5xx
  (executor_retry_attempts, exponential backoff) and, with retry_on_failure,
  the orchestrator re-runs the whole test (retry_attempts, linear backoff).
  max_total_attempts caps the product.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

import httpx

from batch_tester.assertions import AssertionEngine
from batch_tester.auth import AuthProvider
from batch_tester.cancellation import CancellationToken
from batch_tester.errors import CancellationError, ConfigError, HttpError
from batch_tester.executor import AttemptBudget, RequestExecutor
from batch_tester.models import (
    AssertionSummary,
    BatchOptions,
    BatchReport,
    BatchSummary,
    BatchTestResult,
    ExecutionResult,
    OptionsInput,
    TestInput,
    TestRequest,
)
from batch_tester.run_log import RunLog
from batch_tester.security import redact_url, suppress_credential_logging

# Orchestrator-level retry backoff: wait this * attempt_number between tries
DEFAULT_RETRY_BACKOFF_MS = 1000

TestHook = Callable[[TestRequest], None]
ResultHook = Callable[[TestRequest, BatchTestResult], None]


def normalize_tests(tests: Iterable[TestInput]) -> list[TestRequest]:
    if isinstance(tests, (str, bytes, dict)) or not isinstance(tests, Iterable):
        raise ConfigError("tests must be a list of test requests")
    out = []
    for i, test in enumerate(tests):
        if isinstance(test, TestRequest):
            out.append(test)
        elif isinstance(test, dict):
            out.append(TestRequest.from_dict(test))
        else:
            raise ConfigError(f"tests[{i}] must be an object, got {type(test).__name__}")
    return out


def normalize_options(options: OptionsInput) -> BatchOptions:
    if options is None:
        return BatchOptions()
    if isinstance(options, BatchOptions):
        return options
    return BatchOptions.from_dict(options)


def build_report(
    start: datetime,
    end: datetime,
    results: list[BatchTestResult],
    stopped: bool,
    cancelled: bool = False,
) -> BatchReport:
    successful = sum(1 for r in results if r.success)
    durations = [r.duration_ms for r in results if r.duration_ms is not None]
    carried = [r.assertion_summary for r in results if r.assertion_summary is not None]
    totals = None
    if carried:
        totals = AssertionSummary(
            passed=sum(s.passed for s in carried),
            failed=sum(s.failed for s in carried),
            total=sum(s.total for s in carried),
        )
    summary = BatchSummary(
        success_rate=successful / len(results) * 100 if results else 0.0,
        avg_duration=sum(durations) / len(durations) if durations else 0.0,
        min_duration=min(durations) if durations else 0.0,
        max_duration=max(durations) if durations else 0.0,
        assertion_totals=totals,
    )
    return BatchReport(
        start_time=start,
        end_time=end,
        total_duration_ms=(end - start).total_seconds() * 1000,
        total_tests=len(results),
        successful_tests=successful,
        failed_tests=len(results) - successful,
        results=tuple(results),
        summary=summary,
        stopped=stopped,
        cancelled=cancelled,
    )


class BatchOrchestrator:
    """Runs batches of TestRequests. One batch at a time per instance."""

    def __init__(
        self,
        auth: Optional[AuthProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        run_log: Optional[RunLog] = None,
        retry_backoff_ms: float = DEFAULT_RETRY_BACKOFF_MS,
        on_test_start: Optional[TestHook] = None,
        on_test_finish: Optional[ResultHook] = None,
    ):
        self.run_log = run_log or RunLog()
        self.auth = auth or AuthProvider(run_log=self.run_log)
        self.transport = transport
        self.retry_backoff_ms = retry_backoff_ms
        self.on_test_start = on_test_start
        self.on_test_finish = on_test_finish
        self.in_flight = 0
        self.peak_in_flight = 0
        self._token: Optional[CancellationToken] = None

    def abort(self, reason: str = "batch aborted") -> None:
        """Cancel the running batch. No-op when nothing is running."""
        if self._token is not None:
            self._token.cancel(reason)

    async def run_batch(self, tests: Iterable[TestInput], options: OptionsInput = None) -> BatchReport:
        """Execute ``tests`` under ``options``. Raises ConfigError before any request on bad input."""
        requests = normalize_tests(tests)
        opts = normalize_options(options)
        suppress_credential_logging()

        self._token = token = CancellationToken()
        self.in_flight = 0
        self.peak_in_flight = 0
        results: list[BatchTestResult] = []
        stopped = False
        start = datetime.now(timezone.utc)
        self.run_log.clear_history()
        self.run_log.log("batch_start", detail=f"{len(requests)} tests, parallel={opts.parallel}, "
                                               f"max_concurrent={opts.max_concurrent}")
        try:
            async with httpx.AsyncClient(transport=self.transport, follow_redirects=True) as client:
                executor = RequestExecutor(
                    client,
                    auth=self.auth,
                    retry_attempts=opts.executor_retry_attempts,
                    retry_delay_ms=opts.retry_delay_ms,
                    run_log=self.run_log,
                )
                if opts.parallel:
                    stopped = await self._run_parallel(requests, opts, executor, token, results)
                else:
                    stopped = await self._run_sequential(requests, opts, executor, token, results)
        finally:
            self._token = None

        end = datetime.now(timezone.utc)
        if token.cancelled:
            self.run_log.log("batch_cancel", detail=token.reason or "")
        self.run_log.log("batch_end", duration_ms=(end - start).total_seconds() * 1000,
                         detail=f"{sum(r.success for r in results)}/{len(results)} passed")
        self.run_log.flush()
        return build_report(start, end, results, stopped or token.cancelled, cancelled=token.cancelled)

    async def _run_sequential(
        self,
        tests: list[TestRequest],
        opts: BatchOptions,
        executor: RequestExecutor,
        token: CancellationToken,
        results: list[BatchTestResult],
    ) -> bool:
        for i, test in enumerate(tests):
            if token.cancelled:
                break
            try:
                if i > 0 and opts.delay_between_ms > 0:
                    await token.sleep(opts.delay_between_ms)
                if test.delay_ms:
                    await token.sleep(test.delay_ms)
            except CancellationError:
                break
            result = await self._run_one(test, opts, executor, token)
            results.append(result)
            if opts.stop_on_failure and not result.success:
                self.run_log.log("batch_stop", test=test.name, detail="stop on failure")
                return True
        return False

    async def _run_parallel(
        self,
        tests: list[TestRequest],
        opts: BatchOptions,
        executor: RequestExecutor,
        token: CancellationToken,
        results: list[BatchTestResult],
    ) -> bool:
        queue = deque(tests)
        tasks: list[asyncio.Task] = []
        stop = asyncio.Event()
        # Limit in-flight tests; a slot is held from admission until the result is recorded
        sem = asyncio.Semaphore(opts.max_concurrent)

        async def run_and_record(test: TestRequest) -> None:
            try:
                if test.delay_ms:
                    try:
                        await token.sleep(test.delay_ms)
                    except CancellationError:
                        results.append(self._cancelled_result(test, token.reason or "batch aborted"))
                        return
                result = await self._run_one(test, opts, executor, token)
                results.append(result)
                if opts.stop_on_failure and not result.success and not stop.is_set():
                    self.run_log.log("batch_stop", test=test.name, detail="stop on failure")
                    stop.set()
            finally:
                sem.release()

        def admitting() -> bool:
            return bool(queue) and not stop.is_set() and not token.cancelled

        try:
            while admitting():
                try:
                    await token.guard(sem.acquire())
                except CancellationError:
                    break
                if not admitting():
                    sem.release()
                    break
                tasks.append(asyncio.create_task(run_and_record(queue.popleft())))
                if opts.delay_between_ms > 0 and admitting():
                    try:
                        await token.sleep(opts.delay_between_ms)
                    except CancellationError:
                        break
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        return stop.is_set()

    async def _run_one(
        self,
        test: TestRequest,
        opts: BatchOptions,
        executor: RequestExecutor,
        token: CancellationToken,
    ) -> BatchTestResult:
        """Pending -> Running -> Succeeded | Failed for one test."""
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        if self.on_test_start:
            self.on_test_start(test)
        self.run_log.log("test_start", test=test.name, method=test.method, url=redact_url(test.url))
        started = time.monotonic()
        try:
            result = await self._attempt(test, opts, executor, token, started)
        except Exception as exc:
            # One test's unexpected error is recorded as its failure; the batch continues
            result = BatchTestResult(
                name=test.name,
                url=test.url,
                method=test.method,
                success=False,
                duration_ms=(time.monotonic() - started) * 1000,
                error=f"{type(exc).__name__}: {exc}",
            )
        finally:
            self.in_flight -= 1
        self.run_log.log("test_end", test=test.name, method=test.method, status=result.status,
                         attempt=result.attempts, duration_ms=result.duration_ms,
                         detail="ok" if result.success else (result.error or "failed"))
        if self.on_test_finish:
            self.on_test_finish(test, result)
        return result

    async def _attempt(
        self,
        test: TestRequest,
        opts: BatchOptions,
        executor: RequestExecutor,
        token: CancellationToken,
        started: float,
    ) -> BatchTestResult:
        max_tries = opts.retry_attempts + 1 if opts.retry_on_failure else 1
        budget = AttemptBudget(opts.max_total_attempts)
        attempts = 0
        tries = 0
        while True:
            tries += 1
            outcome = await executor.execute(test, opts.timeout_ms, cancel=token, budget=budget)
            attempts += outcome.attempts
            if (
                tries >= max_tries
                or budget.exhausted
                or token.cancelled
                or not self._retryable(outcome)
            ):
                break
            self.run_log.log("retry", test=test.name, method=test.method, attempt=tries,
                             detail=f"test-level retry after: {self._failure_text(outcome)}")
            try:
                await token.sleep(self.retry_backoff_ms * tries)
            except CancellationError:
                break

        duration = (time.monotonic() - started) * 1000
        if outcome.error is not None or outcome.response is None:
            return BatchTestResult(
                name=test.name,
                url=test.url,
                method=test.method,
                success=False,
                duration_ms=duration,
                error=self._failure_text(outcome),
                attempts=attempts,
            )

        response = outcome.response
        summary = None
        passed_assertions = True
        if test.assertions:
            report = AssertionEngine().validate(response, test.assertions)
            summary = AssertionSummary(report.passed_assertions, report.failed_assertions, report.total_assertions)
            passed_assertions = report.overall_passed

        error = None
        status_error = HttpError.for_status(response.status, response.status_text)
        if status_error is not None:
            error = str(status_error)
        elif not passed_assertions:
            error = f"{summary.failed} of {summary.total} assertions failed"
        return BatchTestResult(
            name=test.name,
            url=test.url,
            method=test.method,
            success=error is None,
            duration_ms=duration,
            status=response.status,
            status_text=response.status_text,
            error=error,
            assertion_summary=summary,
            attempts=attempts,
        )

    @staticmethod
    def _retryable(outcome: ExecutionResult) -> bool:
        if outcome.error is not None:
            return getattr(outcome.error, "retryable", False)
        return outcome.response is not None and outcome.response.status >= 500

    @staticmethod
    def _failure_text(outcome: ExecutionResult) -> str:
        if outcome.error is not None:
            return str(outcome.error) or type(outcome.error).__name__
        if outcome.response is not None:
            return str(HttpError(outcome.response.status, outcome.response.status_text))
        return "Request failed"

    @staticmethod
    def _cancelled_result(test: TestRequest, reason: str) -> BatchTestResult:
        return BatchTestResult(
            name=test.name,
            url=test.url,
            method=test.method,
            success=False,
            duration_ms=0.0,
            error=reason,
            attempts=0,
        )

    @staticmethod
    def create_batch_from_template(template: dict, entries: Iterable[dict]) -> list[TestRequest]:
        """Expand a shared template into tests.

        Each entry needs ``name`` and ``url`` and may carry ``overrides``,
        a dict of test fields that replace the template's.
        """
        tests = []
        for entry in entries:
            data = {**template, **(entry.get("overrides") or {}), "name": entry.get("name"), "url": entry.get("url")}
            tests.append(TestRequest.from_dict(data))
        return tests


async def run_batch(
    tests: Iterable[TestInput],
    options: OptionsInput = None,
    auth: Optional[AuthProvider] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BatchReport:
    """Convenience wrapper around a one-shot BatchOrchestrator."""
    return await BatchOrchestrator(auth=auth, transport=transport).run_batch(tests, options)
