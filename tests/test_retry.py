import asyncio
import time
import unittest

from playprobe_runtime.errors import (
    ConnectivityError,
    ControlSurfaceError,
    ErrorCategory,
    OperationCancelledError,
    OperationTimeoutError,
    PerceptionServiceError,
    PersistenceError,
    RetryExhaustedError,
    UncategorizedError,
    categorize,
)
from playprobe_runtime.retry import CancellationToken, RetryPolicy, RetryStats, retry, run_with_retry

FAST = RetryPolicy(initial_delay_s=0.0, max_delay_s=0.0)


class Flaky:
    """Fails with the queued errors, then returns ``value``."""

    def __init__(self, *errors: BaseException, value: str = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class CategoryDefaultsTest(unittest.TestCase):
    def test_retryable_defaults_follow_category(self) -> None:
        cases = [
            (ControlSurfaceError("x"), ErrorCategory.CONTROL_SURFACE, True),
            (ConnectivityError("x"), ErrorCategory.CONNECTIVITY, True),
            (OperationTimeoutError("x"), ErrorCategory.TIMEOUT, True),
            (PerceptionServiceError("x"), ErrorCategory.PERCEPTION_SERVICE, True),
            (PersistenceError("x"), ErrorCategory.PERSISTENCE, True),
            (UncategorizedError("x"), ErrorCategory.UNKNOWN, False),
        ]
        for error, category, retryable in cases:
            with self.subTest(error=type(error).__name__):
                self.assertEqual(error.category, category)
                self.assertEqual(error.retryable, retryable)

    def test_retryable_override(self) -> None:
        self.assertFalse(PerceptionServiceError("bad json", retryable=False).retryable)

    def test_categorize_foreign_exceptions(self) -> None:
        self.assertIsInstance(categorize(TimeoutError()), OperationTimeoutError)
        self.assertIsInstance(categorize(ConnectionRefusedError()), ConnectivityError)
        wrapped = categorize(KeyError("k"))
        self.assertIsInstance(wrapped, UncategorizedError)
        self.assertFalse(wrapped.retryable)
        error = ConnectivityError("down")
        self.assertIs(categorize(error), error)

    def test_str_includes_category_and_cause(self) -> None:
        error = ControlSurfaceError("click failed", cause=ValueError("detached"))
        self.assertEqual(str(error), "[control_surface] click failed: detached")


class RetryPolicyTest(unittest.TestCase):
    def test_delay_schedule_is_capped_exponential(self) -> None:
        policy = RetryPolicy(initial_delay_s=1.0, max_delay_s=30.0, backoff_factor=2.0)
        self.assertEqual([policy.delay_for(n) for n in range(7)], [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0])

    def test_should_retry_needs_flag_and_allow_list(self) -> None:
        policy = RetryPolicy()
        self.assertTrue(policy.should_retry(ConnectivityError("x")))
        self.assertFalse(policy.should_retry(ControlSurfaceError("x")))
        self.assertFalse(policy.should_retry(ConnectivityError("x", retryable=False)))


class RetryTest(unittest.IsolatedAsyncioTestCase):
    async def test_succeeds_after_transient_failures(self) -> None:
        operation = Flaky(ConnectivityError("a"), OperationTimeoutError("b"))
        stats = RetryStats()
        result = await retry(operation, FAST, stats=stats)
        self.assertEqual(result, "ok")
        self.assertEqual(operation.calls, 3)
        self.assertEqual(stats.attempts, 3)

    async def test_exhaustion_wraps_last_error(self) -> None:
        last = ConnectivityError("third")
        operation = Flaky(ConnectivityError("first"), ConnectivityError("second"), last)
        with self.assertRaises(RetryExhaustedError) as ctx:
            await retry(operation, FAST, description="ping")
        self.assertIs(ctx.exception.last_error, last)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(ctx.exception.category, ErrorCategory.CONNECTIVITY)
        self.assertFalse(ctx.exception.retryable)

    async def test_single_attempt_policy_exhausts_without_sleeping(self) -> None:
        error = OperationTimeoutError("slow")
        operation = Flaky(error)
        policy = RetryPolicy(max_attempts=0, initial_delay_s=60.0)
        with self.assertRaises(RetryExhaustedError) as ctx:
            await asyncio.wait_for(retry(operation, policy, description="capture"), timeout=1.0)
        self.assertEqual(operation.calls, 1)
        self.assertEqual(ctx.exception.attempts, 1)
        self.assertIs(ctx.exception.__cause__, error)
        self.assertEqual(ctx.exception.category, ErrorCategory.TIMEOUT)

    async def test_non_retryable_error_raised_immediately(self) -> None:
        error = PerceptionServiceError("unparsable", retryable=False)
        operation = Flaky(error)
        with self.assertRaises(PerceptionServiceError) as ctx:
            await retry(operation, FAST)
        self.assertIs(ctx.exception, error)
        self.assertEqual(operation.calls, 1)

    async def test_category_outside_allow_list_not_retried(self) -> None:
        operation = Flaky(ControlSurfaceError("detached"))
        with self.assertRaises(ControlSurfaceError):
            await retry(operation, FAST)
        self.assertEqual(operation.calls, 1)

        operation = Flaky(ControlSurfaceError("detached"))
        policy = RetryPolicy(
            initial_delay_s=0.0,
            retryable=frozenset({ErrorCategory.CONTROL_SURFACE}),
        )
        self.assertEqual(await retry(operation, policy), "ok")

    async def test_foreign_exception_is_categorized(self) -> None:
        with self.assertRaises(UncategorizedError) as ctx:
            await retry(Flaky(KeyError("missing")), FAST)
        self.assertIsInstance(ctx.exception.__cause__, KeyError)

    async def test_cancelled_token_skips_operation(self) -> None:
        token = CancellationToken()
        token.cancel("operator stop")
        operation = Flaky()
        with self.assertRaises(OperationCancelledError) as ctx:
            await retry(operation, FAST, token=token)
        self.assertEqual(operation.calls, 0)
        self.assertEqual(ctx.exception.message, "operator stop")

    async def test_cancellation_interrupts_backoff_sleep(self) -> None:
        token = CancellationToken()
        policy = RetryPolicy(initial_delay_s=10.0)
        operation = Flaky(ConnectivityError("down"))
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        started = time.monotonic()
        with self.assertRaises(OperationCancelledError):
            await retry(operation, policy, token=token)
        self.assertLess(time.monotonic() - started, 2.0)
        self.assertEqual(operation.calls, 1)

    async def test_deadline_expiry_is_timeout_category(self) -> None:
        token = CancellationToken.with_timeout(0.05)
        with self.assertRaises(OperationCancelledError) as ctx:
            await token.sleep(10)
        self.assertTrue(ctx.exception.deadline_expired)
        self.assertEqual(ctx.exception.category, ErrorCategory.TIMEOUT)
        self.assertTrue(token.cancelled)

    async def test_sleep_without_cancellation_completes(self) -> None:
        token = CancellationToken.with_timeout(5)
        await token.sleep(0.01)
        self.assertFalse(token.cancelled)
        self.assertGreater(token.remaining(), 0)

    async def test_run_with_retry_reports_failure(self) -> None:
        operation = Flaky(ConnectivityError("a"), ConnectivityError("b"), ConnectivityError("c"))
        result = await run_with_retry(operation, FAST, description="ping")
        self.assertFalse(result.succeeded)
        self.assertEqual(result.category, ErrorCategory.CONNECTIVITY)
        self.assertEqual(result.retries_used, 2)
        self.assertIn("ping", result.message)

    async def test_run_with_retry_reports_success(self) -> None:
        result = await run_with_retry(Flaky(OperationTimeoutError("slow")), FAST)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.value, "ok")
        self.assertEqual(result.retries_used, 1)

    async def test_run_with_retry_propagates_cancellation(self) -> None:
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(OperationCancelledError):
            await run_with_retry(Flaky(), FAST, token=token)


if __name__ == "__main__":
    unittest.main()
