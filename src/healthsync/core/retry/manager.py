"""
Runs batch coroutines under a RetryPolicy.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from healthsync.core.retry.policy import DEFAULT_RETRY_POLICY, RetryPolicy, RetryState
from healthsync.exceptions import FatalError, RetryExhaustedError
from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.retry.manager")

T = TypeVar("T")


class RetryManager:
    """
    Executes a coroutine function until it succeeds or the policy gives up.

    Outcomes of ``execute``:

    - success: the result is returned, however many runs it took
    - ``FatalError`` or a type the policy does not retry: re-raised as is,
      after a single run
    - a retryable error still failing when the budget is spent:
      ``RetryExhaustedError`` carrying the run count, chained to that error

    Cancellation passes straight through. ``history`` maps operation names
    to their RetryState; with ``max_history`` set only that many of the most
    recent operations are kept.
    """

    def __init__(self, max_history: int | None = None):
        if max_history is not None and max_history < 1:
            raise ValueError("max_history must be >= 1")
        self.max_history = max_history
        self.history: dict[str, RetryState] = {}

    def _track(self, name: str) -> RetryState:
        self.history.pop(name, None)
        state = self.history[name] = RetryState(operation=name)
        if self.max_history is not None:
            while len(self.history) > self.max_history:
                del self.history[next(iter(self.history))]
        return state

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        policy: RetryPolicy | None = None,
        operation: str | None = None,
        **kwargs,
    ) -> T:
        policy = policy or DEFAULT_RETRY_POLICY
        name = operation or getattr(func, "__name__", "operation")
        state = self._track(name)
        runs = policy.max_attempts + 1

        attempt = 0
        while True:
            state.attempt = attempt
            logger.debug(f"{name}: run {attempt + 1}/{runs}")
            try:
                result = await func(*args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                state.record_attempt(exception=e)
                fatal = isinstance(e, FatalError)
                if not fatal and policy.should_retry(e, attempt):
                    delay = policy.get_delay(attempt)
                    state.record_delay(delay)
                    logger.warning(f"{name}: run {attempt + 1} raised {type(e).__name__}: {e}; next run in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                state.mark_failure(e)
                if fatal or not policy.is_retryable(e):
                    raise
                logger.error(f"{name}: giving up after {attempt + 1} runs: {e}")
                raise RetryExhaustedError(f"{name} failed after {attempt + 1} attempts: {e}", attempts=attempt + 1) from e

            state.record_attempt()
            state.mark_success()
            if attempt:
                logger.info(f"{name}: succeeded on run {attempt + 1}")
            return result

    def get_state(self, operation: str) -> RetryState | None:
        return self.history.get(operation)

    def stats(self) -> dict[str, Any]:
        states = list(self.history.values())
        return {
            "operations": len(states),
            "retried": sum(1 for s in states if s.total_attempts > 1),
            "failed": sum(1 for s in states if not s.succeeded),
        }
