"""
Rate-limited, retrying execution of single remote operations.

The retry policy is a small state machine (RetryState) so it can be unit
tested without a network or a clock; RateLimitedExecutor drives it and owns
the actual sleeping.
"""
import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from termsync.errors import ApiError, RequestFailedError
from termsync.progress import SyncObserver

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_MAX_JITTER_MS = 5000


class RetryPhase(enum.Enum):
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    # Non-retryable failure; the operation is not tried again.
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    max_jitter_ms: int = DEFAULT_MAX_JITTER_MS

    def compute_wait_ms(self, retry_index: int, min_delay_ms: int,
                        retry_hint_ms: Optional[int], jitter_ms: int) -> int:
        """
        Wait before retry number ``retry_index`` (0 for the first retry).

        max(min_delay, server hint, min_delay * 2^retry_index) + jitter
        """
        backoff = min_delay_ms * (2 ** retry_index)
        return max(min_delay_ms, retry_hint_ms or 0, backoff) + jitter_ms

    def draw_jitter_ms(self) -> int:
        return int(random.uniform(0, self.max_jitter_ms))


@dataclass
class RetryState:
    """
    Retry bookkeeping for one operation.

    Transitions:
        ATTEMPTING --success--> SUCCEEDED
        ATTEMPTING --retryable failure, attempts left--> BACKING_OFF
        ATTEMPTING --retryable failure, no attempts left--> EXHAUSTED
        ATTEMPTING --any other failure--> FAILED
        BACKING_OFF --resume--> ATTEMPTING
    """
    policy: RetryPolicy
    min_delay_ms: int
    jitter: Optional[Callable[[], int]] = None
    phase: RetryPhase = RetryPhase.ATTEMPTING
    attempts: int = 0
    wait_ms: int = 0
    retry_hint_ms: Optional[int] = None
    last_error: Optional[Exception] = field(default=None, repr=False)

    def _require(self, expected: RetryPhase) -> None:
        if self.phase is not expected:
            raise RuntimeError(f"Invalid retry transition from {self.phase.value}")

    def record_success(self) -> RetryPhase:
        self._require(RetryPhase.ATTEMPTING)
        self.attempts += 1
        self.phase = RetryPhase.SUCCEEDED
        return self.phase

    def record_failure(self, error: Exception) -> RetryPhase:
        self._require(RetryPhase.ATTEMPTING)
        self.attempts += 1
        self.last_error = error

        if not isinstance(error, ApiError) or not error.retryable:
            self.phase = RetryPhase.FAILED
            return self.phase
        if self.attempts >= self.policy.max_attempts:
            self.phase = RetryPhase.EXHAUSTED
            return self.phase

        self.retry_hint_ms = error.retry_after_ms
        jitter_ms = self.jitter() if self.jitter else self.policy.draw_jitter_ms()
        self.wait_ms = self.policy.compute_wait_ms(
            self.attempts - 1, self.min_delay_ms, self.retry_hint_ms, jitter_ms
        )
        self.phase = RetryPhase.BACKING_OFF
        return self.phase

    def resume(self) -> RetryPhase:
        self._require(RetryPhase.BACKING_OFF)
        self.phase = RetryPhase.ATTEMPTING
        return self.phase


def describe_failure(error: ApiError, state: RetryState) -> str:
    """Build the caller-facing message for a definitively failed operation."""
    status = f" (status {error.status})" if error.status else ""
    message = f"POEditor API error{status}: {error.message}"
    if state.phase is RetryPhase.EXHAUSTED:
        message += f" (gave up after {state.attempts} attempts)"
    return message


class RateLimitedExecutor:
    """
    Runs one remote operation at a time.

    After a successful call the executor sleeps for ``min_delay_ms`` before
    returning, so consecutive calls made through it are always at least that
    far apart regardless of how long each call took. Throttled (429) and
    unavailable (503) responses are retried with exponential backoff and
    jitter; other errors are raised at once.
    """

    def __init__(self, policy: Optional[RetryPolicy] = None,
                 observer: Optional[SyncObserver] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 jitter: Optional[Callable[[], int]] = None):
        self.policy = policy or RetryPolicy()
        self.observer = observer or SyncObserver()
        self._sleep = sleep
        self._jitter = jitter
        self._lock = asyncio.Lock()

    async def run(self, operation: Callable[[], Awaitable[T]], min_delay_ms: int) -> T:
        """
        Execute ``operation`` with retries, then enforce the post-call spacing.

        Raises:
            RequestFailedError: On a non-retryable ApiError or once retries are
                exhausted. Exceptions that are not ApiErrors propagate unchanged.
        """
        if min_delay_ms < 0:
            raise ValueError("min_delay_ms must not be negative")

        async with self._lock:
            state = RetryState(policy=self.policy, min_delay_ms=min_delay_ms, jitter=self._jitter)
            while True:
                try:
                    result = await operation()
                except ApiError as api_exc:
                    phase = state.record_failure(api_exc)
                    if phase is RetryPhase.BACKING_OFF:
                        self.observer.on_retry(state.attempts, self.policy.max_attempts, state.wait_ms, api_exc)
                        await self._sleep(state.wait_ms / 1000)
                        state.resume()
                        continue
                    message = describe_failure(api_exc, state)
                    logger.debug("Operation failed in state %s: %s", phase.value, message)
                    raise RequestFailedError(
                        message, status=api_exc.status, kind=api_exc.kind, attempts=state.attempts
                    ) from api_exc

                state.record_success()
                await self._sleep(min_delay_ms / 1000)
                return result
