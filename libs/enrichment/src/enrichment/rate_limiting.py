"""Provider call pacing, retry strategy and circuit breaking.

A ``RateLimiter`` is owned by a single enrichment run and is not shared across
tasks. It answers three questions before and after each provider call:

- How long to wait before the next call (``should_rate_limit``).
- Whether, and after how long, a failed call should be retried
  (``get_retry_strategy``).
- Whether providers are failing fast right now (``is_circuit_open``).
"""

import asyncio
import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import aiohttp

from enrichment.config import EnrichmentConfig
from enrichment.exceptions import ProviderHTTPError

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_DELAY_MS = 1000
DEFAULT_MAX_RETRIES = 3
DEFAULT_CIRCUIT_BREAKER_THRESHOLD = 5
DEFAULT_CIRCUIT_BREAKER_RESET_MS = 60000
DEFAULT_BACKOFF_BASE_MS = 2000
JITTER_RATIO = 0.25


def is_5xx(status: int) -> bool:
    """Return True for server error status codes."""
    return 500 <= status < 600


def is_retryable_status(status: int) -> bool:
    """Return True for status codes worth retrying (429 and 5xx)."""
    return status == 429 or is_5xx(status)


def parse_retry_after(
    value: str | int | float | None, now: datetime | None = None
) -> float | None:
    """Parse a ``Retry-After`` header value into a delay in milliseconds.

    Args:
        value: Header value, either delta-seconds or an HTTP date
        now: Reference time for HTTP dates (defaults to current UTC time)

    Returns:
        Delay in milliseconds (never negative), or None if unparsable
    """
    if value is None:
        return None
    if isinstance(value, int | float):
        return max(0.0, float(value) * 1000)

    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return float(int(text) * 1000)

    try:
        retry_at = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)

    reference = now or datetime.now(UTC)
    return max(0.0, (retry_at - reference).total_seconds() * 1000)


def _header(headers: Mapping[str, Any] | None, name: str) -> Any:
    if not headers:
        return None
    if name in headers:
        return headers[name]
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


@dataclass
class RateLimiterState:
    """Snapshot of limiter state; process-lifetime only, never persisted."""

    consecutive_failures: int = 0
    circuit_open: bool = False
    circuit_opened_at: float | None = None
    last_call_time: float | None = None


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of ``RateLimiter.get_retry_strategy``."""

    should_retry: bool
    delay_ms: float


class RateLimiter:
    """Pacing, retry strategy and circuit breaker for provider calls.

    Args:
        rate_limit_delay_ms: Minimum spacing between call starts.
        max_retries: Retry attempts allowed after the first call.
        circuit_breaker_threshold: Consecutive failures that open the circuit.
        circuit_breaker_reset_ms: How long the circuit stays open.
        backoff_base_ms: Delay of the first exponential backoff step.
        clock: Monotonic time source in seconds.
        rng: Random source for backoff jitter.

    Raises:
        ValueError: If a delay is negative or the threshold is below 1.
    """

    def __init__(
        self,
        *,
        rate_limit_delay_ms: float = DEFAULT_RATE_LIMIT_DELAY_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        circuit_breaker_threshold: int = DEFAULT_CIRCUIT_BREAKER_THRESHOLD,
        circuit_breaker_reset_ms: float = DEFAULT_CIRCUIT_BREAKER_RESET_MS,
        backoff_base_ms: float = DEFAULT_BACKOFF_BASE_MS,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        if rate_limit_delay_ms < 0:
            raise ValueError("rate_limit_delay_ms must be >= 0")  # noqa: TRY003
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")  # noqa: TRY003
        if circuit_breaker_threshold < 1:
            raise ValueError("circuit_breaker_threshold must be >= 1")  # noqa: TRY003
        if circuit_breaker_reset_ms < 0:
            raise ValueError("circuit_breaker_reset_ms must be >= 0")  # noqa: TRY003
        if backoff_base_ms < 0:
            raise ValueError("backoff_base_ms must be >= 0")  # noqa: TRY003

        self.rate_limit_delay_ms = float(rate_limit_delay_ms)
        self.max_retries = int(max_retries)
        self.circuit_breaker_threshold = int(circuit_breaker_threshold)
        self.circuit_breaker_reset_ms = float(circuit_breaker_reset_ms)
        self.backoff_base_ms = float(backoff_base_ms)
        self._clock = clock
        self._rng = rng or random.Random()
        self._state = RateLimiterState()

    @classmethod
    def from_config(
        cls,
        config: EnrichmentConfig,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> "RateLimiter":
        """Build a limiter from an ``EnrichmentConfig``."""
        return cls(
            rate_limit_delay_ms=config.rate_limit_delay_ms,
            max_retries=config.max_retries,
            circuit_breaker_threshold=config.circuit_breaker_threshold,
            circuit_breaker_reset_ms=config.circuit_breaker_reset_ms,
            clock=clock,
            rng=rng,
        )

    def _now_ms(self) -> float:
        return self._clock() * 1000

    # ------------------------------------------------------------------
    # Pacing
    # ------------------------------------------------------------------

    def should_rate_limit(self) -> float:
        """Milliseconds to wait before the next call (0 when no wait is needed)."""
        if self._state.last_call_time is None:
            return 0.0
        elapsed = self._now_ms() - self._state.last_call_time
        if elapsed < self.rate_limit_delay_ms:
            return self.rate_limit_delay_ms - elapsed
        return 0.0

    def record_call(self) -> None:
        """Record the start of a provider call."""
        self._state.last_call_time = self._now_ms()

    async def wait_for_slot(self) -> None:
        """Sleep out any pacing delay, then record the call start."""
        wait_ms = self.should_rate_limit()
        if wait_ms > 0:
            logger.debug(f"Rate limiting: waiting {wait_ms:.0f}ms")
            await asyncio.sleep(wait_ms / 1000)
        self.record_call()

    # ------------------------------------------------------------------
    # Retry strategy
    # ------------------------------------------------------------------

    def backoff_ms(self, attempt: int) -> float:
        """Exponential backoff for a 1-based attempt with +/-25% jitter."""
        base = self.backoff_base_ms * (2 ** max(0, attempt - 1))
        jitter = (self._rng.random() - 0.5) * 2 * base * JITTER_RATIO
        return base + jitter

    def get_retry_strategy(
        self,
        status: int,
        headers: Mapping[str, Any] | None = None,
        attempt: int = 1,
    ) -> RetryDecision:
        """Decide whether a response should be retried and after how long.

        Successful and non-retryable statuses never retry. A parsable
        ``Retry-After`` header takes precedence over exponential backoff.

        Args:
            status: HTTP status of the failed call
            headers: Response headers (case-insensitive lookup)
            attempt: 1-based attempt number that just failed

        Returns:
            RetryDecision with the delay in milliseconds
        """
        if 200 <= status < 300 or not is_retryable_status(status):
            return RetryDecision(should_retry=False, delay_ms=0.0)

        retry_after_ms = parse_retry_after(_header(headers, "Retry-After"))
        if retry_after_ms is not None:
            return RetryDecision(should_retry=True, delay_ms=retry_after_ms)

        return RetryDecision(should_retry=True, delay_ms=self.backoff_ms(attempt))

    def should_retry_attempt(self, attempt: int) -> bool:
        """Return True while ``attempt`` (1-based) is within ``max_retries``."""
        return attempt <= self.max_retries

    def is_retryable_error(self, error: Exception) -> bool:
        """Classify a provider exception as retryable.

        HTTP errors retry on 429/5xx only. Timeouts and connection failures
        always retry.
        """
        if isinstance(error, ProviderHTTPError):
            return is_retryable_status(error.status)
        return isinstance(
            error,
            asyncio.TimeoutError | TimeoutError | ConnectionError | aiohttp.ClientConnectionError,
        )

    def retry_delay_ms(self, error: Exception, attempt: int) -> float:
        """Delay before retrying after ``error`` on the given 1-based attempt."""
        if isinstance(error, ProviderHTTPError):
            decision = self.get_retry_strategy(
                error.status, {"Retry-After": error.retry_after}, attempt
            )
            if decision.should_retry:
                return decision.delay_ms
        return self.backoff_ms(attempt)

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def is_circuit_open(self) -> bool:
        """Return True while the circuit is open.

        Once the cool-down has elapsed the circuit closes and the failure
        counter is reset.
        """
        if not self._state.circuit_open:
            return False

        opened_at = self._state.circuit_opened_at or 0.0
        if self._now_ms() - opened_at >= self.circuit_breaker_reset_ms:
            logger.info("Circuit breaker cool-down elapsed, closing circuit")
            self.reset_circuit_breaker()
            return False
        return True

    def record_failure(self) -> None:
        """Count a failed call; opens the circuit at the threshold."""
        self._state.consecutive_failures += 1
        if (
            self._state.consecutive_failures >= self.circuit_breaker_threshold
            and not self._state.circuit_open
        ):
            self._state.circuit_open = True
            self._state.circuit_opened_at = self._now_ms()
            logger.warning(
                f"Circuit breaker opened after {self._state.consecutive_failures} "
                f"consecutive failures (cool-down {self.circuit_breaker_reset_ms:.0f}ms)"
            )

    def record_success(self) -> None:
        """Reset the failure counter and close the circuit."""
        self.reset_circuit_breaker()

    def reset_circuit_breaker(self) -> None:
        self._state.consecutive_failures = 0
        self._state.circuit_open = False
        self._state.circuit_opened_at = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_state(self) -> RateLimiterState:
        """Return a copy of the current state."""
        return replace(self._state)

    def reset(self) -> None:
        """Clear all state, including the last call time."""
        self._state = RateLimiterState()
