"""
Resilience & Reliability
=========================
Circuit breaker, retry strategy and provider fallback for calls to the
external text-completion service.
"""

import logging
import time
from threading import Lock
from typing import Any, Callable, List, Optional

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
    wait_exponential,
    retry_if_exception_type,
    retry_if_not_exception_type,
)

logger = logging.getLogger("widget_agent.resilience")


class CircuitBreakerOpen(Exception):
    """Raised instead of calling the service while the breaker is open."""


class CircuitBreaker:
    """Circuit breaker around LLM calls.

    After ``failure_threshold`` consecutive failures every call is refused
    with :class:`CircuitBreakerOpen` until ``recovery_timeout`` seconds have
    passed, then one trial call is let through (half-open).

    Args:
        name: Label used in log messages.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str = "llm",
        failure_threshold: float = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = self.CLOSED
        self.lock = Lock()

    @classmethod
    def from_config(cls, config=None, name: str = "llm") -> "CircuitBreaker":
        """Build a breaker from :class:`ProductionConfig` settings."""
        if config is None:
            from widget_agent.config import get_config
            config = get_config().production
        return cls(
            name=name,
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
        )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        with self.lock:
            if self.state == self.OPEN:
                if self._should_attempt_reset():
                    self.state = self.HALF_OPEN
                else:
                    raise CircuitBreakerOpen(
                        f"Circuit breaker {self.name!r} is open; skipping call"
                    )

        try:
            result = func(*args, **kwargs)
            self._on_success()
            return result
        except self.expected_exception:
            self._on_failure()
            raise

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return time.monotonic() - self.last_failure_time >= self.recovery_timeout

    def _on_success(self):
        with self.lock:
            self.failure_count = 0
            if self.state == self.HALF_OPEN:
                logger.info("Circuit breaker %s closed (recovered)", self.name)
            self.state = self.CLOSED

    def _on_failure(self):
        with self.lock:
            self.failure_count += 1
            self.last_failure_time = time.monotonic()
            if self.failure_count >= self.failure_threshold:
                if self.state != self.OPEN:
                    logger.error(
                        "Circuit breaker %s open after %d failures",
                        self.name, self.failure_count,
                    )
                self.state = self.OPEN


class FallbackChain:
    """Tries named providers in order until one returns."""

    def __init__(self, providers: List[str]):
        """Initialize fallback chain.

        Args:
            providers: Provider names in order of preference.
        """
        self.providers = providers

    def execute(self, provider_funcs: dict) -> Any:
        """Execute with fallback chain.

        Args:
            provider_funcs: Dict mapping provider name to callable.

        Raises:
            RuntimeError: If every provider raised (or none was registered).
        """
        last_error = None

        for provider in self.providers:
            if provider not in provider_funcs:
                continue

            try:
                logger.info("Attempting provider: %s", provider)
                result = provider_funcs[provider]()
                logger.info("Success with provider: %s", provider)
                return result

            except Exception as e:
                logger.warning("Provider %s failed: %s", provider, e)
                last_error = e
                continue

        raise RuntimeError(
            f"All providers in fallback chain failed. Last error: {last_error}"
        )


def resilient_api_call(
    max_retries: int = 3,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    expected_exception: type = Exception,
):
    """Decorator: retry with exponential backoff and optional jitter.

    Args:
        max_retries: Maximum number of attempts.
        backoff_factor: Multiplier for exponential backoff.
        jitter: Whether to add random jitter to the wait time.
        expected_exception: Exception type to catch and retry on.

    Returns:
        Decorated function.  After the last attempt the original exception
        is re-raised.  An open breaker is never retried.
    """
    def decorator(func: Callable) -> Callable:
        wait_strategy = (
            wait_exponential_jitter(
                initial=1, max=60, jitter=5
            ) if jitter else wait_exponential(
                multiplier=backoff_factor, min=1, max=60
            )
        )

        return retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_strategy,
            retry=(
                retry_if_exception_type(expected_exception)
                & retry_if_not_exception_type(CircuitBreakerOpen)
            ),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "Retry attempt %d for %s after %s",
                rs.attempt_number, getattr(func, "__name__", "call"),
                rs.outcome.exception(),
            ),
        )(func)

    return decorator
