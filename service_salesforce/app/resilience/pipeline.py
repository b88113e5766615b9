"""
Resilience pipeline wrapping every outbound Salesforce call.

Each attempt passes the circuit breaker, reaches the transport, is classified,
and is accounted for by the breaker. The outcome is then offered to three
stages in a fixed order:

1. rate-limit: a 429 waits exactly the ``Retry-After`` hint (``2^n`` seconds
   when there was none) and re-attempts, at most ``RATE_LIMIT_MAX_ATTEMPTS``
   times;
2. retry: transient, network and leftover rate-limit failures back off
   exponentially with jitter, at most ``max_retries`` times;
3. give up: the last response is returned to the caller as is, or a
   ``RetryError`` is raised for exhausted network failures.

Rate-limit, authentication and non-retryable outcomes never count as breaker
failures. An open breaker rejects the call before it reaches the transport and
the rejection is not retried.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerState
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, calculate_delay
from service_salesforce.app.config import ResilienceConfig
from service_salesforce.app.resilience.classifier import (
    FailureClassification,
    FailureKind,
    classify_response,
)

RATE_LIMIT_MAX_ATTEMPTS = 3

_BREAKER_GAUGE = {
    CircuitBreakerState.CLOSED: 0,
    CircuitBreakerState.HALF_OPEN: 1,
    CircuitBreakerState.OPEN: 2,
}

SendFunc = Callable[[], Awaitable[httpx.Response]]
SleepFunc = Callable[[float], Awaitable[Any]]


class ResiliencePipeline:
    """Rate-limit wait, retry with backoff and circuit breaking around a send function."""

    def __init__(
        self,
        config: ResilienceConfig,
        circuit_breaker: Optional[CircuitBreaker] = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
        metrics: Optional[MetricsCollector] = None,
        rng: Any = random,
        name: str = "salesforce",
    ) -> None:
        self.config = config
        self.retry_config = RetryConfig(max_retries=config.max_retries, base_delay=config.base_backoff)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=config.circuit_breaker_failure_threshold,
            recovery_timeout=config.circuit_breaker_open_duration,
            name=name,
        )
        self.metrics = metrics
        self.logger = get_logger(f"{name}.resilience")
        self._sleep = sleep
        self._rng = rng

    async def execute(self, send: SendFunc) -> httpx.Response:
        """Run ``send`` under the pipeline and return the final response."""
        retries = 0
        rate_limit_waits = 0

        while True:
            try:
                response, classification = await self._attempt(send)
            except httpx.TransportError as exc:
                if retries >= self.config.max_retries:
                    self.logger.error("Network failure, retries exhausted", attempts=retries + 1, error=str(exc))
                    raise RetryError(
                        f"Network failure after {retries + 1} attempts",
                        last_exception=exc,
                        attempts=retries + 1,
                    ) from exc
                retries += 1
                await self._backoff(retries, reason="network", error=str(exc))
                continue

            if classification is None:
                if retries or rate_limit_waits:
                    self.logger.info("Request succeeded after retry", retries=retries,
                                     rate_limit_waits=rate_limit_waits)
                return response

            if classification.kind is FailureKind.RATE_LIMITED and rate_limit_waits < RATE_LIMIT_MAX_ATTEMPTS:
                rate_limit_waits += 1
                await self._wait_for_rate_limit(classification, rate_limit_waits)
                continue

            if classification.retryable and retries < self.config.max_retries:
                retries += 1
                reason = "rate_limit" if classification.kind is FailureKind.RATE_LIMITED else "transient"
                await self._backoff(retries, reason=reason, status_code=classification.status_code)
                continue

            if classification.retryable:
                self.logger.error(
                    "Retries exhausted",
                    status_code=classification.status_code,
                    kind=classification.kind.value,
                    retries=retries,
                    rate_limit_waits=rate_limit_waits,
                )
            return response

    async def _attempt(self, send: SendFunc) -> Tuple[httpx.Response, Optional[FailureClassification]]:
        """One trip through the breaker to the transport and back."""
        breaker = self.circuit_breaker
        ticket = breaker.before_call()
        settled = False
        try:
            try:
                response = await send()
            except httpx.TransportError:
                breaker.record_failure(ticket)
                settled = True
                raise

            classification = classify_response(response)
            if classification is None:
                breaker.record_success(ticket)
            elif classification.counts_toward_breaker:
                breaker.record_failure(ticket)
            else:
                breaker.record_neutral(ticket)
            settled = True
            return response, classification
        finally:
            if not settled:
                # cancelled or failed outside the transport: free a half-open trial
                breaker.release_trial(ticket)
            self._publish_breaker_state()

    async def _wait_for_rate_limit(self, classification: FailureClassification, wait_number: int) -> None:
        if classification.has_retry_hint:
            delay = float(classification.retry_after_seconds or 0)
            self.logger.warning("Rate limited, waiting as instructed by Retry-After",
                                delay=delay, attempt=wait_number, max_attempts=RATE_LIMIT_MAX_ATTEMPTS)
        else:
            delay = float(2 ** wait_number)
            self.logger.warning("Rate limited without Retry-After, using exponential fallback",
                                delay=delay, attempt=wait_number, max_attempts=RATE_LIMIT_MAX_ATTEMPTS)
        if self.metrics:
            self.metrics.increment_counter("salesforce_retries_total", reason="rate_limit")
        await self._sleep(delay)

    async def _backoff(self, attempt: int, reason: str, **context: Any) -> None:
        delay = calculate_delay(attempt, self.retry_config, rng=self._rng)
        self.logger.warning(
            "Retry attempt failed, waiting before next attempt",
            attempt=attempt,
            max_retries=self.config.max_retries,
            delay=round(delay, 3),
            reason=reason,
            **context
        )
        if self.metrics:
            self.metrics.increment_counter("salesforce_retries_total", reason=reason)
        await self._sleep(delay)

    def _publish_breaker_state(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("salesforce_circuit_breaker_state", _BREAKER_GAUGE[self.circuit_breaker.state])
