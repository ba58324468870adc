"""
LLM Fallback Chain — Ordered Provider Failover with Circuit Breakers

Each completion is tried against providers in an order chosen per request:

  fallback     (default) fixed priority order from settings
               (openai → anthropic → gemini)
  cost         cheapest blended price per 1K tokens first
  performance  highest quality_score first

A preferred provider, when supplied, always goes first; the rest follow in
the strategy's order. The first successful completion wins.

Failover policy:
  - Any provider failure (timeout, quota, auth, malformed/empty response)
    moves immediately to the next provider. No backoff.
  - Per-attempt timeout: settings.llm_timeout_seconds.
  - Exhausting every provider raises QueryError carrying one
    ProviderFailure per provider, in the order they were tried.

Circuit breaker (one per provider, in-process):
  CLOSED     calls pass through; consecutive failures are counted
  OPEN       after `threshold` consecutive failures; calls are rejected
             immediately with reason "circuit open" until the cooldown ends
  HALF_OPEN  after the cooldown one trial call is admitted; success closes
             the circuit, failure re-opens it for another cooldown; a
             cancelled trial is released so the next request may try again
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping

from docuquery.core.config import settings
from docuquery.core.exceptions import ProviderFailure, QueryError
from docuquery.llm.providers import PROVIDER_SPECS, Completion, LLMProvider, ProviderSpec

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    FALLBACK    = "fallback"
    COST        = "cost"
    PERFORMANCE = "performance"


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

class CircuitState(str, Enum):
    CLOSED    = "closed"
    OPEN      = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:

    def __init__(
        self,
        threshold:     int = 3,
        reset_seconds: float = 60.0,
        clock:         Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold     = threshold
        self.reset_seconds = reset_seconds
        self._clock        = clock
        self.failures      = 0
        self.state         = CircuitState.CLOSED
        self._open_until   = 0.0
        self._trial_in_flight = False

    def allow(self) -> bool:
        """True if a call may be attempted now."""
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            if self._clock() < self._open_until:
                return False
            self.state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
        # HALF_OPEN: exactly one trial at a time
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def record_success(self) -> None:
        self.failures = 0
        self.state    = CircuitState.CLOSED
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self.failures += 1
        self._trial_in_flight = False
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.threshold:
            self.state       = CircuitState.OPEN
            self._open_until = self._clock() + self.reset_seconds

    def release(self) -> None:
        """Give back an admitted call that ended without an outcome (e.g. cancelled)."""
        self._trial_in_flight = False


# ---------------------------------------------------------------------------
# FallbackChain
# ---------------------------------------------------------------------------

@dataclass
class ChainResult:
    completion: Completion
    provider:   str
    failures:   list[ProviderFailure]

    @property
    def model(self) -> str:
        return self.completion.model or self.provider


class FallbackChain:
    """
    Ordered chain of LLM providers with automatic failover.

    Usage::

        chain  = FallbackChain(build_providers())
        result = await chain.complete(prompt, context, strategy="cost")
        result.completion.text, result.provider

    Safe to share across requests; circuit state is per chain instance.
    """

    def __init__(
        self,
        providers:      Mapping[str, LLMProvider],
        default_order:  list[str] | None = None,
        specs:          Mapping[str, ProviderSpec] | None = None,
        timeout:        float | None = None,
        threshold:      int | None = None,
        reset_seconds:  float | None = None,
        clock:          Callable[[], float] = time.monotonic,
    ) -> None:
        self._providers = dict(providers)
        order = default_order or settings.llm_provider_order
        # configured order first, then any extra providers in registration order
        self._default_order = [n for n in order if n in self._providers] + [
            n for n in self._providers if n not in order
        ]
        self._specs   = dict(specs or PROVIDER_SPECS)
        self._timeout = timeout or settings.llm_timeout_seconds
        self.breakers = {
            name: CircuitBreaker(
                threshold=threshold or settings.circuit_failure_threshold,
                reset_seconds=reset_seconds or settings.circuit_reset_seconds,
                clock=clock,
            )
            for name in self._providers
        }

    def order(self, strategy: str | Strategy = Strategy.FALLBACK, preferred: str | None = None) -> list[str]:
        """Provider names in the order they will be tried."""
        strategy = Strategy(strategy)
        names = list(self._default_order)

        if strategy == Strategy.COST:
            names.sort(key=lambda n: self._spec_cost(n))
        elif strategy == Strategy.PERFORMANCE:
            names.sort(key=lambda n: self._spec_quality(n), reverse=True)

        if preferred:
            if preferred not in self._providers:
                raise ValueError(f"Unknown LLM provider: {preferred!r}")
            names.remove(preferred)
            names.insert(0, preferred)
        return names

    def _spec_cost(self, name: str) -> float:
        spec = self._specs.get(name)
        return spec.blended_cost_per_1k if spec else float("inf")

    def _spec_quality(self, name: str) -> float:
        spec = self._specs.get(name)
        return spec.quality_score if spec else 0.0

    async def complete(
        self,
        prompt:    str,
        context:   str = "",
        strategy:  str | Strategy = Strategy.FALLBACK,
        preferred: str | None = None,
    ) -> ChainResult:
        """
        Run the chain.

        Raises:
            QueryError: every provider failed; .failures lists each reason.
        """
        failures: list[ProviderFailure] = []

        for name in self.order(strategy, preferred):
            provider = self._providers[name]
            breaker  = self.breakers[name]

            if not provider.configured:
                failures.append(ProviderFailure(name, "not configured"))
                continue
            if not breaker.allow():
                logger.debug("FallbackChain | skipping provider=%s (circuit open)", name)
                failures.append(ProviderFailure(name, "circuit open"))
                continue

            started = time.monotonic()
            try:
                completion = await asyncio.wait_for(
                    provider.complete(prompt, context),
                    timeout=self._timeout,
                )
                if not completion.text or not completion.text.strip():
                    raise ValueError("empty completion")
            except asyncio.TimeoutError:
                reason = f"timed out after {self._timeout}s"
            except Exception as exc:
                reason = f"{type(exc).__name__}: {exc}"
            except BaseException:
                breaker.release()
                raise
            else:
                breaker.record_success()
                logger.info(
                    "FallbackChain | provider=%s model=%s tokens_in=%d tokens_out=%d latency_ms=%.0f",
                    name, completion.model, completion.tokens_in, completion.tokens_out,
                    (time.monotonic() - started) * 1000,
                )
                return ChainResult(completion=completion, provider=name, failures=failures)

            breaker.record_failure()
            logger.warning("FallbackChain | provider=%s failed reason=%s", name, reason)
            failures.append(ProviderFailure(name, reason))

        raise QueryError(failures)
