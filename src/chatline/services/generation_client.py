"""
Generation client: a provider call wrapped with a hard per-attempt timeout
and exponential backoff retries for transient failures.

    client = GenerationClient(provider, timeout=15.0, max_retries=3)
    text = await client.generate("Hello", history=[])

Retry schedule with the defaults (base 1s, cap 8s): 1s, 2s, 4s. A terminal
failure (bad credentials, unknown model, rejected request) is raised at once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

import httpx

from chatline.config.settings import Settings
from chatline.exceptions.generation import GenerationError, GenerationErrorKind
from .providers import GenerationProvider, HistoryEntry, build_provider

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryState:
    """Progress of one `generate` call. Never persisted."""
    attempt: int = 0
    last_error: GenerationError | None = None
    delay: float = 0.0


def classify_exception(exc: BaseException) -> GenerationError:
    """
    Turn any failure raised during an attempt into a GenerationError.

    Providers already raise classified errors; this covers the per-attempt
    timeout and anything a provider let escape.
    """
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return GenerationError(GenerationErrorKind.TIMEOUT)
    if isinstance(exc, httpx.TransportError):
        return GenerationError(GenerationErrorKind.UNKNOWN, "Could not reach AI service", retryable=True)
    return GenerationError(GenerationErrorKind.UNKNOWN, retryable=False)


class GenerationClient:
    """
    Retrying front for a `GenerationProvider`.

    Args:
        provider: the backend that produces text
        timeout: hard limit for one attempt, in seconds
        max_retries: additional attempts after the first one
        backoff_base / backoff_max: delay before retry N is
            `min(backoff_base * 2**N, backoff_max)`
        sleep: awaited between attempts; tests pass a recorder instead of `asyncio.sleep`
    """

    def __init__(
        self,
        provider: GenerationProvider,
        *,
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 8.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.provider = provider
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep

    def backoff_seconds(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    async def generate(self, prompt: str, history: Sequence[HistoryEntry]) -> str:
        """
        Produce a reply for `prompt` given the prior `history`.

        Raises:
            GenerationError: the terminal error, or the last retryable one once
                retries are exhausted. Its `retryable` flag is preserved so the
                caller can tell "try again later" from "will never work".
        """
        state = RetryState()
        provider_name = getattr(self.provider, "name", type(self.provider).__name__)

        while True:
            t0 = time.monotonic()
            try:
                text = await asyncio.wait_for(
                    self.provider.generate(prompt, history),
                    timeout=self.timeout,
                )
            except Exception as exc:
                error = classify_exception(exc)
                state.last_error = error

                if not error.retryable or state.attempt >= self.max_retries:
                    logger.warning(
                        "generation.failed",
                        extra={
                            "provider": provider_name,
                            "kind": error.kind.value,
                            "retryable": error.retryable,
                            "attempts": state.attempt + 1,
                        },
                    )
                    if error is exc:
                        raise
                    raise error from exc

                state.delay = self.backoff_seconds(state.attempt)
                state.attempt += 1
                logger.info(
                    "generation.retry",
                    extra={
                        "provider": provider_name,
                        "kind": error.kind.value,
                        "attempt": state.attempt,
                        "max_retries": self.max_retries,
                        "delay_s": state.delay,
                    },
                )
                await self._sleep(state.delay)
                continue

            logger.info(
                "generation.success",
                extra={
                    "provider": provider_name,
                    "attempts": state.attempt + 1,
                    "latency_ms": int((time.monotonic() - t0) * 1000),
                },
            )
            return text


def build_generation_client(
    settings: Settings,
    *,
    max_retries: int | None = None,
    provider: GenerationProvider | None = None,
) -> GenerationClient:
    """Client configured from settings. `max_retries` overrides `GENERATION_MAX_RETRIES`."""
    return GenerationClient(
        provider or build_provider(settings),
        timeout=settings.GENERATION_TIMEOUT_SECONDS,
        max_retries=settings.GENERATION_MAX_RETRIES if max_retries is None else max_retries,
        backoff_base=settings.GENERATION_BACKOFF_BASE_SECONDS,
        backoff_max=settings.GENERATION_BACKOFF_MAX_SECONDS,
    )
