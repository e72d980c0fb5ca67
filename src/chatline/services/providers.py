"""
Generation providers.

A provider turns (prompt, history) into reply text with a single call and no
retries. Transport and API failures are classified here into
`GenerationError`s; retrying is the job of `GenerationClient`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Literal, Protocol, Sequence, TypedDict

import httpx

from chatline.config.settings import Settings
from chatline.exceptions.generation import GenerationError, GenerationErrorKind

logger = logging.getLogger(__name__)


class HistoryEntry(TypedDict):
    role: Literal["user", "model"]
    content: str


class GenerationProvider(Protocol):
    name: str

    async def generate(self, prompt: str, history: Sequence[HistoryEntry]) -> str:
        ...


# =================================================================================================================
# Gemini
# =================================================================================================================

def classify_http_error(status_code: int, body: dict | None) -> GenerationError:
    """
    Map a Gemini HTTP error response to a GenerationError.

    Gemini error bodies look like:
        {"error": {"code": 400, "message": "...", "status": "INVALID_ARGUMENT",
                   "details": [{"reason": "API_KEY_INVALID", ...}]}}
    """
    error = (body or {}).get("error") or {}
    status = str(error.get("status") or "")
    reasons = {str(d.get("reason")) for d in error.get("details") or [] if isinstance(d, dict)}
    provider_message = str(error.get("message") or "")

    if status_code == 401 or "API_KEY_INVALID" in reasons or status == "UNAUTHENTICATED":
        return GenerationError(GenerationErrorKind.UNAUTHORIZED)
    if status_code == 429 or status == "RESOURCE_EXHAUSTED":
        return GenerationError(GenerationErrorKind.RATE_LIMITED)
    if status_code == 403 or status == "PERMISSION_DENIED":
        return GenerationError(GenerationErrorKind.FORBIDDEN)
    if status_code == 404 or status == "NOT_FOUND":
        return GenerationError(GenerationErrorKind.NOT_FOUND)
    if status_code in (408, 504) or status == "DEADLINE_EXCEEDED":
        return GenerationError(GenerationErrorKind.TIMEOUT)
    if status_code >= 500:
        return GenerationError(GenerationErrorKind.UNKNOWN, "AI service temporarily unavailable", retryable=True)

    # Remaining 4xx: the request itself is wrong, retrying will not help
    logger.warning(
        "gemini.request_rejected",
        extra={"status_code": status_code, "provider_status": status, "provider_message": provider_message[:200]},
    )
    return GenerationError(GenerationErrorKind.UNKNOWN, retryable=False)


class GeminiProvider:
    """
    Google Gemini `generateContent` over plain HTTPS.

    `transport` is passed through to `httpx.AsyncClient`; tests hand in an
    `httpx.MockTransport`.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    @staticmethod
    def build_payload(prompt: str, history: Sequence[HistoryEntry]) -> dict:
        contents = [
            {"role": entry["role"], "parts": [{"text": entry["content"]}]}
            for entry in history
        ]
        contents.append({"role": "user", "parts": [{"text": prompt}]})
        return {"contents": contents}

    @staticmethod
    def extract_text(data: dict) -> str:
        """Join the text parts of the first candidate. Blocked or empty replies are terminal errors."""
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise GenerationError(
                GenerationErrorKind.UNKNOWN,
                "The AI service declined to answer this message",
                retryable=False,
            )

        candidates = data.get("candidates") or []
        if not candidates:
            raise GenerationError(GenerationErrorKind.UNKNOWN, "Empty response from AI service", retryable=False)

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts).strip()
        if not text:
            raise GenerationError(GenerationErrorKind.UNKNOWN, "Empty response from AI service", retryable=False)
        return text

    async def generate(self, prompt: str, history: Sequence[HistoryEntry]) -> str:
        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.endpoint,
                    json=self.build_payload(prompt, history),
                    headers={"x-goog-api-key": self.api_key},
                )
        except httpx.TimeoutException as exc:
            raise GenerationError(GenerationErrorKind.TIMEOUT) from exc
        except httpx.TransportError as exc:
            logger.warning("gemini.transport_error", extra={"error": type(exc).__name__})
            raise GenerationError(
                GenerationErrorKind.UNKNOWN, "Could not reach AI service", retryable=True
            ) from exc

        latency_ms = int((time.monotonic() - t0) * 1000)

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            error = classify_http_error(resp.status_code, body)
            logger.info(
                "gemini.error_response",
                extra={
                    "status_code": resp.status_code,
                    "kind": error.kind.value,
                    "retryable": error.retryable,
                    "latency_ms": latency_ms,
                },
            )
            raise error

        try:
            data = resp.json()
        except ValueError as exc:
            raise GenerationError(
                GenerationErrorKind.UNKNOWN, "Malformed response from AI service", retryable=True
            ) from exc

        text = self.extract_text(data)
        logger.debug("gemini.response", extra={"latency_ms": latency_ms, "model": self.model})
        return text


# =================================================================================================================
# Mock
# =================================================================================================================

class MockProvider:
    """
    Canned replies with simulated latency, for local development without an API key.
    """

    name = "mock"

    def __init__(self, latency: float = 0.5, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.latency = latency
        self._sleep = sleep

    @staticmethod
    def reply_for(prompt: str) -> str:
        lowered = prompt.lower()
        words = set(lowered.replace("!", " ").replace(",", " ").replace(".", " ").split())

        if words & {"hello", "hi", "hey"}:
            return "Hello! I'm a simplified mock version of the Gemini AI. How can I help you today?"
        if "?" in lowered:
            return (
                f'That\'s an interesting question about "{prompt.replace("?", "")}". '
                "As a mock AI, I would normally provide a thoughtful answer here based on my training data."
            )
        if "help" in words:
            return "I'd be happy to help! Please let me know what specific information or assistance you need."
        return (
            f'I received your message: "{prompt}"\n\n'
            "In a real implementation, I would generate a contextually relevant response based on your "
            "input and any conversation history. This is just a mock response for testing the chat interface."
        )

    async def generate(self, prompt: str, history: Sequence[HistoryEntry]) -> str:
        if self.latency > 0:
            await self._sleep(self.latency)
        return self.reply_for(prompt)


def build_provider(settings: Settings) -> GenerationProvider:
    """Provider selected by `GENERATION_PROVIDER`; Gemini without an API key falls back to the mock."""
    if settings.GENERATION_PROVIDER == "gemini":
        if settings.GEMINI_API_KEY:
            return GeminiProvider(
                api_key=settings.GEMINI_API_KEY,
                model=settings.GEMINI_MODEL,
                base_url=settings.GEMINI_BASE_URL,
                timeout=settings.GENERATION_TIMEOUT_SECONDS,
            )
        logger.error("generation.provider.missing_api_key", extra={"provider": "gemini", "fallback": "mock"})

    return MockProvider(latency=settings.GENERATION_MOCK_LATENCY_SECONDS)
