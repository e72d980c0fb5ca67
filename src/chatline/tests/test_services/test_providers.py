import json

import httpx
import pytest

from chatline.config.settings import Settings
from chatline.exceptions.generation import GenerationError, GenerationErrorKind
from chatline.services.providers import (
    GeminiProvider,
    MockProvider,
    build_provider,
    classify_http_error,
)


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def make_gemini(handler) -> GeminiProvider:
    return GeminiProvider(
        api_key="test-key",
        model="gemini-test",
        base_url="https://gemini.test",
        transport=httpx.MockTransport(handler),
    )


class TestGeminiProvider:

    async def test_sends_history_and_prompt(self):
        """
        Behavior:
            - History is sent oldest first with "user"/"model" roles, followed by
              the prompt as the final user turn.
            - The API key travels in the x-goog-api-key header, not the URL.
            - The reply text of the first candidate is returned.
        """
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=gemini_reply("Hi there"))

        provider = make_gemini(handler)
        history = [{"role": "user", "content": "Hello"}, {"role": "model", "content": "Hi!"}]

        text = await provider.generate("How are you?", history)

        assert text == "Hi there"
        assert seen["url"] == "https://gemini.test/v1beta/models/gemini-test:generateContent"
        assert "key=" not in seen["url"]
        assert seen["key"] == "test-key"
        assert [c["role"] for c in seen["body"]["contents"]] == ["user", "model", "user"]
        assert seen["body"]["contents"][-1]["parts"][0]["text"] == "How are you?"

    @pytest.mark.parametrize(
        "status, body, kind, retryable",
        [
            (429, {"error": {"status": "RESOURCE_EXHAUSTED"}}, GenerationErrorKind.RATE_LIMITED, True),
            (400, {"error": {"status": "INVALID_ARGUMENT", "details": [{"reason": "API_KEY_INVALID"}]}},
             GenerationErrorKind.UNAUTHORIZED, False),
            (403, {"error": {"status": "PERMISSION_DENIED"}}, GenerationErrorKind.FORBIDDEN, False),
            (404, {"error": {"status": "NOT_FOUND"}}, GenerationErrorKind.NOT_FOUND, False),
            (504, None, GenerationErrorKind.TIMEOUT, True),
            (503, {"error": {"status": "UNAVAILABLE"}}, GenerationErrorKind.UNKNOWN, True),
            (400, {"error": {"status": "INVALID_ARGUMENT"}}, GenerationErrorKind.UNKNOWN, False),
        ],
    )
    async def test_error_responses_are_classified(self, status, body, kind, retryable):
        def handler(request):
            if body is None:
                return httpx.Response(status, text="gateway timeout")
            return httpx.Response(status, json=body)

        with pytest.raises(GenerationError) as exc_info:
            await make_gemini(handler).generate("Hello", [])

        assert exc_info.value.kind is kind
        assert exc_info.value.retryable is retryable

    async def test_connection_failure_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GenerationError) as exc_info:
            await make_gemini(handler).generate("Hello", [])

        assert exc_info.value.kind is GenerationErrorKind.UNKNOWN
        assert exc_info.value.retryable is True

    async def test_read_timeout_maps_to_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(GenerationError) as exc_info:
            await make_gemini(handler).generate("Hello", [])

        assert exc_info.value.kind is GenerationErrorKind.TIMEOUT

    async def test_blocked_prompt_is_terminal(self):
        def handler(request):
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        with pytest.raises(GenerationError) as exc_info:
            await make_gemini(handler).generate("Hello", [])

        assert exc_info.value.retryable is False


def test_classify_http_error_without_body():
    assert classify_http_error(401, None).kind is GenerationErrorKind.UNAUTHORIZED
    assert classify_http_error(500, None).retryable is True


class TestMockProvider:

    @pytest.mark.parametrize(
        "prompt, expected",
        [
            ("Hello there", "Hello! I'm a simplified mock version"),
            ("What is Python?", "That's an interesting question"),
            ("I need help", "I'd be happy to help!"),
            ("Tell me a story", 'I received your message: "Tell me a story"'),
        ],
    )
    async def test_canned_replies(self, prompt, expected, sleep_recorder):
        provider = MockProvider(latency=0.5, sleep=sleep_recorder)

        reply = await provider.generate(prompt, [])

        assert reply.startswith(expected)
        assert sleep_recorder.delays == [0.5]

    def test_greeting_matches_whole_words_only(self):
        # "this" contains "hi" but is not a greeting
        assert not MockProvider.reply_for("this works").startswith("Hello!")


class TestBuildProvider:

    def test_gemini_with_key(self):
        provider = build_provider(Settings(GENERATION_PROVIDER="gemini", GEMINI_API_KEY="k"))
        assert isinstance(provider, GeminiProvider)

    def test_gemini_without_key_falls_back_to_mock(self):
        provider = build_provider(Settings(GENERATION_PROVIDER="gemini", GEMINI_API_KEY=None))
        assert isinstance(provider, MockProvider)
