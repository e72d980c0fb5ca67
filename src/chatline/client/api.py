"""
Async HTTP client for the chat API.

Failures are split in two:

  - `TransientNetworkError`: the request may or may not have reached the
    server (connection refused, reset, timeout). The caller should reconcile
    by reading state back rather than assume anything.
  - `ApiRequestError`: the server answered with 4xx/5xx. `detail` carries the
    server's message.
"""

import logging
from typing import Any

import httpx

from .models import ConversationSummary, ConversationView, SendOutcome, parse_send_response

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
# A send waits for generation: 4 attempts of 15s, 7s of backoff and a 15s
# title call on the server. The send timeout has to outlast that, otherwise a
# slow but successful send looks like a transport failure.
SEND_TIMEOUT_SECONDS = 90.0


class ApiRequestError(Exception):
    def __init__(self, status_code: int, detail: str, code: str | None = None):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.code = code


class TransientNetworkError(Exception):
    """The request failed below HTTP; its effect on the server is unknown."""


class ChatApi:
    """
    Thin wrapper around `httpx.AsyncClient`.

        async with ChatApi("http://localhost:8000/api/v1", user_id=uid) as api:
            conversation = await api.create_conversation()
            outcome = await api.send_message(conversation.id, "Hello")

    `transport` is passed to httpx; tests use `httpx.MockTransport` or
    `httpx.ASGITransport(app)`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        default_headers = {"Content-Type": "application/json"}
        if user_id:
            default_headers["X-User-ID"] = str(user_id)
        default_headers.update(headers or {})
        self.send_timeout = send_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=default_headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ChatApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.info("client.api.transport_error", extra={"method": method, "path": path, "error": type(exc).__name__})
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc

        if resp.status_code >= 400:
            detail, code = f"Request failed with status {resp.status_code}", None
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = str(body.get("detail") or detail)
                code = body.get("code")
            raise ApiRequestError(resp.status_code, detail, code)

        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # --- conversations ---

    async def list_conversations(self) -> list[ConversationSummary]:
        data = await self._request("GET", "/conversations")
        return [ConversationSummary.from_json(item) for item in data]

    async def get_conversation(self, conversation_id: str) -> ConversationView:
        return ConversationView.from_json(await self._request("GET", f"/conversations/{conversation_id}"))

    async def create_conversation(self, title: str | None = None) -> ConversationView:
        payload = {"title": title} if title else {}
        return ConversationView.from_json(await self._request("POST", "/conversations", json=payload))

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"/conversations/{conversation_id}")

    async def generate_title(self, conversation_id: str) -> str:
        data = await self._request("POST", f"/conversations/{conversation_id}/title")
        return data["title"]

    # --- messages ---

    async def send_message(self, conversation_id: str, content: str) -> SendOutcome:
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            json={"content": content},
            timeout=self.send_timeout,
        )
        return parse_send_response(data)
