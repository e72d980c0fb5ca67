"""
Client reconciliation engine.

`ChatStore` holds what a chat UI displays and keeps it consistent with the
server across the send protocol:

    IDLE --send--> SENDING --Completed / Failed / error--> IDLE
                           --Processing--> POLLING --reply / budget spent--> IDLE

A send inserts a temporary message right away. The server's answer then
settles it: the temporary message is replaced by the confirmed one and, for
`Processing`, a poller re-reads the conversation until the reply shows up or
the poll budget runs out. Messages are always merged by id and ordered by
timestamp, never by position.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from .api import ApiRequestError, ChatApi, TransientNetworkError
from .models import (
    Completed,
    ConversationSummary,
    ConversationView,
    Failed,
    MessageView,
    Processing,
    SendOutcome,
    merge_messages,
    new_temporary_message,
)

logger = logging.getLogger(__name__)

SOFT_TIMEOUT_NOTICE = "The response is taking longer than expected. Please refresh or try again."
SEND_FAILED_MESSAGE = "Failed to send message"


class SyncPhase(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    POLLING = "polling"


def reply_arrived(conversation: ConversationView, awaited: MessageView) -> bool:
    """True when the newest message is an AI reply stamped after `awaited`."""
    if not conversation.messages:
        return False
    last = conversation.messages[-1]
    return last.is_ai and last.id != awaited.id and last.timestamp > awaited.timestamp


class ChatStore:
    """
    Observable chat state plus the actions that change it.

    Args:
        api: HTTP client
        poll_interval: seconds slept before each poll read
        max_poll_attempts: poll reads before giving up with a soft notice
        sleep: awaited between polls; tests pass a no-op

    `version` increases every time the displayed conversation changes, so a
    UI (or a test) can tell whether a poll actually re-rendered anything.
    """

    def __init__(
        self,
        api: ChatApi,
        *,
        poll_interval: float = 2.0,
        max_poll_attempts: int = 30,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api = api
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._sleep = sleep

        self.conversations: list[ConversationSummary] = []
        self.current_conversation: ConversationView | None = None
        self.is_loading = False
        self.error: str | None = None
        self.notice: str | None = None
        self.phase = SyncPhase.IDLE
        self.version = 0

        self._pollers: dict[str, asyncio.Task] = {}
        self._send_lock = asyncio.Lock()

    # =================================================================================================================
    # Conversations
    # =================================================================================================================

    async def fetch_conversations(self) -> None:
        self.is_loading, self.error = True, None
        try:
            self.conversations = await self.api.list_conversations()
        except ApiRequestError as exc:
            self.error = exc.detail
        except TransientNetworkError:
            self.error = "Failed to fetch conversations"
        finally:
            self.is_loading = False

    async def fetch_conversation(self, conversation_id: str) -> None:
        self._cancel_pollers(except_for=conversation_id)
        self.is_loading, self.error = True, None
        try:
            self._set_current(await self.api.get_conversation(conversation_id))
        except ApiRequestError as exc:
            self.error = exc.detail
        except TransientNetworkError:
            self.error = "Failed to fetch conversation"
        finally:
            self.is_loading = False

    async def create_conversation(self, title: str | None = None) -> ConversationView:
        """Create, prepend to the list and select. Re-raises after recording the error."""
        self.is_loading, self.error = True, None
        try:
            conversation = await self.api.create_conversation(title)
        except ApiRequestError as exc:
            self.error = exc.detail
            raise
        except TransientNetworkError:
            self.error = "Failed to create conversation"
            raise
        finally:
            self.is_loading = False

        self.conversations = [ConversationSummary.from_conversation(conversation), *self.conversations]
        self.set_current_conversation(conversation)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        self._cancel_poller(conversation_id)
        self.is_loading, self.error = True, None
        try:
            await self.api.delete_conversation(conversation_id)
        except ApiRequestError as exc:
            self.error = exc.detail
            return
        except TransientNetworkError:
            self.error = "Failed to delete conversation"
            return
        finally:
            self.is_loading = False

        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self.current_conversation and self.current_conversation.id == conversation_id:
            self._set_current(None)

    def set_current_conversation(self, conversation: ConversationView | None) -> None:
        self._cancel_pollers(except_for=conversation.id if conversation else None)
        self._set_current(conversation)

    def clear_error(self) -> None:
        self.error = None

    def clear_notice(self) -> None:
        self.notice = None

    # =================================================================================================================
    # Send protocol
    # =================================================================================================================

    async def send_message(self, conversation_id: str, content: str) -> SendOutcome | None:
        """
        Send `content` and reconcile the display with the outcome.

        Returns the server outcome, or None when the send ended in an error
        (recorded in `error`) or was settled by a recovery read.
        """
        async with self._send_lock:
            self._cancel_poller(conversation_id)
            known_ids = {m.id for m in self._messages_of(conversation_id) if not m.is_temporary}

            temp = new_temporary_message(conversation_id, content)
            self._update_messages(conversation_id, lambda msgs: merge_messages(msgs, [temp]))
            self.phase, self.error, self.notice = SyncPhase.SENDING, None, None

            try:
                outcome = await self.api.send_message(conversation_id, content)
            except TransientNetworkError:
                logger.info("client.send.transport_failure", extra={"conversation_id": conversation_id})
                await self._recover(conversation_id, content, known_ids)
                return None
            except ApiRequestError as exc:
                self._drop_temporary(conversation_id)
                self.error = exc.detail
                self.phase = SyncPhase.IDLE
                return None

            if isinstance(outcome, Completed):
                self._confirm(conversation_id, [outcome.user_message, outcome.ai_message])
                self.phase = SyncPhase.IDLE
            elif isinstance(outcome, Processing):
                self._confirm(conversation_id, [outcome.user_message])
                self.phase = SyncPhase.POLLING
                self._start_poller(conversation_id, outcome.user_message)
            elif isinstance(outcome, Failed):
                self._confirm(conversation_id, [outcome.user_message])
                self.error = outcome.error_text
                self.phase = SyncPhase.IDLE
            return outcome

    async def _recover(self, conversation_id: str, content: str, known_ids: set[str]) -> None:
        """
        One silent read after a transport failure, to learn whether the send
        reached the server.
        """
        try:
            conversation = await self.api.get_conversation(conversation_id)
        except (TransientNetworkError, ApiRequestError):
            conversation = None

        sent = None
        if conversation is not None:
            candidates = [
                m for m in conversation.messages
                if m.role == "USER" and m.id not in known_ids and m.content == content.strip()
            ]
            sent = candidates[-1] if candidates else None

        if sent is None:
            self._drop_temporary(conversation_id)
            self.error = SEND_FAILED_MESSAGE
            self.phase = SyncPhase.IDLE
            return

        self._drop_temporary(conversation_id)
        self._replace_display(conversation)
        if reply_arrived(conversation, sent):
            self.phase = SyncPhase.IDLE
        else:
            self.phase = SyncPhase.POLLING
            self._start_poller(conversation_id, sent)

    # =================================================================================================================
    # Polling
    # =================================================================================================================

    def _start_poller(self, conversation_id: str, awaited: MessageView) -> None:
        self._cancel_poller(conversation_id)
        self._pollers[conversation_id] = asyncio.create_task(
            self._poll(conversation_id, awaited), name=f"chat-poll-{conversation_id}"
        )

    async def _poll(self, conversation_id: str, awaited: MessageView) -> None:
        try:
            for attempt in range(1, self.max_poll_attempts + 1):
                await self._sleep(self.poll_interval)
                try:
                    conversation = await self.api.get_conversation(conversation_id)
                except (TransientNetworkError, ApiRequestError) as exc:
                    logger.info(
                        "client.poll.read_failed",
                        extra={"conversation_id": conversation_id, "attempt": attempt, "error": type(exc).__name__},
                    )
                    continue

                if self._display_differs(conversation):
                    self._replace_display(conversation)

                if reply_arrived(conversation, awaited):
                    logger.debug("client.poll.reply_arrived", extra={"conversation_id": conversation_id, "attempt": attempt})
                    self.phase = SyncPhase.IDLE
                    return

            logger.info("client.poll.exhausted", extra={"conversation_id": conversation_id})
            self.phase = SyncPhase.IDLE
            self.notice = SOFT_TIMEOUT_NOTICE
        finally:
            if self._pollers.get(conversation_id) is asyncio.current_task():
                del self._pollers[conversation_id]

    async def wait_for_poller(self, conversation_id: str) -> None:
        task = self._pollers.get(conversation_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def is_polling(self, conversation_id: str) -> bool:
        task = self._pollers.get(conversation_id)
        return task is not None and not task.done()

    def _cancel_poller(self, conversation_id: str) -> None:
        task = self._pollers.pop(conversation_id, None)
        if task is not None and not task.done():
            task.cancel()
            if self.phase is SyncPhase.POLLING:
                self.phase = SyncPhase.IDLE

    def _cancel_pollers(self, except_for: str | None = None) -> None:
        for conversation_id in list(self._pollers):
            if conversation_id != except_for:
                self._cancel_poller(conversation_id)

    async def teardown(self) -> None:
        """Cancel every poller and wait for them to finish."""
        tasks = list(self._pollers.values())
        self._cancel_pollers()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.phase = SyncPhase.IDLE

    # =================================================================================================================
    # Display helpers
    # =================================================================================================================

    def _set_current(self, conversation: ConversationView | None) -> None:
        self.current_conversation = conversation
        self.version += 1

    def _is_current(self, conversation_id: str) -> bool:
        return self.current_conversation is not None and self.current_conversation.id == conversation_id

    def _messages_of(self, conversation_id: str) -> list[MessageView]:
        return list(self.current_conversation.messages) if self._is_current(conversation_id) else []

    def _update_messages(self, conversation_id: str, change: Callable[[list[MessageView]], list[MessageView]]) -> None:
        if not self._is_current(conversation_id):
            return
        current = self.current_conversation
        self._set_current(ConversationView(
            id=current.id,
            title=current.title,
            user_id=current.user_id,
            created_at=current.created_at,
            updated_at=current.updated_at,
            messages=change(list(current.messages)),
        ))

    def _drop_temporary(self, conversation_id: str) -> None:
        self._update_messages(
            conversation_id,
            lambda msgs: [m for m in msgs if not (m.is_temporary and m.conversation_id == conversation_id)],
        )

    def _confirm(self, conversation_id: str, confirmed: list[MessageView]) -> None:
        """Swap the conversation's temporary messages for server-confirmed ones."""
        self._update_messages(
            conversation_id,
            lambda msgs: merge_messages(
                [m for m in msgs if not (m.is_temporary and m.conversation_id == conversation_id)],
                confirmed,
            ),
        )
        self._touch_summary(conversation_id, confirmed[-1])

    def _display_differs(self, conversation: ConversationView) -> bool:
        if not self._is_current(conversation.id):
            return False
        shown = self.current_conversation.messages
        if len(shown) != len(conversation.messages):
            return True
        if not shown:
            return False
        return shown[-1].content != conversation.messages[-1].content

    def _replace_display(self, conversation: ConversationView) -> None:
        if self._is_current(conversation.id):
            pending = [m for m in self.current_conversation.messages if m.is_temporary]
            self._set_current(ConversationView(
                id=conversation.id,
                title=conversation.title,
                user_id=conversation.user_id,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
                messages=merge_messages(conversation.messages, pending),
            ))
        if conversation.messages:
            self._touch_summary(conversation.id, conversation.messages[-1], title=conversation.title)

    def _touch_summary(self, conversation_id: str, last_message: MessageView, title: str | None = None) -> None:
        for summary in self.conversations:
            if summary.id == conversation_id:
                summary.last_message = last_message
                summary.updated_at = max(summary.updated_at, last_message.timestamp)
                if title:
                    summary.title = title
                break
