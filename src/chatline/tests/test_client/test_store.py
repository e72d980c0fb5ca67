import asyncio

import pytest

from chatline.client.api import ApiRequestError, TransientNetworkError
from chatline.client.models import Completed, Failed, Processing
from chatline.client.store import SEND_FAILED_MESSAGE, SOFT_TIMEOUT_NOTICE, SyncPhase

from ..test_fixtures.client_fixtures import make_conversation, make_message

CID = "conv-1"


def open_conversation(store, *messages):
    conversation = make_conversation(CID, list(messages))
    store.set_current_conversation(conversation)
    return conversation


def shown(store):
    return [(m.role, m.content) for m in store.current_conversation.messages]


class TestOptimisticSend:

    async def test_temporary_message_shown_while_sending(self, make_store, fake_api):
        """
        Behavior:
            - While the send is in flight the message is displayed with a
              temporary id and the phase is SENDING.
            - On Completed the temporary message is replaced by the confirmed
              user message plus the AI reply, phase back to IDLE.

        Importance:
            - The user sees their message immediately and never twice.
        """
        store = make_store()
        open_conversation(store)
        user = make_message(CID, "USER", "Hello", 1)
        ai = make_message(CID, "AI", "Hi there", 2)
        fake_api.send_gate = asyncio.Event()
        fake_api.send_results.append(Completed(user, ai))

        task = asyncio.create_task(store.send_message(CID, "Hello"))
        await asyncio.sleep(0)

        assert store.phase is SyncPhase.SENDING
        assert len(store.current_conversation.messages) == 1
        assert store.current_conversation.messages[0].is_temporary

        fake_api.send_gate.set()
        outcome = await task

        assert isinstance(outcome, Completed)
        assert store.phase is SyncPhase.IDLE
        assert [m.id for m in store.current_conversation.messages] == [user.id, ai.id]

    async def test_failed_outcome_keeps_user_message_and_sets_error(self, make_store, fake_api):
        store = make_store()
        open_conversation(store)
        user = make_message(CID, "USER", "Hello", 1)
        fake_api.send_results.append(Failed(user, "Invalid API key or authentication failed"))

        await store.send_message(CID, "Hello")

        assert [m.id for m in store.current_conversation.messages] == [user.id]
        assert store.error == "Invalid API key or authentication failed"
        assert store.phase is SyncPhase.IDLE

    async def test_rejected_send_drops_temporary_message(self, make_store, fake_api):
        store = make_store()
        existing = make_message(CID, "USER", "Earlier", 0)
        open_conversation(store, existing)
        fake_api.send_results.append(ApiRequestError(400, "Message cannot be empty", "invalid_input"))

        outcome = await store.send_message(CID, " ")

        assert outcome is None
        assert [m.id for m in store.current_conversation.messages] == [existing.id]
        assert store.error == "Message cannot be empty"


class TestPolling:

    async def test_poll_until_reply_updates_display_once(self, make_store, fake_api):
        """
        Behavior:
            - Send returns Processing; the server has no reply for 4 polls and
              has it on the 5th.
            - Exactly 5 reads happen and the display is replaced exactly once
              (reads that change nothing do not re-render).
            - Polling stops and the phase returns to IDLE.
        """
        store = make_store(max_poll_attempts=30)
        open_conversation(store)
        user = make_message(CID, "USER", "Hello", 1)
        ai = make_message(CID, "AI", "Sorry for the wait", 12)
        fake_api.send_results.append(Processing(user))
        waiting = make_conversation(CID, [user])
        fake_api.reads = [waiting, waiting, waiting, waiting, make_conversation(CID, [user, ai])]

        outcome = await store.send_message(CID, "Hello")
        assert isinstance(outcome, Processing)
        assert store.phase is SyncPhase.POLLING
        version_before_polling = store.version

        await store.wait_for_poller(CID)

        assert fake_api.read_count == 5
        assert store.version == version_before_polling + 1
        assert shown(store) == [("USER", "Hello"), ("AI", "Sorry for the wait")]
        assert store.phase is SyncPhase.IDLE
        assert store.notice is None
        assert not store.is_polling(CID)

    async def test_poll_budget_exhausted_shows_notice(self, make_store, fake_api):
        store = make_store(max_poll_attempts=3)
        open_conversation(store)
        user = make_message(CID, "USER", "Hello", 1)
        fake_api.send_results.append(Processing(user))
        fake_api.reads = [make_conversation(CID, [user])]

        await store.send_message(CID, "Hello")
        await store.wait_for_poller(CID)

        assert fake_api.read_count == 3
        assert store.phase is SyncPhase.IDLE
        assert store.notice == SOFT_TIMEOUT_NOTICE
        assert shown(store) == [("USER", "Hello")]

    async def test_read_errors_count_as_attempts(self, make_store, fake_api):
        store = make_store(max_poll_attempts=4)
        open_conversation(store)
        user = make_message(CID, "USER", "Hello", 1)
        ai = make_message(CID, "AI", "Back online", 5)
        fake_api.send_results.append(Processing(user))
        fake_api.reads = [TransientNetworkError("offline"), make_conversation(CID, [user, ai])]

        await store.send_message(CID, "Hello")
        await store.wait_for_poller(CID)

        assert fake_api.read_count == 2
        assert shown(store)[-1] == ("AI", "Back online")

    async def test_switching_conversation_cancels_poller(self, make_store, fake_api):
        forever = asyncio.Event()

        async def blocking_sleep(seconds):
            await forever.wait()

        store = make_store(sleep=blocking_sleep)
        open_conversation(store)
        fake_api.send_results.append(Processing(make_message(CID, "USER", "Hello", 1)))

        await store.send_message(CID, "Hello")
        assert store.is_polling(CID)

        store.set_current_conversation(make_conversation("conv-2"))
        await asyncio.sleep(0)

        assert not store.is_polling(CID)

    async def test_teardown_cancels_pollers(self, make_store, fake_api):
        forever = asyncio.Event()

        async def blocking_sleep(seconds):
            await forever.wait()

        store = make_store(sleep=blocking_sleep)
        open_conversation(store)
        fake_api.send_results.append(Processing(make_message(CID, "USER", "Hello", 1)))
        await store.send_message(CID, "Hello")

        await store.teardown()

        assert not store.is_polling(CID)
        assert store.phase is SyncPhase.IDLE


class TestTransportFailureRecovery:

    async def test_reply_already_stored_settles_without_error(self, make_store, fake_api):
        """
        Behavior:
            - The send fails below HTTP, but the server did store the message
              and the reply.
            - One recovery read finds both; the display is settled, no error.
        """
        store = make_store()
        open_conversation(store)
        fake_api.send_results.append(TransientNetworkError("connection reset"))
        user = make_message(CID, "USER", "Hello", 1)
        ai = make_message(CID, "AI", "Hi there", 2)
        fake_api.reads = [make_conversation(CID, [user, ai])]

        outcome = await store.send_message(CID, "Hello")

        assert outcome is None
        assert store.error is None
        assert store.phase is SyncPhase.IDLE
        assert [m.id for m in store.current_conversation.messages] == [user.id, ai.id]
        assert fake_api.read_count == 1

    async def test_message_stored_without_reply_starts_polling(self, make_store, fake_api):
        store = make_store(max_poll_attempts=5)
        open_conversation(store)
        fake_api.send_results.append(TransientNetworkError("timeout"))
        user = make_message(CID, "USER", "Hello", 1)
        ai = make_message(CID, "AI", "Hi there", 4)
        fake_api.reads = [make_conversation(CID, [user]), make_conversation(CID, [user, ai])]

        await store.send_message(CID, "Hello")
        assert store.phase is SyncPhase.POLLING

        await store.wait_for_poller(CID)

        assert shown(store) == [("USER", "Hello"), ("AI", "Hi there")]
        assert store.phase is SyncPhase.IDLE

    async def test_message_never_arrived_reports_failure(self, make_store, fake_api):
        store = make_store()
        earlier = make_message(CID, "USER", "Hello", 0)
        open_conversation(store, earlier)
        fake_api.send_results.append(TransientNetworkError("connection refused"))
        # same text as an older message, which must not be mistaken for the new one
        fake_api.reads = [make_conversation(CID, [earlier])]

        await store.send_message(CID, "Hello")

        assert store.error == SEND_FAILED_MESSAGE
        assert [m.id for m in store.current_conversation.messages] == [earlier.id]
        assert store.phase is SyncPhase.IDLE


class TestConversationActions:

    async def test_create_prepends_and_selects(self, make_store, fake_api):
        store = make_store()

        conversation = await store.create_conversation("Plans")

        assert store.conversations[0].id == conversation.id
        assert store.current_conversation is conversation

    async def test_create_failure_records_error_and_raises(self, make_store, fake_api):
        store = make_store()
        fake_api.create_result = ApiRequestError(500, "Storage failure")

        with pytest.raises(ApiRequestError):
            await store.create_conversation()

        assert store.error == "Storage failure"
        assert store.is_loading is False

    async def test_delete_clears_current(self, make_store, fake_api):
        store = make_store()
        conversation = await store.create_conversation()

        await store.delete_conversation(conversation.id)

        assert fake_api.deleted == [conversation.id]
        assert store.current_conversation is None
        assert store.conversations == []
