import uuid
from datetime import timedelta

import pytest

from chatline.database.types import utcnow
from chatline.exceptions.base import ForbiddenError, NotFoundError, RepositoryError
from chatline.exceptions.generation import GenerationError, GenerationErrorKind
from chatline.models import DEFAULT_CONVERSATION_TITLE, MessageRole
from chatline.repositories.conversation_repository import ConversationRepository
from chatline.repositories.message_repository import MessageRepository
from chatline.services.generation_client import GenerationClient
from chatline.services.pending_reply import complete_pending_reply
from chatline.services.send_orchestrator import (
    Completed,
    Failed,
    Processing,
    build_history,
    next_timestamp,
)

from ..test_fixtures.service_fixtures import rate_limited, unauthorized


async def read_messages(session_factory, conversation_id):
    """Messages as another session sees them (i.e. what was committed)."""
    async with session_factory() as session:
        return await MessageRepository(session).get_conversation_history(conversation_id)


class TestSendCompleted:

    async def test_send_stores_user_and_ai_message(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation, fake_provider
    ):
        """
        Behavior:
            - A send with a healthy provider returns Completed with both messages.
            - Both messages are committed, the AI reply strictly after the user message.

        Importance:
            - The basic contract of the send pipeline.

        Fixtures:
            - make_orchestrator: orchestrator over the scripted fake provider.
            - session_factory: used to read back through an independent session.
        """
        fake_provider.set_script("Hi there")

        result = await make_orchestrator(db_session).send(created_user.id, created_conversation.id, "Hello")

        assert isinstance(result, Completed)
        assert result.user_message.role is MessageRole.USER
        assert result.ai_message.content == "Hi there"
        assert result.ai_message.created_at > result.user_message.created_at

        stored = await read_messages(session_factory, created_conversation.id)
        assert [(m.role, m.content) for m in stored] == [(MessageRole.USER, "Hello"), (MessageRole.AI, "Hi there")]

    async def test_history_excludes_current_message(
        self, make_orchestrator, db_session, created_user, created_conversation, fake_provider
    ):
        """
        Behavior:
            - The provider gets the new message as the prompt and only the prior
              exchange as history, mapped to "user"/"model".
        """
        orchestrator = make_orchestrator(db_session, titles=None)
        fake_provider.set_script("first answer")
        await orchestrator.send(created_user.id, created_conversation.id, "first question")

        fake_provider.set_script("second answer")
        fake_provider.calls.clear()
        await orchestrator.send(created_user.id, created_conversation.id, "second question")

        prompt, history = fake_provider.calls[0]
        assert prompt == "second question"
        assert history == [
            {"role": "user", "content": "first question"},
            {"role": "model", "content": "first answer"},
        ]

    async def test_retries_then_completes(
        self, make_orchestrator, db_session, created_user, created_conversation, fake_provider, sleep_recorder
    ):
        """
        Behavior:
            - Three rate-limited attempts then success: the send still completes
              within the same request, after backoff delays of 1s, 2s and 4s.
        """
        fake_provider.set_script(rate_limited(), rate_limited(), rate_limited(), "Hi there")

        result = await make_orchestrator(db_session, titles=None).send(
            created_user.id, created_conversation.id, "Hello"
        )

        assert isinstance(result, Completed)
        assert result.ai_message.content == "Hi there"
        assert sleep_recorder.delays == [1.0, 2.0, 4.0]


class TestSendFailures:

    async def test_transient_failure_returns_processing_and_keeps_user_message(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation, fake_provider
    ):
        """
        Behavior:
            - Every attempt is rate limited: the result is Processing (retryable).
            - The user message is committed; no AI message exists.

        Importance:
            - The user's message is never lost because generation failed.
        """
        fake_provider.set_script(rate_limited())

        result = await make_orchestrator(db_session).send(created_user.id, created_conversation.id, "Hello")

        assert isinstance(result, Processing)
        assert result.retryable is True
        stored = await read_messages(session_factory, created_conversation.id)
        assert [m.role for m in stored] == [MessageRole.USER]
        assert stored[0].id == result.user_message.id

    async def test_terminal_failure_returns_failed(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation, fake_provider
    ):
        fake_provider.set_script(unauthorized())

        result = await make_orchestrator(db_session).send(created_user.id, created_conversation.id, "Hello")

        assert isinstance(result, Failed)
        assert result.error_text == "Invalid API key or authentication failed"
        assert fake_provider.call_count == 1
        stored = await read_messages(session_factory, created_conversation.id)
        assert [m.content for m in stored] == ["Hello"]

    async def test_missing_conversation_raises_not_found(self, make_orchestrator, db_session, created_user):
        with pytest.raises(NotFoundError):
            await make_orchestrator(db_session).send(created_user.id, uuid.uuid4(), "Hello")

    async def test_foreign_conversation_raises_forbidden(
        self, make_orchestrator, db_session, session_factory, other_user, created_conversation, fake_provider
    ):
        with pytest.raises(ForbiddenError):
            await make_orchestrator(db_session).send(other_user.id, created_conversation.id, "Hello")

        assert fake_provider.call_count == 0
        assert await read_messages(session_factory, created_conversation.id) == []

    async def test_storage_failure_is_fatal_and_skips_generation(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation,
        fake_provider, monkeypatch
    ):
        """
        Behavior:
            - Storing the user message fails with RepositoryError.
            - `send` raises it instead of returning a result, the provider is
              never called and nothing is stored.

        Importance:
            - Storage failures are fatal; only generation failures are absorbed.
        """
        async def failing_create(self, *args, **kwargs):
            raise RepositoryError("Failed to create Message")

        monkeypatch.setattr(MessageRepository, "create_message", failing_create)

        with pytest.raises(RepositoryError):
            await make_orchestrator(db_session).send(created_user.id, created_conversation.id, "Hello")

        assert fake_provider.call_count == 0
        assert await read_messages(session_factory, created_conversation.id) == []


class TestAutoTitle:

    async def test_title_generated_once_at_threshold(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation, title_provider
    ):
        """
        Behavior:
            - The first completed exchange (2 messages) triggers one title call
              and the generated title is stored.
            - Later sends do not trigger another title call.
        """
        orchestrator = make_orchestrator(db_session)

        await orchestrator.send(created_user.id, created_conversation.id, "Hello")
        await orchestrator.send(created_user.id, created_conversation.id, "Tell me more")

        assert title_provider.call_count == 1
        async with session_factory() as session:
            conversation = await ConversationRepository(session).get_with_messages(created_conversation.id)
        assert conversation.title == "Friendly Greeting"

    async def test_title_failure_does_not_affect_send(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation, title_provider
    ):
        title_provider.set_script(GenerationError(GenerationErrorKind.TIMEOUT))

        result = await make_orchestrator(db_session).send(created_user.id, created_conversation.id, "Hello")

        assert isinstance(result, Completed)
        async with session_factory() as session:
            conversation = await ConversationRepository(session).get_with_messages(created_conversation.id)
        assert conversation.title == DEFAULT_CONVERSATION_TITLE

    async def test_custom_title_is_never_replaced(
        self, make_orchestrator, db_session, create_conversation, created_user, title_provider
    ):
        conversation = await create_conversation(created_user.id, "My own title")

        await make_orchestrator(db_session).send(created_user.id, conversation.id, "Hello")

        assert title_provider.call_count == 0

    async def test_no_title_while_reply_missing(
        self, make_orchestrator, db_session, created_user, created_conversation, fake_provider, title_provider
    ):
        # A Processing send leaves one message: below the threshold
        fake_provider.set_script(rate_limited())

        await make_orchestrator(db_session).send(created_user.id, created_conversation.id, "Hello")

        assert title_provider.call_count == 0


class TestPendingReply:

    async def test_processing_send_completes_in_background(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation,
        fake_provider, generation_client, title_synthesizer, title_provider, pending_settings, sleep_recorder
    ):
        """
        Behavior:
            - A rate-limited send returns Processing.
            - The pending reply job later produces the reply on its own session.
            - Reading the conversation then shows exactly USER then AI, and the
              conversation has been titled.

        Importance:
            - A Processing outcome is eventually resolved without the user resending.
        """
        fake_provider.set_script(rate_limited())
        result = await make_orchestrator(db_session).send(created_user.id, created_conversation.id, "Hello")
        assert isinstance(result, Processing)

        fake_provider.set_script("Sorry for the wait")
        ai_message = await complete_pending_reply(
            created_conversation.id,
            result.user_message.id,
            session_factory=session_factory,
            client=generation_client,
            titles=title_synthesizer,
            settings=pending_settings,
            sleep=sleep_recorder,
        )

        assert ai_message is not None
        assert ai_message.created_at > result.user_message.created_at
        stored = await read_messages(session_factory, created_conversation.id)
        assert [(m.role, m.content) for m in stored] == [
            (MessageRole.USER, "Hello"),
            (MessageRole.AI, "Sorry for the wait"),
        ]
        assert title_provider.call_count == 1

    async def test_pending_reply_skips_when_already_answered(
        self, db_session, session_factory, created_conversation, message_repository,
        generation_client, fake_provider, pending_settings, sleep_recorder
    ):
        now = utcnow()
        user_message = await message_repository.create_message(
            created_conversation.id, "Hello", MessageRole.USER, created_at=now
        )
        await message_repository.create_message(
            created_conversation.id, "Hi", MessageRole.AI, created_at=now + timedelta(seconds=1)
        )
        await db_session.commit()

        stored = await complete_pending_reply(
            created_conversation.id, user_message.id,
            session_factory=session_factory, client=generation_client,
            settings=pending_settings, sleep=sleep_recorder,
        )

        assert stored is None
        assert fake_provider.call_count == 0

    async def test_each_pending_send_gets_its_own_reply(
        self, make_orchestrator, db_session, session_factory, created_user, created_conversation,
        fake_provider, generation_client, pending_settings, sleep_recorder
    ):
        """
        Behavior:
            - Two sends in a row both end as Processing.
            - The job for the first message stores its reply directly after it,
              ahead of the second message.
            - The job for the second message is not fooled by that reply and
              stores its own, last in the conversation.

        Importance:
            - A reply to an earlier message must never count as the answer to a
              later one.
        """
        orchestrator = make_orchestrator(db_session, titles=None)
        fake_provider.set_script(rate_limited())
        first = await orchestrator.send(created_user.id, created_conversation.id, "first")
        second = await orchestrator.send(created_user.id, created_conversation.id, "second")
        assert isinstance(first, Processing) and isinstance(second, Processing)

        async def complete(result, text):
            fake_provider.set_script(text)
            return await complete_pending_reply(
                created_conversation.id, result.user_message.id,
                session_factory=session_factory, client=generation_client,
                settings=pending_settings, sleep=sleep_recorder,
            )

        first_reply = await complete(first, "answer to first")
        second_reply = await complete(second, "answer to second")

        assert first_reply is not None and second_reply is not None
        stored = await read_messages(session_factory, created_conversation.id)
        assert [(m.role, m.content) for m in stored] == [
            (MessageRole.USER, "first"),
            (MessageRole.AI, "answer to first"),
            (MessageRole.USER, "second"),
            (MessageRole.AI, "answer to second"),
        ]
        # the second reply was generated with the first exchange as history
        prompt, history = fake_provider.calls[-1]
        assert prompt == "second"
        assert [entry["content"] for entry in history] == ["first", "answer to first"]

    async def test_pending_reply_gives_up_after_attempts(
        self, db_session, session_factory, created_conversation, message_repository,
        fake_provider, pending_settings, sleep_recorder
    ):
        """
        Behavior:
            - The job makes PENDING_REPLY_ATTEMPTS attempts, waiting before each,
              and stores nothing when every attempt fails transiently.
        """
        user_message = await message_repository.create_message(created_conversation.id, "Hello", MessageRole.USER)
        await db_session.commit()
        fake_provider.set_script(rate_limited())
        client = GenerationClient(fake_provider, max_retries=0, sleep=sleep_recorder)

        stored = await complete_pending_reply(
            created_conversation.id, user_message.id,
            session_factory=session_factory, client=client,
            settings=pending_settings, sleep=sleep_recorder,
        )

        assert stored is None
        assert fake_provider.call_count == 3
        assert sleep_recorder.delays == [5.0, 5.0, 5.0]
        assert [m.role for m in await read_messages(session_factory, created_conversation.id)] == [MessageRole.USER]

    async def test_pending_reply_stops_when_conversation_deleted(
        self, session_factory, generation_client, fake_provider, pending_settings, sleep_recorder
    ):
        stored = await complete_pending_reply(
            uuid.uuid4(), uuid.uuid4(),
            session_factory=session_factory, client=generation_client,
            settings=pending_settings, sleep=sleep_recorder,
        )

        assert stored is None
        assert fake_provider.call_count == 0


class TestHelpers:

    def test_next_timestamp_is_strictly_after(self):
        future = utcnow() + timedelta(seconds=10)

        assert next_timestamp(future) == future + timedelta(microseconds=1)
        assert next_timestamp(None) <= utcnow()

    def test_build_history_maps_roles(self):
        class Row:
            def __init__(self, role, content, offset):
                self.role, self.content = role, content
                self.created_at = utcnow() + timedelta(seconds=offset)

        rows = [Row(MessageRole.AI, "answer", 1), Row(MessageRole.USER, "question", 0)]

        assert build_history(rows) == [
            {"role": "user", "content": "question"},
            {"role": "model", "content": "answer"},
        ]
