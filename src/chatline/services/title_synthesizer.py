"""
Conversation title synthesis.

Once a conversation still carrying the default title reaches the message
threshold, a short title is generated from its transcript. Title generation
is best effort: whatever goes wrong, the conversation keeps its current title
and the send that triggered it is unaffected.
"""

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence
from uuid import UUID

from chatline.models.conversation import DEFAULT_CONVERSATION_TITLE
from chatline.models.message import MessageRole
from chatline.repositories.conversation_repository import ConversationRepository
from .generation_client import GenerationClient

logger = logging.getLogger(__name__)

TRANSCRIPT_MESSAGE_CHARS = 100
TITLE_MAX_CHARS = 50
TITLE_MAX_WORDS = 6

_QUOTES = "\"'`“”‘’"


class TranscriptMessage(Protocol):
    role: MessageRole
    content: str


@dataclass(frozen=True)
class TitleOutcome:
    """
    Result of one synthesis attempt, before it is collapsed into a plain title.

    `generated` is False when the default title was returned without a
    usable generated one (too few messages, empty reply, or `error` is set).
    """
    title: str
    generated: bool
    error: Exception | None = None


def should_auto_title(title: str | None, message_count: int, threshold: int = 2) -> bool:
    """A conversation is titled automatically once, while it still has the default (or no) title."""
    has_default = not title or title.strip() == DEFAULT_CONVERSATION_TITLE
    return has_default and message_count >= threshold


def build_title_prompt(messages: Sequence[TranscriptMessage]) -> str:
    lines = []
    for message in messages:
        speaker = "User" if message.role == MessageRole.USER else "AI"
        lines.append(f"{speaker}: {message.content[:TRANSCRIPT_MESSAGE_CHARS]}")
    transcript = "\n".join(lines)
    return (
        "Generate a short, descriptive title for the following conversation. "
        f"Use at most {TITLE_MAX_WORDS} words and do not use quotation marks. "
        "Reply with the title only.\n\n"
        f"{transcript}"
    )


def clean_title(raw: str) -> str:
    """Strip whitespace and surrounding quotes; cap the length. Empty input gives the default title."""
    title = raw.strip().splitlines()[0].strip() if raw.strip() else ""
    title = title.strip(_QUOTES).strip()
    if not title:
        return DEFAULT_CONVERSATION_TITLE
    if len(title) > TITLE_MAX_CHARS:
        title = title[:TITLE_MAX_CHARS - 3] + "..."
    return title


class TitleSynthesizer:
    """
    Generates titles with its own GenerationClient, normally configured with
    zero retries so a slow provider cannot hold a send for long.
    """

    def __init__(self, client: GenerationClient, threshold: int = 2):
        self.client = client
        self.threshold = threshold

    async def try_synthesize(self, messages: Sequence[TranscriptMessage]) -> TitleOutcome:
        if len(messages) < self.threshold:
            return TitleOutcome(DEFAULT_CONVERSATION_TITLE, generated=False)

        try:
            raw = await self.client.generate(build_title_prompt(messages), [])
        except Exception as exc:
            logger.info("title.generation_failed", extra={"error": type(exc).__name__})
            return TitleOutcome(DEFAULT_CONVERSATION_TITLE, generated=False, error=exc)

        title = clean_title(raw)
        return TitleOutcome(title, generated=title != DEFAULT_CONVERSATION_TITLE)

    async def synthesize(self, messages: Sequence[TranscriptMessage]) -> str:
        return (await self.try_synthesize(messages)).title

    async def maybe_auto_title(
        self,
        conversations: ConversationRepository,
        conversation_id: UUID,
        current_title: str | None,
        messages: Sequence[TranscriptMessage],
    ) -> TitleOutcome | None:
        """
        Apply the auto-title policy to one conversation.

        Returns None when the policy does not apply, otherwise the outcome.
        The title is written (not committed) only when one was generated.
        """
        if not should_auto_title(current_title, len(messages), self.threshold):
            return None

        outcome = await self.try_synthesize(messages)
        if outcome.generated:
            await conversations.update_title(conversation_id, outcome.title)
            logger.info(
                "title.applied",
                extra={"conversation_id": str(conversation_id), "title_length": len(outcome.title)},
            )
        return outcome
