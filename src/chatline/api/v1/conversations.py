"""
Conversation and message routes, mounted under /api/v1.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status

from chatline.api.dependencies import (
    get_conversation_service,
    get_current_user_id,
    get_reply_scheduler,
    get_send_orchestrator,
    get_title_synthesizer,
)
from chatline.models.conversation import DEFAULT_CONVERSATION_TITLE
from chatline.schemas.chat import (
    ConversationCreate,
    ConversationRead,
    ConversationSummary,
    SendMessageRequest,
    SendMessageResponse,
    TitleResponse,
)
from chatline.services.conversation_service import ConversationService
from chatline.services.pending_reply import ReplyScheduler
from chatline.services.send_orchestrator import Processing, SendOrchestrator
from chatline.services.title_synthesizer import TitleSynthesizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationRead, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    payload: ConversationCreate | None = None,
    user_id: UUID = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.create(user_id, payload.title if payload else None)
    return ConversationRead.from_model(conversation, include_messages=False)


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    user_id: UUID = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    rows = await service.list_for_user(user_id)
    return [ConversationSummary.from_model(conversation, last) for conversation, last in rows]


@router.get("/{conversation_id}", response_model=ConversationRead)
async def get_conversation(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.get(user_id, conversation_id)
    return ConversationRead.from_model(conversation)


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    await service.delete(user_id, conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{conversation_id}/messages",
    response_model=SendMessageResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    payload: SendMessageRequest,
    background_tasks: BackgroundTasks,
    user_id: UUID = Depends(get_current_user_id),
    orchestrator: SendOrchestrator = Depends(get_send_orchestrator),
    schedule_reply: ReplyScheduler = Depends(get_reply_scheduler),
):
    """
    Send a message and return the outcome.

    The user message is always stored, so every outcome is 201:
    `processingStatus` says whether a reply came back ("completed"), may still
    come ("processing", the client should poll) or will not ("failed").
    """
    result = await orchestrator.send(user_id, conversation_id, payload.content)
    if isinstance(result, Processing):
        background_tasks.add_task(schedule_reply, conversation_id, result.user_message.id)
    return SendMessageResponse.from_result(result)


@router.post("/{conversation_id}/title", response_model=TitleResponse)
async def generate_title(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
    titles: TitleSynthesizer = Depends(get_title_synthesizer),
):
    """(Re)generate the conversation title from its messages. Keeps the current title on failure."""
    conversation = await service.get(user_id, conversation_id)
    outcome = await titles.try_synthesize(list(conversation.messages))
    if outcome.generated:
        await service.conversations.update_title(conversation_id, outcome.title)
        await service.db.commit()
        return TitleResponse(title=outcome.title)
    return TitleResponse(title=conversation.title or DEFAULT_CONVERSATION_TITLE)
