import logging

from core.authentication import get_current_owner_id
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from services.conversation import ChatTurn, ConversationService

logger = logging.getLogger(__name__)


class ChatMessageRequest(BaseModel):
    message: str = Field(min_length=1)


def create_chat_router(conversations: ConversationService) -> APIRouter:
    """
    Creates the REST API router for conversational event creation.
    """
    router = APIRouter(
        prefix="/api/chat",
    )

    # NOTE: Requires User Auth
    @router.post("", response_model=ChatTurn)
    async def start_conversation(owner_id: str = Depends(get_current_owner_id)):
        """Opens a conversation and returns the assistant's greeting."""
        return await conversations.start(owner_id)

    @router.post("/{conversation_id}/messages", response_model=ChatTurn)
    async def send_message(
        conversation_id: str,
        request: ChatMessageRequest,
        owner_id: str = Depends(get_current_owner_id),
    ):
        """
        Sends one user turn. Rejected with 409 while the previous reply is pending.
        """
        return await conversations.send(owner_id, conversation_id, request.message)

    @router.post("/{conversation_id}/confirm", response_model=ChatTurn)
    async def confirm_conversation(
        conversation_id: str, owner_id: str = Depends(get_current_owner_id)
    ):
        return await conversations.confirm(owner_id, conversation_id)

    @router.delete("/{conversation_id}")
    async def discard_conversation(
        conversation_id: str, owner_id: str = Depends(get_current_owner_id)
    ):
        conversations.discard(owner_id, conversation_id)
        return {"success": True}

    return router
