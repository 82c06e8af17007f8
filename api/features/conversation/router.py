"""Router for the Conversation feature."""
from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query

from api.features.chat.dtos import ClearConversationResponse
from api.features.conversation.controller import ConversationController
from api.features.conversation.dtos import (
    ConversationDTO,
    ConversationListResponse,
    MessagesResponse,
)
from api.shared.response import ResponseModel
from di.container import ApplicationContainer as DependencyContainer

router = APIRouter()


@router.get("/", response_model=ResponseModel[ConversationListResponse])
@inject
async def list_conversations(
    user_id: Optional[str] = Query(None, description="Filter by user id"),
    limit: int = Query(50, ge=1, le=200),
    controller: ConversationController = Depends(
        Provide[DependencyContainer.controllers.conversation_controller]
    ),
):
    return await controller.list_conversations(user_id=user_id, limit=limit)


@router.get("/{conversation_id}", response_model=ResponseModel[ConversationDTO])
@inject
async def get_conversation(
    conversation_id: str,
    controller: ConversationController = Depends(
        Provide[DependencyContainer.controllers.conversation_controller]
    ),
):
    return await controller.get_conversation(conversation_id)


@router.get(
    "/{conversation_id}/messages", response_model=ResponseModel[MessagesResponse]
)
@inject
async def get_messages(
    conversation_id: str,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    controller: ConversationController = Depends(
        Provide[DependencyContainer.controllers.conversation_controller]
    ),
):
    """Full history of a conversation, oldest first."""
    return await controller.get_messages(conversation_id, limit=limit)


@router.delete(
    "/{conversation_id}", response_model=ResponseModel[ClearConversationResponse]
)
@inject
async def delete_conversation(
    conversation_id: str,
    controller: ConversationController = Depends(
        Provide[DependencyContainer.controllers.conversation_controller]
    ),
):
    return await controller.delete_conversation(conversation_id)
