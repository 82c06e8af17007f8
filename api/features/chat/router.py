"""Router for the Chat feature."""
from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends

from api.features.chat.controller import ChatController
from api.features.chat.dtos import ChatRequest, ChatResponse, ClearConversationResponse
from api.shared.response import ResponseModel
from di.container import ApplicationContainer as DependencyContainer

router = APIRouter()


@router.post("/", response_model=ResponseModel[ChatResponse])
@inject
async def chat(
    request: ChatRequest,
    controller: ChatController = Depends(
        Provide[DependencyContainer.controllers.chat_controller]
    ),
):
    """Send a message and receive a reply that takes conversation memory into account."""
    return await controller.chat(request)


@router.delete("/{conversation_id}", response_model=ResponseModel[ClearConversationResponse])
@inject
async def clear_conversation(
    conversation_id: str,
    controller: ChatController = Depends(
        Provide[DependencyContainer.controllers.chat_controller]
    ),
):
    """Delete a conversation and all of its messages."""
    return await controller.clear(conversation_id)
