"""Operator preview endpoint for trying out a prompt."""

from fastapi import APIRouter, Depends, status

from app.core.logging import setup_logger
from app.dependencies import get_chatbot_service
from app.schemas.chatbot import PreviewRequest, PreviewResponse
from app.services.chatbot import ChatbotService

logger = setup_logger(__name__)

router = APIRouter(tags=["preview"], prefix="/api/preview")


@router.post(
    "/generate-response",
    response_model=PreviewResponse,
    status_code=status.HTTP_200_OK,
    summary="Generate a one-off answer for a prompt preview",
)
async def generate_response(
    request: PreviewRequest,
    chatbot_service: ChatbotService = Depends(get_chatbot_service),
) -> PreviewResponse:
    """
    Answer a single message with the given system prompt.

    Uses the default model, without history or documents, and persists nothing.

    Args:
        request: Message and optional system prompt

    Returns:
        Generated answer, or fallback text when the provider is unavailable
    """
    response = await chatbot_service.generate_preview(
        message=request.message, system_prompt=request.system_prompt
    )
    return PreviewResponse(response=response)
