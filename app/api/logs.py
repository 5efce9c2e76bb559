"""Operator conversation log endpoints."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.auth import get_user_id
from app.core.exceptions import ValidationError
from app.core.logging import setup_logger
from app.dependencies import get_chatbot_service
from app.schemas.chatbot import ChatLogsResponse
from app.services.chatbot import ChatbotService

logger = setup_logger(__name__)

router = APIRouter(tags=["logs"], prefix="/api/logs")

ALL_CHATBOTS = "all"


def _parse_chatbot_id(chatbot_id: Optional[str]) -> Optional[int]:
    if not chatbot_id or chatbot_id == ALL_CHATBOTS:
        return None
    if not chatbot_id.isdigit():
        raise ValidationError("Invalid chatbotId", details={"chatbot_id": chatbot_id})
    return int(chatbot_id)


@router.get(
    "",
    response_model=ChatLogsResponse,
    status_code=status.HTTP_200_OK,
    summary="List conversation logs of the operator's chatbots",
)
async def get_logs(
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    chatbot_id: Optional[str] = Query(
        default=None, alias="chatbotId", description="Chatbot id or 'all'"
    ),
    search: Optional[str] = Query(default=None, description="Text to search for"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(
        default=None, alias="endDate", description="Inclusive end date"
    ),
    redact: bool = Query(default=False, description="Redact PII from user messages"),
    user_id: int = Depends(get_user_id),
    chatbot_service: ChatbotService = Depends(get_chatbot_service),
) -> ChatLogsResponse:
    """
    Get paginated messages of the operator's chatbots, newest first.

    Args:
        page: Page number
        page_size: Messages per page
        chatbot_id: Narrow to one of the operator's chatbots
        search: Case-insensitive text search over message content
        start_date: First day to include
        end_date: Last day to include
        redact: Redact PII from user-authored messages
        user_id: Operator id from the User-Id header

    Returns:
        Logs with chatbot names and pagination metadata
    """
    logger.info(f"Fetching logs for operator {user_id} (page={page}, redact={redact})")
    return await chatbot_service.get_logs(
        user_id=user_id,
        page=page,
        page_size=page_size,
        chatbot_id=_parse_chatbot_id(chatbot_id),
        search=search,
        start_date=start_date,
        end_date=end_date,
        redact=redact,
    )
