"""Public chatbot API endpoints used by the embeddable widget."""

import asyncio
from typing import List

import anyio
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from app.core.logging import setup_logger
from app.dependencies import get_chatbot_service
from app.schemas.chatbot import (
    MessageResponse,
    PublicChatbotResponse,
    SubmitMessageRequest,
    SubmitMessageResponse,
)
from app.services.chatbot import ChatbotService

logger = setup_logger(__name__)

router = APIRouter(tags=["chatbot"], prefix="/api/public/chatbot")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get(
    "/{slug}",
    response_model=PublicChatbotResponse,
    status_code=status.HTTP_200_OK,
    summary="Get public chatbot information",
)
async def get_public_chatbot(
    slug: str,
    chatbot_service: ChatbotService = Depends(get_chatbot_service),
) -> PublicChatbotResponse:
    """
    Get the information the widget needs to render a chatbot.

    Counts a view for the chatbot. Returns 404 if the slug is unknown.
    """
    return await chatbot_service.get_public_chatbot(slug)


@router.post(
    "/{slug}/messages",
    response_model=SubmitMessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit a user message",
)
async def submit_message(
    slug: str,
    request: SubmitMessageRequest,
    chatbot_service: ChatbotService = Depends(get_chatbot_service),
) -> SubmitMessageResponse:
    """
    Record a user message and answer it.

    With `stream: true` the response carries the empty bot placeholder and
    the answer is delivered by `GET /{slug}/stream`. Otherwise the response
    carries the persisted bot answer.

    Args:
        slug: Chatbot slug
        request: Session id (generated when omitted), message and stream flag

    Returns:
        The bot message and the session id
    """
    logger.info(f"Message submitted to chatbot '{slug}' (stream={request.stream})")
    return await chatbot_service.submit_message(slug, request)


@router.get(
    "/{slug}/stream",
    status_code=status.HTTP_200_OK,
    summary="Stream the pending answer via Server-Sent Events",
)
async def stream_answer(
    slug: str,
    session_id: str = Query(..., alias="sessionId", min_length=1),
    chatbot_service: ChatbotService = Depends(get_chatbot_service),
) -> StreamingResponse:
    """
    Stream the answer to the session's latest user message.

    **SSE Event Types (all data is JSON):**
    - `session`: `{"sessionId": "..."}`, once on open
    - `chunk`: `{"content": "..."}`, per answer fragment
    - `complete`: `{"message": {...}}`, the persisted bot message
    - `error`: `{"message": "..."}`, user-safe failure text

    Exactly one of `complete` or `error` ends the stream.

    Chunks are relayed as the model produces them, except for chatbots with a
    vector store: their answer may be regenerated by the legacy provider, so
    the primary provider's chunks are held back and arrive in one burst once
    its answer is complete.

    If the client disconnects, the partial answer (or the fallback text when
    nothing was produced) is still saved.

    Raises:
        NotFoundError: If the chatbot does not exist (404, before streaming starts)
    """
    config = await chatbot_service.get_config(slug)

    async def event_generator():
        """Generate SSE events from the chatbot service."""
        events = chatbot_service.stream_answer(config, session_id)
        try:
            async for event_type, data in events:
                yield chatbot_service.format_sse_event(event_type, data)
        except asyncio.CancelledError:
            logger.info(f"Client disconnected from stream for session {session_id}")
            raise
        except Exception as e:
            logger.error(f"Error in event generator: {e}", exc_info=True)
            yield chatbot_service.format_sse_event(
                "error", {"message": config.fallback_text}
            )
        finally:
            with anyio.CancelScope(shield=True):
                await events.aclose()

    return StreamingResponse(
        event_generator(), media_type="text/event-stream", headers=SSE_HEADERS
    )


@router.get(
    "/{slug}/messages/{session_id}",
    response_model=List[MessageResponse],
    status_code=status.HTTP_200_OK,
    summary="Get session history",
)
async def get_session_history(
    slug: str,
    session_id: str,
    redact: bool = Query(default=False, description="Redact PII from user messages"),
    chatbot_service: ChatbotService = Depends(get_chatbot_service),
) -> List[MessageResponse]:
    """Get a session's messages, oldest first."""
    return await chatbot_service.get_session_history(slug, session_id, redact=redact)
