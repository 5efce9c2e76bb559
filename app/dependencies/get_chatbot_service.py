"""Dependency injection functions for chatbot service."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.repositories import (
    ChatbotRepository,
    DocumentRepository,
    MessageRepository,
)
from app.services.chatbot import ChatbotService
from app.services.completion import CompletionOrchestrator
from app.services.model import model_service
from app.services.providers import ChatCompletionsProvider, ResponsesProvider
from app.services.redaction import PIIRedactor, pii_redactor
from app.services.session_turns import active_streams


def get_chatbot_repository(
    session: AsyncSession = Depends(get_db),
) -> ChatbotRepository:
    """Get chatbot repository instance."""
    return ChatbotRepository(session)


def get_message_repository(
    session: AsyncSession = Depends(get_db),
) -> MessageRepository:
    """Get message repository instance."""
    return MessageRepository(session)


def get_document_repository(
    session: AsyncSession = Depends(get_db),
) -> DocumentRepository:
    """Get document repository instance."""
    return DocumentRepository(session)


def get_completion_orchestrator() -> CompletionOrchestrator:
    """Get completion orchestrator wired to the OpenAI dialects."""
    return CompletionOrchestrator(
        primary=ResponsesProvider(model_service.get_openai_client),
        legacy=ChatCompletionsProvider(model_service.create_chat_model),
    )


def get_redactor() -> PIIRedactor:
    """Get the shared PII redactor."""
    return pii_redactor


def get_chatbot_service(
    chatbot_repo: ChatbotRepository = Depends(get_chatbot_repository),
    message_repo: MessageRepository = Depends(get_message_repository),
    document_repo: DocumentRepository = Depends(get_document_repository),
    orchestrator: CompletionOrchestrator = Depends(get_completion_orchestrator),
    redactor: PIIRedactor = Depends(get_redactor),
) -> ChatbotService:
    """Get chatbot service instance with injected repositories."""
    return ChatbotService(
        chatbot_repo=chatbot_repo,
        message_repo=message_repo,
        document_repo=document_repo,
        orchestrator=orchestrator,
        redactor=redactor,
        stream_registry=active_streams,
    )
