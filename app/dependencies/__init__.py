"""FastAPI dependency injection functions."""

from .get_chatbot_service import (
    get_chatbot_repository,
    get_message_repository,
    get_document_repository,
    get_completion_orchestrator,
    get_redactor,
    get_chatbot_service,
)

__all__ = [
    "get_chatbot_repository",
    "get_message_repository",
    "get_document_repository",
    "get_completion_orchestrator",
    "get_redactor",
    "get_chatbot_service",
]
