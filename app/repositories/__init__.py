"""Repository classes for database operations."""

from .chatbot_repo import ChatbotRepository, ChatbotRepositoryProtocol
from .message_repo import ChatLogFilter, MessageRepository, MessageRepositoryProtocol
from .document_repo import DocumentRepository, DocumentRepositoryProtocol

__all__ = [
    "ChatbotRepository",
    "ChatbotRepositoryProtocol",
    "ChatLogFilter",
    "MessageRepository",
    "MessageRepositoryProtocol",
    "DocumentRepository",
    "DocumentRepositoryProtocol",
]
