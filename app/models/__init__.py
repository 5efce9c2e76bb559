"""Database ORM models."""

from .chatbot import ChatbotModel
from .message import MessageModel
from .document import DocumentModel

__all__ = ["ChatbotModel", "MessageModel", "DocumentModel"]
