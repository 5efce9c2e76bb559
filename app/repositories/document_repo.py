"""Repository for DocumentModel read access with Protocol."""

from typing import List, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.document import DocumentModel
from app.core.logging import setup_logger

logger = setup_logger(__name__)


class DocumentRepositoryProtocol(Protocol):
    """Protocol for DocumentRepository interface."""

    async def get_contents_by_chatbot(self, chatbot_id: int) -> List[str]: ...


class DocumentRepository:
    """Repository for DocumentModel operations with injected session."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_contents_by_chatbot(self, chatbot_id: int) -> List[str]:
        """
        Get the text of every document attached to a chatbot.

        Args:
            chatbot_id: Chatbot identifier

        Returns:
            Document contents in upload order
        """
        result = await self.session.execute(
            select(DocumentModel.content)
            .where(DocumentModel.chatbot_id == chatbot_id)
            .order_by(DocumentModel.created_at.asc(), DocumentModel.id.asc())
        )
        contents = list(result.scalars().all())
        logger.debug(f"Found {len(contents)} documents for chatbot {chatbot_id}")
        return contents
