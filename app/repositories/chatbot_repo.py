"""Repository for ChatbotModel read access with Protocol."""

from typing import List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.chatbot import ChatbotModel
from app.core.logging import setup_logger

logger = setup_logger(__name__)


class ChatbotRepositoryProtocol(Protocol):
    """Protocol for ChatbotRepository interface."""

    async def get_by_slug(self, slug: str) -> Optional[ChatbotModel]: ...

    async def get_by_user(self, user_id: int) -> List[ChatbotModel]: ...

    async def increment_views(self, chatbot_id: int) -> None: ...


class ChatbotRepository:
    """Repository for ChatbotModel operations with injected session."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_by_slug(self, slug: str) -> Optional[ChatbotModel]:
        """Get chatbot by its public slug."""
        result = await self.session.execute(
            select(ChatbotModel).where(ChatbotModel.slug == slug)
        )
        return result.scalar_one_or_none()

    async def get_by_user(self, user_id: int) -> List[ChatbotModel]:
        """Get all chatbots owned by an operator."""
        result = await self.session.execute(
            select(ChatbotModel)
            .where(ChatbotModel.user_id == user_id)
            .order_by(ChatbotModel.id.asc())
        )
        return list(result.scalars().all())

    async def increment_views(self, chatbot_id: int) -> None:
        """Bump the public view counter in place."""
        await self.session.execute(
            update(ChatbotModel)
            .where(ChatbotModel.id == chatbot_id)
            .values(views=ChatbotModel.views + 1)
        )
        await self.session.commit()
        logger.debug(f"Incremented views for chatbot {chatbot_id}")
