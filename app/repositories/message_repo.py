"""Repository for MessageModel database operations with Protocol."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Tuple, Protocol, Sequence

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.message import MessageModel
from app.core.logging import setup_logger

logger = setup_logger(__name__)


@dataclass
class ChatLogFilter:
    """Filter for the operator logs query.

    ``chatbot_id`` narrows to one chatbot; otherwise ``chatbot_ids`` bounds the
    visible set. An empty ``chatbot_ids`` matches nothing.
    """

    chatbot_ids: Sequence[int]
    chatbot_id: Optional[int] = None
    search: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class MessageRepositoryProtocol(Protocol):
    """Protocol for MessageRepository interface."""

    async def create(
        self,
        chatbot_id: int,
        session_id: str,
        is_user: bool,
        content: str,
    ) -> MessageModel: ...

    async def get_by_session(
        self, chatbot_id: int, session_id: str
    ) -> List[MessageModel]: ...

    async def update_content(
        self, message_id: int, content: str
    ) -> Optional[MessageModel]: ...

    async def get_logs(
        self, log_filter: ChatLogFilter, page: int = 1, page_size: int = 20
    ) -> Tuple[List[MessageModel], int]: ...


class MessageRepository:
    """Repository for MessageModel operations with injected session."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def create(
        self,
        chatbot_id: int,
        session_id: str,
        is_user: bool,
        content: str,
    ) -> MessageModel:
        """Append a turn to the session."""
        new_message = MessageModel(
            chatbot_id=chatbot_id,
            session_id=session_id,
            is_user=is_user,
            content=content,
        )
        self.session.add(new_message)
        await self.session.commit()
        await self.session.refresh(new_message)
        logger.debug(
            f"Added {'user' if is_user else 'bot'} message to session {session_id} "
            f"(id: {new_message.id})"
        )
        return new_message

    async def get_by_session(
        self, chatbot_id: int, session_id: str
    ) -> List[MessageModel]:
        """Get all messages for a session, oldest first."""
        result = await self.session.execute(
            select(MessageModel)
            .where(
                MessageModel.chatbot_id == chatbot_id,
                MessageModel.session_id == session_id,
            )
            .order_by(MessageModel.timestamp.asc(), MessageModel.id.asc())
        )
        messages = list(result.scalars().all())
        logger.debug(f"Retrieved {len(messages)} messages for session {session_id}")
        return messages

    async def update_content(
        self, message_id: int, content: str
    ) -> Optional[MessageModel]:
        """Replace a message's content with a single UPDATE statement."""
        result = await self.session.execute(
            update(MessageModel)
            .where(MessageModel.id == message_id)
            .values(content=content)
            .returning(MessageModel)
            .execution_options(synchronize_session=False)
        )
        updated = result.scalar_one_or_none()
        await self.session.commit()

        if updated is None:
            logger.warning(f"Failed to update message {message_id}: not found")
        else:
            logger.debug(f"Updated message {message_id} ({len(content)} chars)")
        return updated

    async def get_logs(
        self, log_filter: ChatLogFilter, page: int = 1, page_size: int = 20
    ) -> Tuple[List[MessageModel], int]:
        """Get messages matching the filter, newest first, with the total count."""
        conditions = []
        if log_filter.chatbot_id is not None:
            conditions.append(MessageModel.chatbot_id == log_filter.chatbot_id)
        else:
            conditions.append(MessageModel.chatbot_id.in_(list(log_filter.chatbot_ids)))

        if log_filter.search:
            conditions.append(MessageModel.content.ilike(f"%{log_filter.search}%"))
        if log_filter.start_date:
            conditions.append(MessageModel.timestamp >= log_filter.start_date)
        if log_filter.end_date:
            conditions.append(MessageModel.timestamp < log_filter.end_date)

        # Get total count
        count_query = select(func.count()).select_from(MessageModel).where(*conditions)
        total_result = await self.session.execute(count_query)
        total = total_result.scalar() or 0

        # Apply pagination
        offset = (page - 1) * page_size
        query = (
            select(MessageModel)
            .where(*conditions)
            .order_by(MessageModel.timestamp.desc(), MessageModel.id.desc())
            .limit(page_size)
            .offset(offset)
        )
        result = await self.session.execute(query)
        logs = list(result.scalars().all())

        logger.debug(f"Retrieved {len(logs)} of {total} log messages (page {page})")
        return logs, total
