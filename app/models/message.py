"""SQLAlchemy ORM models for chatbot messages."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from app.db.database import Base


class MessageModel(Base):
    """ORM model for messages table. One row per turn."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chatbot_id = Column(
        Integer,
        ForeignKey("chatbots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_id = Column(String, nullable=False, index=True)
    is_user = Column(Boolean, nullable=False)
    content = Column(Text, nullable=False, default="")
    timestamp = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )

    # Relationship to chatbot
    chatbot = relationship("ChatbotModel", back_populates="messages")

    __table_args__ = (
        Index("idx_messages_session", "chatbot_id", "session_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<MessageModel(id={self.id}, chatbot_id={self.chatbot_id}, "
            f"session_id={self.session_id}, is_user={self.is_user})>"
        )
