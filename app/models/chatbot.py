"""SQLAlchemy ORM models for operator-configured chatbots."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import relationship

from app.db.database import Base

DEFAULT_WELCOME_MESSAGE = "Hello! How can I assist you today?"


class ChatbotModel(Base):
    """ORM model for chatbots table."""

    __tablename__ = "chatbots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    slug = Column(String, nullable=False, unique=True, index=True)
    system_prompt = Column(Text, nullable=False)
    model = Column(String, nullable=False)
    temperature = Column(Integer, nullable=False, default=70, server_default=text("70"))
    max_tokens = Column(
        Integer, nullable=False, default=500, server_default=text("500")
    )
    rag_enabled = Column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    behavior_rules = Column(
        JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb")
    )
    fallback_response = Column(Text, nullable=True)
    welcome_message = Column(Text, nullable=True, default=DEFAULT_WELCOME_MESSAGE)
    welcome_messages = Column(JSONB, nullable=True, default=list)
    suggested_questions = Column(ARRAY(Text), nullable=True, default=list)
    views = Column(Integer, nullable=False, default=0, server_default=text("0"))
    vector_store_id = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # Messages and documents go away with the chatbot
    messages = relationship(
        "MessageModel",
        back_populates="chatbot",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )
    documents = relationship(
        "DocumentModel",
        back_populates="chatbot",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )

    def __repr__(self) -> str:
        return f"<ChatbotModel(id={self.id}, slug={self.slug}, model={self.model})>"
