"""SQLAlchemy ORM models for chatbot documents."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, text
from sqlalchemy.orm import relationship

from app.db.database import Base


class DocumentModel(Base):
    """ORM model for documents table. Written by the ingestion pipeline."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chatbot_id = Column(
        Integer,
        ForeignKey("chatbots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False)  # pdf, docx, txt
    content = Column(Text, nullable=False)
    size = Column(Integer, nullable=False)  # in bytes
    openai_file_id = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    chatbot = relationship("ChatbotModel", back_populates="documents")

    def __repr__(self) -> str:
        return f"<DocumentModel(id={self.id}, chatbot_id={self.chatbot_id}, name={self.name})>"
