"""Chatbot schemas for the public chat endpoints and operator log views."""

from datetime import datetime
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.config import settings


class CamelModel(BaseModel):
    """Base model serialising to the widget's camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class BehaviorRule(BaseModel):
    """Static operator rule: answer `response` when `condition` appears in the message."""

    model_config = ConfigDict(frozen=True)

    condition: str = Field(..., description="Case-insensitive substring to look for")
    response: str = Field(..., description="Answer returned when the condition matches")


class ChatbotConfig(BaseModel):
    """Immutable snapshot of a chatbot row taken at the start of a turn."""

    model_config = ConfigDict(frozen=True)

    id: int
    slug: str
    name: str = ""
    system_prompt: str = ""
    model: str = ""
    temperature: int = Field(default=70, ge=0, le=100)
    max_tokens: int = Field(default=500, ge=1)
    rag_enabled: bool = True
    behavior_rules: Tuple[BehaviorRule, ...] = ()
    fallback_response: Optional[str] = None
    vector_store_id: Optional[str] = None

    @field_validator("behavior_rules", mode="before")
    @classmethod
    def _drop_malformed_rules(cls, value: Any) -> Any:
        """Operators edit rules as free-form JSON; keep only well-formed pairs."""
        if value is None:
            return ()
        return tuple(
            rule
            for rule in value
            if isinstance(rule, BehaviorRule)
            or (
                isinstance(rule, dict)
                and isinstance(rule.get("condition"), str)
                and isinstance(rule.get("response"), str)
            )
        )

    @property
    def temperature_value(self) -> float:
        """Temperature on the provider's 0.00-1.00 scale."""
        return self.temperature / 100

    @property
    def fallback_text(self) -> str:
        """Configured fallback text, or the generic apology."""
        return self.fallback_response or settings.DEFAULT_FALLBACK_RESPONSE

    @classmethod
    def from_model(cls, chatbot: Any) -> "ChatbotConfig":
        """Build a snapshot from a ChatbotModel row."""
        return cls(
            id=chatbot.id,
            slug=chatbot.slug,
            name=chatbot.name or "",
            system_prompt=chatbot.system_prompt or "",
            model=chatbot.model or "",
            temperature=chatbot.temperature,
            max_tokens=chatbot.max_tokens,
            rag_enabled=chatbot.rag_enabled,
            behavior_rules=chatbot.behavior_rules or [],
            fallback_response=chatbot.fallback_response,
            vector_store_id=chatbot.vector_store_id,
        )


class SubmitMessageRequest(CamelModel):
    """Request model for submitting a user turn."""

    session_id: Optional[str] = Field(
        default=None,
        description="Session ID for conversation continuity. A new one is generated when omitted.",
    )
    message: str = Field(..., description="User message to respond to")
    stream: bool = Field(
        default=False,
        description="When true only the empty bot placeholder is created; "
        "the answer is delivered by the stream endpoint.",
    )

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Invalid message")
        return value


class MessageResponse(CamelModel):
    """Response model for a single message."""

    id: int = Field(..., description="Message ID")
    chatbot_id: int = Field(..., description="Chatbot ID")
    session_id: str = Field(..., description="Session ID")
    is_user: bool = Field(..., description="True for user-authored turns")
    content: str = Field(..., description="Message content")
    timestamp: datetime = Field(..., description="Message creation timestamp")


class SubmitMessageResponse(CamelModel):
    """Response model for a submitted user turn."""

    message: MessageResponse = Field(
        ..., description="Bot placeholder (stream mode) or final bot message"
    )
    session_id: str = Field(..., description="Session ID for the conversation")


class PublicChatbotResponse(CamelModel):
    """Public chatbot information shown by the widget."""

    id: int
    name: str
    description: str
    model: str
    welcome_message: str
    welcome_messages: List[str] = Field(default_factory=list)
    suggested_questions: List[str] = Field(default_factory=list)


class ChatLogEntry(MessageResponse):
    """Message row enriched with its chatbot name for the logs dashboard."""

    chatbot_name: str = Field(..., description="Name of the owning chatbot")


class ChatLogsResponse(CamelModel):
    """Paginated operator log listing."""

    logs: List[ChatLogEntry] = Field(..., description="Messages, newest first")
    total_count: int = Field(..., description="Total number of matching messages")
    page: int = Field(..., description="Current page number (1-indexed)")
    page_size: int = Field(..., description="Number of items per page")
    total_pages: int = Field(..., description="Total number of pages")
    redaction_enabled: bool = Field(
        ..., description="Whether user-authored content was redacted"
    )


class PreviewRequest(CamelModel):
    """Request model for the operator preview completion."""

    message: str = Field(..., min_length=1, description="Message to answer")
    system_prompt: Optional[str] = Field(
        default=None, description="Prompt to try out; a generic assistant prompt if omitted"
    )


class PreviewResponse(BaseModel):
    """Response model for the operator preview completion."""

    response: str = Field(..., description="Generated answer")
