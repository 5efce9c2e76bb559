"""LLM model service: model resolution and upstream client construction."""

from typing import Dict, Optional

from langchain_openai import ChatOpenAI
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.core.logging import setup_logger

logger = setup_logger(__name__)

# Operator-facing model aliases stored on chatbots
MODEL_ALIASES: Dict[str, str] = {
    "gpt4-1": "gpt-4-1106-preview",
    "gpt4o": "gpt-4o",
    "gpt4": "gpt-4",
    "gpt4-mini": "gpt-4-mini",
    "gpt35turbo": "gpt-3.5-turbo",
    "gpt3-mini": "gpt-3.5-turbo-instruct",
    "gpt4-1-nano": "gpt-4-0125-preview",
    "gpt4o-mini": "gpt-4o-mini",
}


class ModelService:
    """Service creating upstream model clients."""

    def __init__(self) -> None:
        """Initialize model service."""
        self._client: Optional[AsyncOpenAI] = None

    @staticmethod
    def resolve_model(alias: Optional[str]) -> str:
        """Map a chatbot's model alias to a concrete model id."""
        if alias and alias in MODEL_ALIASES:
            return MODEL_ALIASES[alias]
        if alias and alias in MODEL_ALIASES.values():
            return alias
        if alias:
            logger.warning(f"Unknown model alias '{alias}', using {settings.DEFAULT_MODEL}")
        return settings.DEFAULT_MODEL

    def _require_api_key(self) -> str:
        if not settings.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY setting is required")
        return settings.OPENAI_API_KEY

    def get_openai_client(self) -> AsyncOpenAI:
        """Get the shared async OpenAI client."""
        if self._client is None:
            api_key = self._require_api_key()
            logger.info(
                f"Initializing OpenAI client: base_url={settings.OPENAI_BASE_URL or 'default'}, "
                f"timeout={settings.OPENAI_TIMEOUT_SECONDS}"
            )
            # Retries are owned by the completion orchestrator
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=settings.OPENAI_BASE_URL,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def create_chat_model(self, model: str, temperature: float, max_tokens: int) -> ChatOpenAI:
        """
        Create a streaming Chat Completions model.

        Args:
            model: Concrete model id
            temperature: Sampling temperature, 0.0-1.0
            max_tokens: Output token limit

        Returns:
            Configured ChatOpenAI instance
        """
        api_key = self._require_api_key()
        logger.debug(
            f"Creating chat model: model={model}, temperature={temperature}, max_tokens={max_tokens}"
        )
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=0,
            streaming=True,
        )


# Singleton instance
model_service = ModelService()
