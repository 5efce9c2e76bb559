"""Application configuration."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

GENERIC_APOLOGY = "I'm sorry, I couldn't process your request at this time."


class Settings(BaseSettings):
    """Application settings."""

    APP_NAME: str = Field(default="Chat Pipeline", env="APP_NAME")

    # PostgreSQL settings
    POSTGRES_USER: str = Field(default="postgres", env="POSTGRES_USER")
    POSTGRES_PASSWORD: str = Field(default="postgres", env="POSTGRES_PASSWORD")
    POSTGRES_HOST: str = Field(default="localhost", env="POSTGRES_HOST")
    POSTGRES_PORT: int = Field(default=5432, env="POSTGRES_PORT")
    POSTGRES_DB: str = Field(default="chat_pipeline", env="POSTGRES_DB")

    @property
    def DATABASE_URL(self) -> str:
        """Construct DATABASE_URL from individual PostgreSQL parameters."""
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # OpenAI provider settings
    OPENAI_API_KEY: str = Field(default="", env="OPENAI_API_KEY")
    OPENAI_BASE_URL: Optional[str] = Field(default=None, env="OPENAI_BASE_URL")
    OPENAI_TIMEOUT_SECONDS: float = Field(
        default=60.0, env="OPENAI_TIMEOUT_SECONDS", gt=0, le=600
    )
    DEFAULT_MODEL: str = Field(default="gpt-4o-mini", env="DEFAULT_MODEL")

    # Completion retry settings
    COMPLETION_MAX_ATTEMPTS: int = Field(
        default=3, env="COMPLETION_MAX_ATTEMPTS", ge=1, le=10
    )  # Attempts for rate-limited upstream calls
    COMPLETION_RETRY_BASE_DELAY: float = Field(
        default=1.0, env="COMPLETION_RETRY_BASE_DELAY", ge=0, le=60
    )  # Seconds, doubled after every rate-limited attempt

    # Chatbot conversation settings
    CHATBOT_MESSAGE_HISTORY_LIMIT: int = Field(
        default=50, env="CHATBOT_MESSAGE_HISTORY_LIMIT", ge=0, le=500
    )  # Max prior turns sent upstream
    RAG_MAX_CONTEXT_LENGTH: int = Field(
        default=4000, env="RAG_MAX_CONTEXT_LENGTH", ge=500, le=32000
    )  # Max character length of bound document context
    DEFAULT_FALLBACK_RESPONSE: str = Field(
        default=GENERIC_APOLOGY, env="DEFAULT_FALLBACK_RESPONSE"
    )

    # PII redaction settings
    REDACTION_NAME_DETECTOR: str = Field(
        default="spacy", env="REDACTION_NAME_DETECTOR"
    )  # "spacy", "comprehend" or "heuristic"
    SPACY_MODEL: str = Field(default="en_core_web_sm", env="SPACY_MODEL")
    COMPREHEND_REGION: str = Field(default="ca-central-1", env="COMPREHEND_REGION")
    COMPREHEND_THRESHOLD: float = Field(
        default=0.9, env="COMPREHEND_THRESHOLD", ge=0, le=1
    )

    # Authentication settings
    AUTH_TOKEN: str = Field(default="", env="AUTH_TOKEN")

    # CORS settings
    CORS_ORIGINS: list[str] = Field(default=["*"], env="CORS_ORIGINS")

    # Environment
    ENVIRONMENT: str = Field(default="development", env="ENVIRONMENT")
    LOG_LEVEL: str = Field(default="INFO", env="LOG_LEVEL")
    DEBUG: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"


settings = Settings()
