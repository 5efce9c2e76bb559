"""Upstream completion providers.

Two wire dialects are supported behind one ``CompletionProvider`` interface:

- ``ResponsesProvider``: OpenAI Responses API. Single string input plus
  instructions, optional ``file_search`` retrieval over a vector store.
- ``ChatCompletionsProvider``: Chat Completions through langchain's
  ``ChatOpenAI``. Role-tagged messages with bound documents as context.

Providers yield text deltas and raise a ``ProviderError`` subclass on failure.
Retry and fallback text substitution belong to the completion orchestrator.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple

import anyio
import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from app.core.config import GENERIC_APOLOGY
from app.core.exceptions import (
    ConfigurationError,
    ProviderAuthError,
    ProviderError,
    ProviderProtocolError,
    ProviderRateLimitError,
)
from app.core.logging import setup_logger
from app.prompts.chatbot import build_document_context

logger = setup_logger(__name__)

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"

# Responses API stream event types
OUTPUT_TEXT_DELTA = "response.output_text.delta"
RESPONSE_COMPLETED = "response.completed"
RESPONSE_FAILURE_EVENTS = {"response.failed", "response.incomplete", "error"}


@dataclass(frozen=True)
class ChatTurn:
    """A prior message of the conversation."""

    role: str
    content: str


@dataclass(frozen=True)
class CompletionRequest:
    """Everything one completion call needs, built once per turn."""

    user_message: str
    model: str
    instructions: str = ""
    history: Tuple[ChatTurn, ...] = ()
    temperature: float = 0.7
    max_tokens: int = 500
    vector_store_id: Optional[str] = None
    documents: Tuple[str, ...] = ()
    fallback_text: str = GENERIC_APOLOGY


class CompletionProvider(Protocol):
    """A streaming upstream completion dialect."""

    name: str

    def stream(self, request: CompletionRequest) -> AsyncIterator[str]: ...


def classify_provider_error(error: Exception) -> ProviderError:
    """Map an upstream exception onto the provider error taxonomy."""
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, ConfigurationError):
        return ProviderAuthError(error.message)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthError(f"Upstream rejected credentials: {error}")
    if isinstance(error, openai.RateLimitError):
        return ProviderRateLimitError(f"Upstream rate limit: {error}")
    return ProviderProtocolError(f"{type(error).__name__}: {error}")


def render_transcript(history: Tuple[ChatTurn, ...], user_message: str) -> str:
    """Render prior turns and the new message as a single input string."""
    if not history:
        return user_message
    lines = [
        f"{'User' if turn.role == USER_ROLE else 'Assistant'}: {turn.content}"
        for turn in history
    ]
    lines.append(f"User: {user_message}")
    return "\n\n".join(lines)


class ResponsesProvider:
    """Primary dialect: OpenAI Responses API with file_search retrieval."""

    name = "responses"

    def __init__(self, client_factory: Callable[[], Any]):
        """
        Args:
            client_factory: Returns an ``AsyncOpenAI``-compatible client
        """
        self._client_factory = client_factory

    def _build_kwargs(self, request: CompletionRequest) -> Dict[str, Any]:
        instructions = request.instructions
        if not request.vector_store_id:
            context = build_document_context(list(request.documents))
            if context:
                instructions = f"{instructions}\n\n{context}" if instructions else context

        kwargs: Dict[str, Any] = {
            "model": request.model,
            "input": render_transcript(request.history, request.user_message),
            "temperature": request.temperature,
            "max_output_tokens": request.max_tokens,
            "stream": True,
        }
        if instructions:
            kwargs["instructions"] = instructions
        if request.vector_store_id:
            kwargs["tools"] = [
                {"type": "file_search", "vector_store_ids": [request.vector_store_id]}
            ]
        return kwargs

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        try:
            client = self._client_factory()
            upstream = await client.responses.create(**self._build_kwargs(request))
        except Exception as e:
            raise classify_provider_error(e) from e

        try:
            async for event in upstream:
                event_type = getattr(event, "type", None)
                if event_type == OUTPUT_TEXT_DELTA:
                    delta = getattr(event, "delta", "")
                    if delta:
                        yield delta
                elif event_type == RESPONSE_COMPLETED:
                    break
                elif event_type in RESPONSE_FAILURE_EVENTS:
                    raise ProviderProtocolError(
                        f"Responses stream ended with '{event_type}'"
                    )
        except ProviderError:
            raise
        except Exception as e:
            raise classify_provider_error(e) from e
        finally:
            with anyio.CancelScope(shield=True):
                await upstream.close()


class ChatCompletionsProvider:
    """Legacy dialect: Chat Completions over langchain messages."""

    name = "chat_completions"

    def __init__(self, model_factory: Callable[[str, float, int], Any]):
        """
        Args:
            model_factory: ``(model, temperature, max_tokens)`` to a langchain chat model
        """
        self._model_factory = model_factory

    def _build_messages(self, request: CompletionRequest) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if request.instructions:
            messages.append(SystemMessage(content=request.instructions))
        context = build_document_context(list(request.documents))
        if context:
            messages.append(SystemMessage(content=context))
        for turn in request.history:
            if turn.role == USER_ROLE:
                messages.append(HumanMessage(content=turn.content))
            else:
                messages.append(AIMessage(content=turn.content))
        messages.append(HumanMessage(content=request.user_message))
        return messages

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        try:
            model = self._model_factory(
                request.model, request.temperature, request.max_tokens
            )
            messages = self._build_messages(request)
        except Exception as e:
            raise classify_provider_error(e) from e

        logger.debug(f"Sending {len(messages)} messages to chat completions")
        chunks = model.astream(messages)
        try:
            async for chunk in chunks:
                content = getattr(chunk, "content", None)
                if content and isinstance(content, str):
                    yield content
                metadata = getattr(chunk, "response_metadata", None) or {}
                if metadata.get("finish_reason"):
                    break
        except ProviderError:
            raise
        except Exception as e:
            raise classify_provider_error(e) from e
        finally:
            with anyio.CancelScope(shield=True):
                await chunks.aclose()


class FallbackProvider:
    """
    Runs the primary provider and reruns the request on the legacy one when
    the primary fails at the protocol level.

    Primary output is held back until the primary finishes, so a primary that
    breaks mid-answer never leaks a partial answer ahead of the legacy one.
    Rate limit and auth errors are not protocol failures and propagate.
    """

    def __init__(self, primary: CompletionProvider, legacy: CompletionProvider):
        self.primary = primary
        self.legacy = legacy
        self.name = f"{primary.name}+{legacy.name}"

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        held: List[str] = []
        try:
            async for delta in self.primary.stream(request):
                held.append(delta)
        except ProviderProtocolError as e:
            logger.warning(
                f"{self.primary.name} failed, falling back to {self.legacy.name}: {e.message}"
            )
            async for delta in self.legacy.stream(request):
                yield delta
            return

        for delta in held:
            yield delta


def with_fallback(primary: CompletionProvider, legacy: CompletionProvider) -> CompletionProvider:
    """Combine two providers so protocol failures of the first run the second."""
    return FallbackProvider(primary, legacy)
