"""Completion orchestration: provider selection, retry and fallback text."""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

import anyio

from app.core.config import settings
from app.core.exceptions import (
    ProviderAuthError,
    ProviderProtocolError,
    ProviderRateLimitError,
)
from app.core.logging import setup_logger
from app.services.providers import (
    CompletionProvider,
    CompletionRequest,
    with_fallback,
)

logger = setup_logger(__name__)


@dataclass(frozen=True)
class Ok:
    """The provider answered."""

    text: str
    reason: str = "ok"


@dataclass(frozen=True)
class RateLimited:
    """Upstream kept rate limiting; ``text`` is the fallback or a partial answer."""

    text: str
    reason: str = "rate_limited"


@dataclass(frozen=True)
class ProtocolFailed:
    """Every dialect failed; ``text`` is the fallback or a partial answer."""

    text: str
    reason: str = "protocol_failed"


@dataclass(frozen=True)
class Fatal:
    """Credentials or configuration are broken; ``text`` is the fallback."""

    text: str
    reason: str = "fatal"


CompletionResult = Union[Ok, RateLimited, ProtocolFailed, Fatal]


@dataclass(frozen=True)
class Token:
    """An incremental piece of the answer."""

    text: str


@dataclass(frozen=True)
class Done:
    """Terminal event for answers delivered to the user, degraded or not."""

    result: CompletionResult


@dataclass(frozen=True)
class Failed:
    """Terminal event for fatal failures."""

    result: CompletionResult


CompletionEvent = Union[Token, Done, Failed]


class CompletionOrchestrator:
    """
    Produces the bot's answer for one turn.

    With a vector store attached, the primary dialect runs first and the
    legacy dialect takes over on protocol failure. Without one, only the
    primary runs. Rate limits are retried with exponential backoff as long as
    nothing of the attempt reached the caller.
    """

    def __init__(
        self,
        primary: CompletionProvider,
        legacy: CompletionProvider,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            primary: Responses API provider
            legacy: Chat Completions provider
            max_attempts: Attempts for rate-limited calls (default from settings)
            base_delay: First backoff delay in seconds (default from settings)
            sleep: Awaitable sleep, replaced in tests
        """
        self.primary = primary
        self.legacy = legacy
        self.max_attempts = max_attempts or settings.COMPLETION_MAX_ATTEMPTS
        self.base_delay = (
            settings.COMPLETION_RETRY_BASE_DELAY if base_delay is None else base_delay
        )
        self._sleep = sleep

    def select_provider(self, request: CompletionRequest) -> CompletionProvider:
        """Pick the provider pipeline for a request."""
        if request.vector_store_id:
            return with_fallback(self.primary, self.legacy)
        return self.primary

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        """
        Stream the answer as typed events.

        Yields any number of ``Token`` events followed by exactly one ``Done``
        or ``Failed``. ``Done`` always carries non-empty text: when the
        provider produced nothing, the fallback text is emitted as a final
        token first.
        """
        provider = self.select_provider(request)
        fallback = request.fallback_text
        delay = self.base_delay

        for attempt in range(1, self.max_attempts + 1):
            accumulated = ""
            upstream = provider.stream(request)
            try:
                async for delta in upstream:
                    if not delta:
                        continue
                    accumulated += delta
                    yield Token(delta)
            except ProviderRateLimitError as e:
                if accumulated:
                    logger.warning(
                        f"Rate limited after partial output on {provider.name}, "
                        f"keeping {len(accumulated)} chars: {e.message}"
                    )
                    yield Done(RateLimited(accumulated))
                    return
                if attempt < self.max_attempts:
                    logger.warning(
                        f"Rate limited on {provider.name} (attempt {attempt}/{self.max_attempts}), "
                        f"retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    delay *= 2
                    continue
                logger.error(
                    f"Rate limited on {provider.name} after {attempt} attempts: {e.message}"
                )
                yield Token(fallback)
                yield Done(RateLimited(fallback))
                return
            except ProviderAuthError as e:
                logger.error(f"Completion provider rejected configuration: {e.message}")
                yield Failed(Fatal(fallback))
                return
            except ProviderProtocolError as e:
                logger.error(f"Completion failed on {provider.name}: {e.message}")
                if not accumulated:
                    yield Token(fallback)
                yield Done(ProtocolFailed(accumulated or fallback))
                return
            except Exception as e:
                logger.error(f"Unexpected completion failure: {e}", exc_info=True)
                yield Failed(Fatal(fallback))
                return
            finally:
                with anyio.CancelScope(shield=True):
                    await upstream.aclose()

            if not accumulated:
                logger.warning(f"{provider.name} returned an empty answer, using fallback text")
                yield Token(fallback)
                yield Done(Ok(fallback))
            else:
                yield Done(Ok(accumulated))
            return

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Produce the whole answer at once by draining ``stream``."""
        events = self.stream(request)
        try:
            async for event in events:
                if isinstance(event, (Done, Failed)):
                    return event.result
        finally:
            await events.aclose()
        # stream always ends with a terminal event
        return Fatal(request.fallback_text)
