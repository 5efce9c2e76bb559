"""Chatbot service: public chat turns, SSE answers, history and operator logs."""

import json
import math
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence, Tuple

import anyio
import anyio.to_thread

from app.core.config import settings
from app.core.exceptions import (
    ForbiddenError,
    ModelError,
    NotFoundError,
    SessionStateError,
)
from app.core.logging import setup_logger
from app.models.chatbot import DEFAULT_WELCOME_MESSAGE
from app.prompts.chatbot import DEFAULT_SYSTEM_PROMPT, build_instructions
from app.repositories import (
    ChatbotRepositoryProtocol,
    ChatLogFilter,
    DocumentRepositoryProtocol,
    MessageRepositoryProtocol,
)
from app.schemas.chatbot import (
    ChatbotConfig,
    ChatLogEntry,
    ChatLogsResponse,
    MessageResponse,
    PublicChatbotResponse,
    SubmitMessageRequest,
    SubmitMessageResponse,
)
from app.services.completion import CompletionOrchestrator, Done, Failed, Fatal, Token
from app.services.model import ModelService
from app.services.providers import ASSISTANT_ROLE, USER_ROLE, ChatTurn, CompletionRequest
from app.services.redaction import PIIRedactor, redact_user_messages
from app.services.rules import match_rule
from app.services.session_turns import (
    ActiveStreamRegistry,
    SessionTurn,
    TurnState,
    resolve_pending_turn,
)

logger = setup_logger(__name__)

UNKNOWN_CHATBOT_NAME = "Unknown Chatbot"


class ChatbotService:
    """Service answering chatbot conversations with database-backed sessions."""

    def __init__(
        self,
        chatbot_repo: ChatbotRepositoryProtocol,
        message_repo: MessageRepositoryProtocol,
        document_repo: DocumentRepositoryProtocol,
        orchestrator: CompletionOrchestrator,
        redactor: PIIRedactor,
        stream_registry: ActiveStreamRegistry,
    ):
        """
        Initialize the chatbot service.

        Args:
            chatbot_repo: Chatbot repository (required for dependency injection)
            message_repo: Message repository (required for dependency injection)
            document_repo: Document repository for bound document context
            orchestrator: Completion orchestrator producing bot answers
            redactor: PII redactor for history and log views
            stream_registry: Registry of sessions with an answer in flight
        """
        # Load session configuration from settings
        self.message_history_limit = settings.CHATBOT_MESSAGE_HISTORY_LIMIT

        self._chatbot_repo = chatbot_repo
        self._message_repo = message_repo
        self._document_repo = document_repo
        self._orchestrator = orchestrator
        self._redactor = redactor
        self._streams = stream_registry

    def _generate_id(self) -> str:
        """Generate a unique session id."""
        return str(uuid.uuid4())

    async def get_config(self, slug: str) -> ChatbotConfig:
        """
        Load a chatbot configuration snapshot by slug.

        Raises:
            NotFoundError: If no chatbot has this slug
        """
        chatbot = await self._chatbot_repo.get_by_slug(slug)
        if chatbot is None:
            raise NotFoundError("Chatbot not found", details={"slug": slug})
        return ChatbotConfig.from_model(chatbot)

    async def get_public_chatbot(self, slug: str) -> PublicChatbotResponse:
        """Public chatbot information for the widget. Counts a view."""
        chatbot = await self._chatbot_repo.get_by_slug(slug)
        if chatbot is None:
            raise NotFoundError("Chatbot not found", details={"slug": slug})

        await self._chatbot_repo.increment_views(chatbot.id)

        welcome_message = chatbot.welcome_message or DEFAULT_WELCOME_MESSAGE
        welcome_messages = chatbot.welcome_messages
        if not isinstance(welcome_messages, list) or not welcome_messages:
            welcome_messages = [welcome_message]

        return PublicChatbotResponse(
            id=chatbot.id,
            name=chatbot.name,
            description=chatbot.description or "",
            model=chatbot.model,
            welcome_message=welcome_message,
            welcome_messages=[str(m) for m in welcome_messages],
            suggested_questions=list(chatbot.suggested_questions or []),
        )

    async def _build_request(
        self, config: ChatbotConfig, user_message: str, history: Sequence[Any]
    ) -> CompletionRequest:
        """
        Build the completion request for one turn.

        History is limited to the most recent turns and skips empty rows such
        as bot placeholders that were never answered.
        """
        turns = [
            ChatTurn(
                role=USER_ROLE if message.is_user else ASSISTANT_ROLE,
                content=message.content,
            )
            for message in history
            if message.content
        ]
        if self.message_history_limit:
            turns = turns[-self.message_history_limit :]
        else:
            turns = []

        documents: List[str] = []
        if config.rag_enabled:
            documents = await self._document_repo.get_contents_by_chatbot(config.id)

        logger.debug(
            f"Built completion request for chatbot {config.id}: "
            f"{len(turns)} history turns, {len(documents)} documents, "
            f"vector_store={'yes' if config.vector_store_id else 'no'}"
        )
        return CompletionRequest(
            user_message=user_message,
            model=ModelService.resolve_model(config.model),
            instructions=build_instructions(config.system_prompt, config.vector_store_id),
            history=tuple(turns),
            temperature=config.temperature_value,
            max_tokens=config.max_tokens,
            vector_store_id=config.vector_store_id,
            documents=tuple(documents),
            fallback_text=config.fallback_text,
        )

    async def submit_message(
        self, slug: str, request: SubmitMessageRequest
    ) -> SubmitMessageResponse:
        """
        Record a user turn and answer it.

        In stream mode only the empty bot placeholder is created and returned;
        the stream endpoint fills it. Otherwise the answer (rule response or
        completion) is generated and persisted before returning.

        Raises:
            NotFoundError: If the chatbot does not exist
            ModelError: If the completion provider is misconfigured
        """
        config = await self.get_config(slug)
        session_id = request.session_id or self._generate_id()

        history = await self._message_repo.get_by_session(config.id, session_id)
        await self._message_repo.create(
            chatbot_id=config.id,
            session_id=session_id,
            is_user=True,
            content=request.message,
        )

        if request.stream:
            placeholder = await self._message_repo.create(
                chatbot_id=config.id, session_id=session_id, is_user=False, content=""
            )
            logger.info(f"Created answer placeholder for session {session_id}")
            return SubmitMessageResponse(
                message=MessageResponse.model_validate(placeholder),
                session_id=session_id,
            )

        rule_response = match_rule(request.message, config.behavior_rules)
        if rule_response is not None:
            logger.info(f"Behavior rule answered session {session_id}")
            content = rule_response
            result = None
        else:
            completion_request = await self._build_request(config, request.message, history)
            result = await self._orchestrator.complete(completion_request)
            content = result.text
            logger.info(f"Completion for session {session_id} finished: {result.reason}")

        bot_message = await self._message_repo.create(
            chatbot_id=config.id, session_id=session_id, is_user=False, content=content
        )
        if isinstance(result, Fatal):
            raise ModelError(result.text, details={"session_id": session_id})

        return SubmitMessageResponse(
            message=MessageResponse.model_validate(bot_message), session_id=session_id
        )

    async def stream_answer(
        self, config: ChatbotConfig, session_id: str
    ) -> AsyncGenerator[Tuple[str, Dict[str, Any]], None]:
        """
        Stream the answer to the session's pending turn.

        The session's stream claim is held until the answer has been written,
        including when the consumer is cancelled mid-stream.

        Yields:
            Tuples of (event_type, data_dict) where:
            - First yield: ("session", {"sessionId": "..."})
            - Then: ("chunk", {"content": "..."}) per fragment
            - Finally exactly one of ("complete", {"message": {...}}) or
              ("error", {"message": "..."})
        """
        yield ("session", {"sessionId": session_id})

        terminal_sent = False
        try:
            with self._streams.claim(config.id, session_id):
                messages = await self._message_repo.get_by_session(config.id, session_id)
                turn = resolve_pending_turn(config.id, session_id, messages)
                answer = self._answer_turn(config, turn)
                try:
                    async for event in answer:
                        terminal_sent = event[0] in ("complete", "error")
                        yield event
                finally:
                    with anyio.CancelScope(shield=True):
                        await answer.aclose()
        except SessionStateError as e:
            logger.warning(f"Rejected stream for session {session_id}: {e.message}")
            yield ("error", {"message": e.message})
        except Exception as e:
            logger.error(f"Stream for session {session_id} failed: {e}", exc_info=True)
            if not terminal_sent:
                yield ("error", {"message": config.fallback_text})

    async def _answer_turn(
        self, config: ChatbotConfig, turn: SessionTurn
    ) -> AsyncGenerator[Tuple[str, Dict[str, Any]], None]:
        turn.transition(TurnState.STREAMING)
        user_text = turn.user_message.content

        fragments: List[str] = []
        finished = False
        failed = False
        events = None
        try:
            rule_response = match_rule(user_text, config.behavior_rules)
            if rule_response is not None:
                logger.info(f"Behavior rule answered session {turn.session_id}")
                fragments.append(rule_response)
                yield ("chunk", {"content": rule_response})
                saved = await self._finish_turn(turn, rule_response, TurnState.ANSWERED)
                finished = True
                yield ("complete", {"message": self._serialize(saved)})
                return

            request = await self._build_request(config, user_text, turn.history)
            events = self._orchestrator.stream(request)
            async for event in events:
                if isinstance(event, Token):
                    fragments.append(event.text)
                    yield ("chunk", {"content": event.text})
                elif isinstance(event, Done):
                    saved = await self._finish_turn(turn, event.result.text, TurnState.ANSWERED)
                    finished = True
                    logger.info(
                        f"Streamed answer for session {turn.session_id}: {event.result.reason}"
                    )
                    yield ("complete", {"message": self._serialize(saved)})
                elif isinstance(event, Failed):
                    await self._finish_turn(turn, event.result.text, TurnState.FAILED)
                    finished = True
                    yield ("error", {"message": event.result.text})
        except Exception:
            failed = True
            raise
        finally:
            # Runs on disconnect too; the host scope is already cancelled by then
            with anyio.CancelScope(shield=True):
                try:
                    if not finished:
                        if failed:
                            content = config.fallback_text
                        else:
                            content = "".join(fragments) or config.fallback_text
                        logger.info(
                            f"Stream for session {turn.session_id} interrupted, "
                            f"persisting {len(content)} chars"
                        )
                        await self._finish_turn(turn, content, TurnState.FAILED)
                finally:
                    if events is not None:
                        await events.aclose()

    async def _finish_turn(
        self, turn: SessionTurn, content: str, state: TurnState
    ) -> Any:
        """Write the final answer into the placeholder, then close the turn."""
        saved = await self._message_repo.update_content(turn.placeholder.id, content)
        turn.transition(state)
        if saved is None:
            # Placeholder vanished (chatbot deleted mid-stream)
            turn.placeholder.content = content
            return turn.placeholder
        return saved

    def _serialize(self, message: Any) -> Dict[str, Any]:
        return MessageResponse.model_validate(message).model_dump(mode="json", by_alias=True)

    async def get_session_history(
        self, slug: str, session_id: str, redact: bool = False
    ) -> List[MessageResponse]:
        """
        Get a session's messages, oldest first.

        Args:
            slug: Chatbot slug
            session_id: Session identifier
            redact: Redact PII from user-authored messages

        Returns:
            Ordered list of messages
        """
        config = await self.get_config(slug)
        messages = await self._message_repo.get_by_session(config.id, session_id)
        history = [MessageResponse.model_validate(m) for m in messages]
        if redact:
            history = await anyio.to_thread.run_sync(
                redact_user_messages, history, self._redactor
            )
        return history

    async def get_logs(
        self,
        user_id: int,
        page: int = 1,
        page_size: int = 20,
        chatbot_id: Optional[int] = None,
        search: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        redact: bool = False,
    ) -> ChatLogsResponse:
        """
        Get an operator's conversation logs.

        Only messages of the operator's own chatbots are visible. ``end_date``
        is inclusive.

        Raises:
            ForbiddenError: If ``chatbot_id`` belongs to another operator
        """
        chatbots = await self._chatbot_repo.get_by_user(user_id)
        names = {chatbot.id: chatbot.name for chatbot in chatbots}

        if chatbot_id is not None and chatbot_id not in names:
            raise ForbiddenError(
                "Not authorized to access this chatbot's logs",
                details={"chatbot_id": chatbot_id},
            )

        log_filter = ChatLogFilter(
            chatbot_ids=list(names),
            chatbot_id=chatbot_id,
            search=search or None,
            start_date=_start_of_day(start_date) if start_date else None,
            end_date=_start_of_day(end_date + timedelta(days=1)) if end_date else None,
        )
        messages, total = await self._message_repo.get_logs(log_filter, page, page_size)

        logs = [
            ChatLogEntry(
                **MessageResponse.model_validate(m).model_dump(),
                chatbot_name=names.get(m.chatbot_id, UNKNOWN_CHATBOT_NAME),
            )
            for m in messages
        ]
        if redact:
            # NER is CPU bound, keep it off the event loop
            logs = await anyio.to_thread.run_sync(redact_user_messages, logs, self._redactor)

        return ChatLogsResponse(
            logs=logs,
            total_count=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if page_size else 0,
            redaction_enabled=redact,
        )

    async def generate_preview(self, message: str, system_prompt: Optional[str] = None) -> str:
        """
        Answer a single message for the operator's prompt preview.

        Uses the default model with no history and no documents.

        Raises:
            ModelError: If the completion provider is misconfigured
        """
        request = CompletionRequest(
            user_message=message,
            model=settings.DEFAULT_MODEL,
            instructions=build_instructions(system_prompt or DEFAULT_SYSTEM_PROMPT),
            fallback_text=settings.DEFAULT_FALLBACK_RESPONSE,
        )
        result = await self._orchestrator.complete(request)
        if isinstance(result, Fatal):
            raise ModelError(result.text)
        return result.text

    def format_sse_event(self, event_type: str, data: dict) -> str:
        """
        Format data as Server-Sent Event with JSON payload.

        Args:
            event_type: Type of the event (session, chunk, complete, error)
            data: Dictionary data to send as JSON

        Returns:
            Formatted SSE string with JSON data
        """
        json_data = json.dumps(data)
        return f"event: {event_type}\ndata: {json_data}\n\n"


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)
