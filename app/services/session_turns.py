"""Session turn tracking for the streaming endpoint."""

from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Sequence, Set, Tuple

from app.core.exceptions import SessionStateError
from app.core.logging import setup_logger

logger = setup_logger(__name__)


class TurnState(str, Enum):
    """Lifecycle of one user turn awaiting its bot answer."""

    AWAITING_ANSWER = "awaiting_answer"
    STREAMING = "streaming"
    ANSWERED = "answered"
    FAILED = "failed"


ALLOWED_TRANSITIONS: Dict[TurnState, FrozenSet[TurnState]] = {
    TurnState.AWAITING_ANSWER: frozenset({TurnState.STREAMING}),
    TurnState.STREAMING: frozenset({TurnState.ANSWERED, TurnState.FAILED}),
    TurnState.ANSWERED: frozenset(),
    TurnState.FAILED: frozenset(),
}


@dataclass
class SessionTurn:
    """The latest user message of a session and the empty bot row answering it."""

    chatbot_id: int
    session_id: str
    user_message: Any
    placeholder: Any
    history: List[Any] = field(default_factory=list)
    state: TurnState = TurnState.AWAITING_ANSWER

    def transition(self, new_state: TurnState) -> None:
        """Move to ``new_state``, raising SessionStateError if that is not allowed."""
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise SessionStateError(
                f"Invalid turn transition {self.state.value} -> {new_state.value}",
                details={"session_id": self.session_id},
            )
        logger.debug(
            f"Session {self.session_id} turn {self.state.value} -> {new_state.value}"
        )
        self.state = new_state


def resolve_pending_turn(
    chatbot_id: int, session_id: str, messages: Sequence[Any]
) -> SessionTurn:
    """
    Locate the unanswered turn at the end of a session.

    The session must end with a user message followed by an empty bot
    placeholder; everything before that pair is history.

    Raises:
        SessionStateError: If the session has no turn waiting for an answer
    """
    if messages and messages[-1].is_user:
        raise SessionStateError("User message has no answer placeholder")

    if (
        len(messages) < 2
        or not messages[-2].is_user
        or messages[-1].is_user
        or messages[-1].content
    ):
        raise SessionStateError("No unanswered message for this session")

    return SessionTurn(
        chatbot_id=chatbot_id,
        session_id=session_id,
        user_message=messages[-2],
        placeholder=messages[-1],
        history=list(messages[:-2]),
    )


class ActiveStreamRegistry:
    """In-process set of sessions with an answer currently streaming."""

    def __init__(self) -> None:
        self._active: Set[Tuple[int, str]] = set()

    def is_active(self, chatbot_id: int, session_id: str) -> bool:
        return (chatbot_id, session_id) in self._active

    @contextmanager
    def claim(self, chatbot_id: int, session_id: str) -> Iterator[None]:
        """Hold the session for the duration of one stream."""
        key = (chatbot_id, session_id)
        if key in self._active:
            raise SessionStateError("A response is already streaming for this session")
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)


# Singleton instance
active_streams = ActiveStreamRegistry()
