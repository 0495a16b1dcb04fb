"""Per-session conversation state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from src.assistant_router.errors import SessionBusy

from .context import ConversationContext, CostFunction
from .summarizer import CancellationToken


@dataclass
class Session:
    """One conversation: its context plus the in-flight turn's cancel token."""
    session_id: str
    context: ConversationContext
    token: Optional[CancellationToken] = None
    busy: bool = field(default=False)


class SessionStore:
    """Owns every session's ConversationContext.

    Sessions never share state, so no locking is needed across them. Within a
    session only one turn may run at a time; a second ``begin_turn`` raises
    SessionBusy instead of interleaving mutations.
    """

    def __init__(self, preamble: str, budget: int, cost_fn: Optional[CostFunction] = None) -> None:
        self._preamble = preamble
        self._budget = budget
        self._cost_fn = cost_fn
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            context = ConversationContext(self._preamble, self._budget, self._cost_fn)
            session = Session(session_id=session_id, context=context)
            self._sessions[session_id] = session
        return session

    def begin_turn(self, session_id: str) -> Session:
        """Mark the session busy and hand it a fresh cancellation token."""
        session = self.get_or_create(session_id)
        if session.busy:
            raise SessionBusy(session_id)
        session.busy = True
        session.token = CancellationToken()
        return session

    def end_turn(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.busy = False
            session.token = None

    def cancel(self, session_id: str) -> bool:
        """Signal the in-flight turn to stop streaming. False if nothing is running."""
        session = self._sessions.get(session_id)
        if session is None or session.token is None:
            return False
        session.token.cancel()
        return True

    def cleanup_session(self, session_id: str) -> None:
        """Remove session state, freeing memory. Safe to call for nonexistent sessions."""
        self._sessions.pop(session_id, None)
