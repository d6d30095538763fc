from __future__ import annotations

import copy
from typing import Protocol, runtime_checkable

from tiny_chatbot.messages import CreateSessionInput, Message, Session, new_id, utc_now


class SessionNotFoundError(Exception):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} was not found")
        self.session_id = session_id


@runtime_checkable
class SessionStore(Protocol):
    def create_session(self, session_input: CreateSessionInput) -> Session: ...

    def get_session(self, session_id: str) -> Session | None: ...

    def append_message(self, session_id: str, message: Message) -> Session:
        """Append to the session log and return the post-append snapshot."""
        ...

    def delete_session(self, session_id: str) -> bool: ...


class InMemorySessionStore:
    """Process-local store. Snapshots are deep copies, so callers cannot reach stored state."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def create_session(self, session_input: CreateSessionInput) -> Session:
        session = Session(
            id=new_id(),
            tenant_id=session_input.tenant_id,
            created_at=utc_now(),
            user_id=session_input.user_id,
            traits=copy.deepcopy(session_input.traits),
        )
        self._sessions[session.id] = session
        return copy.deepcopy(session)

    def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session is not None else None

    def append_message(self, session_id: str, message: Message) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.messages.append(copy.deepcopy(message))
        return copy.deepcopy(session)

    def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None
