from __future__ import annotations

from loguru import logger

from tiny_chatbot.memory.codec import decode_message, dump_json, encode_message, load_json
from tiny_chatbot.memory.session_store import SessionNotFoundError
from tiny_chatbot.memory.store import MemoryStore
from tiny_chatbot.messages import CreateSessionInput, Message, Session, new_id, utc_now


class SqliteSessionStore:
    """Durable session store over an injected ``MemoryStore`` connection."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def create_session(self, session_input: CreateSessionInput) -> Session:
        session = Session(
            id=new_id(),
            tenant_id=session_input.tenant_id,
            created_at=utc_now(),
            user_id=session_input.user_id,
            traits=session_input.traits,
        )
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO sessions (id, tenant_id, user_id, traits, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (session.id, session.tenant_id, session.user_id, dump_json(session.traits), session.created_at),
            )
        logger.debug(f"Created session {session.id} for tenant {session.tenant_id}")
        # Read back so the caller gets the same decoded shape as get_session.
        created = self.get_session(session.id)
        if created is None:
            raise RuntimeError(f"Failed to read back session {session.id} after creating it")
        return created

    def get_session(self, session_id: str) -> Session | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        if row is None:
            return None

        message_rows = self._store.execute(
            """
            SELECT *
            FROM messages
            WHERE session_id = ?
            ORDER BY seq ASC
            """,
            (session_id,),
        ).fetchall()

        return Session(
            id=row["id"],
            tenant_id=row["tenant_id"],
            created_at=row["created_at"],
            user_id=row["user_id"],
            traits=load_json(row["traits"], "traits", f"session {session_id}"),
            messages=[decode_message(r) for r in message_rows],
        )

    def append_message(self, session_id: str, message: Message) -> Session:
        encoded = encode_message(message)
        with self._store.transaction():
            exists = self._store.execute(
                "SELECT 1 FROM sessions WHERE id = ? LIMIT 1",
                (session_id,),
            ).fetchone()
            if exists is None:
                raise SessionNotFoundError(session_id)

            row = self._store.execute(
                "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            next_seq = int(row["max_seq"]) + 1
            self._store.execute(
                """
                INSERT INTO messages (
                    id, session_id, seq, role, content, tool_name, tool_call_id,
                    tool_calls, arguments, result, metadata, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    encoded.id,
                    session_id,
                    next_seq,
                    encoded.role,
                    encoded.content,
                    encoded.tool_name,
                    encoded.tool_call_id,
                    encoded.tool_calls,
                    encoded.arguments,
                    encoded.result,
                    encoded.metadata,
                    encoded.created_at,
                ),
            )

        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def delete_session(self, session_id: str) -> bool:
        with self._store.transaction():
            cursor = self._store.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cursor.rowcount > 0

    def count_messages(self, session_id: str) -> int:
        row = self._store.execute(
            "SELECT COUNT(*) AS c FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return int(row["c"])
