from tiny_chatbot.memory.session_manager import SqliteSessionStore
from tiny_chatbot.memory.session_store import InMemorySessionStore, SessionNotFoundError, SessionStore
from tiny_chatbot.memory.store import MemoryStore

__all__ = [
    "InMemorySessionStore",
    "MemoryStore",
    "SessionNotFoundError",
    "SessionStore",
    "SqliteSessionStore",
]
