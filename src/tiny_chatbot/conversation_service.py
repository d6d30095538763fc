from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator

from loguru import logger

from tiny_chatbot.gateway import ModelGateway, StreamDelta
from tiny_chatbot.memory.session_store import SessionNotFoundError, SessionStore
from tiny_chatbot.messages import Message, Session, TextMessage, new_text_message
from tiny_chatbot.sandbox import ToolSandbox
from tiny_chatbot.system_prompt import PromptService
from tiny_chatbot.tool import Tool
from tiny_chatbot.turn_engine import DEFAULT_MAX_ROUNDS, StreamCompleted, TurnEngine


class ConversationService:
    """Entry point for transports: one call per user message.

    Turns on the same session are serialized; turns on different sessions run
    concurrently.
    """

    def __init__(
        self,
        store: SessionStore,
        gateway: ModelGateway,
        sandbox: ToolSandbox,
        tools: list[Tool],
        *,
        prompts: PromptService | None = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        max_output_tokens: int | None = None,
    ) -> None:
        self._store = store
        self._prompts = prompts
        self._engine = TurnEngine(
            gateway=gateway,
            sandbox=sandbox,
            tools=tools,
            max_rounds=max_rounds,
            max_output_tokens=max_output_tokens,
        )
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def handle_user_message(self, session_id: str, text: str) -> TextMessage:
        async with self._lock_for(session_id):
            session = self._require_session(session_id)
            logger.info(f"Handling message for session {session_id}")
            return await self._engine.run(
                user_message=new_text_message("user", text),
                append=lambda message: self._append(session_id, message),
                system_prompt=self._system_prompt_for(session),
            )

    async def handle_user_message_streaming(
        self, session_id: str, text: str
    ) -> AsyncIterator[StreamDelta | StreamCompleted]:
        async with self._lock_for(session_id):
            session = self._require_session(session_id)
            logger.info(f"Handling streamed message for session {session_id}")
            async for event in self._engine.run_streaming(
                user_message=new_text_message("user", text),
                append=lambda message: self._append(session_id, message),
                system_prompt=self._system_prompt_for(session),
            ):
                yield event

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _require_session(self, session_id: str) -> Session:
        session = self._store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _append(self, session_id: str, message: Message) -> list[Message]:
        return self._store.append_message(session_id, message).messages

    def _system_prompt_for(self, session: Session) -> str | None:
        if self._prompts is None:
            return None
        return self._prompts.get_prompt_for_tenant(session.tenant_id)
