from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from tiny_chatbot.app_config import AppConfig, RuntimeEnv
from tiny_chatbot.conversation_service import ConversationService
from tiny_chatbot.gateway import ModelGateway, create_gateway
from tiny_chatbot.logging_config import setup_logging
from tiny_chatbot.memory import InMemorySessionStore, MemoryStore, SessionStore, SqliteSessionStore
from tiny_chatbot.retry import RetryPolicy
from tiny_chatbot.sandbox import ToolsConfig, ToolSandbox
from tiny_chatbot.system_prompt import PromptService, build_system_prompt
from tiny_chatbot.tool import Tool
from tiny_chatbot.tool_registry import get_all


@dataclass
class AppRuntime:
    service: ConversationService
    store: SessionStore
    gateway: ModelGateway
    sandbox: ToolSandbox
    tools: list[Tool]
    memory_store: MemoryStore | None
    log_descriptions: list[str]

    def close(self) -> None:
        if self.memory_store is not None:
            self.memory_store.close()


def _resolve(path: str) -> Path:
    resolved = Path(path)
    if not resolved.is_absolute():
        resolved = Path.cwd() / resolved
    return resolved


def load_prompts(app: AppConfig, sandbox_root: str) -> PromptService:
    prompts_path = _resolve(app.prompts_path)
    if prompts_path.exists():
        logger.info(f"Loading system prompts from {prompts_path}")
        return PromptService.from_file(prompts_path)
    logger.info("No prompts file found; using the built-in system prompt")
    return PromptService({"_default": build_system_prompt(sandbox_root)})


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    sandbox_root = str(_resolve(app.sandbox_root).resolve())
    sandbox = ToolSandbox(
        ToolsConfig(
            working_dir_root=sandbox_root,
            max_output_bytes=app.max_output_bytes,
            execution_timeout_ms=app.execution_timeout_ms,
        )
    )
    # Fail at startup rather than on the first tool call.
    sandbox.validate_working_directory()

    retry_policy = RetryPolicy(
        max_retries=app.retry_max_retries,
        initial_delay=app.retry_initial_delay,
        max_delay=app.retry_max_delay,
        backoff_multiplier=app.retry_backoff_multiplier,
    )
    gateway = create_gateway(
        app.provider_name,
        env.provider_api_key,
        model=app.model,
        temperature=app.temperature,
        max_output_tokens=app.max_output_tokens,
        retry_policy=retry_policy,
    )

    memory_store: MemoryStore | None = None
    store: SessionStore
    if app.store_backend == "sqlite":
        memory_store = MemoryStore(str(_resolve(app.db_path)))
        store = SqliteSessionStore(memory_store)
    else:
        store = InMemorySessionStore()

    tools = get_all()
    service = ConversationService(
        store,
        gateway,
        sandbox,
        tools,
        prompts=load_prompts(app, sandbox_root),
        max_rounds=app.max_tool_rounds,
        max_output_tokens=app.max_output_tokens,
    )

    logger.info(
        f"Runtime ready: provider={app.provider_name}, model={app.model}, "
        f"store={app.store_backend}, sandbox={sandbox_root}"
    )
    return AppRuntime(
        service=service,
        store=store,
        gateway=gateway,
        sandbox=sandbox,
        tools=tools,
        memory_store=memory_store,
        log_descriptions=log_descriptions,
    )
