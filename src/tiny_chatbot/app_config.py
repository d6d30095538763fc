from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-5-20250929",
}

_API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

_STORE_BACKENDS = frozenset({"memory", "sqlite"})


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    temperature: float
    max_output_tokens: int | None
    max_tool_rounds: int
    sandbox_root: str
    max_output_bytes: int
    execution_timeout_ms: int
    store_backend: str
    db_path: str
    prompts_path: str
    tenant_id: str
    retry_max_retries: int
    retry_initial_delay: float
    retry_max_delay: float
    retry_backoff_multiplier: float
    log_level: str
    log_consumers: list | None


def load_json_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path is not None else Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _positive_int(config: dict, key: str, default: int) -> int:
    value = int(config.get(key, default))
    if value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value}")
    return value


def parse_app_config(config: dict) -> AppConfig:
    provider_name = str(config.get("Provider", "openai")).strip().lower()
    if provider_name not in _DEFAULT_MODELS:
        raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'openai', 'anthropic'")

    store_backend = str(config.get("StoreBackend", "memory")).strip().lower()
    if store_backend not in _STORE_BACKENDS:
        raise ValueError(f"Unknown store backend: {store_backend!r}. Supported: 'memory', 'sqlite'")

    sandbox_root = str(config.get("SandboxRoot") or os.getcwd())

    return AppConfig(
        provider_name=provider_name,
        model=config.get("Model") or _DEFAULT_MODELS[provider_name],
        temperature=float(config.get("Temperature", 1.0)),
        max_output_tokens=_optional_int(config.get("MaxOutputTokens")),
        max_tool_rounds=_positive_int(config, "MaxToolRounds", 10),
        sandbox_root=sandbox_root,
        max_output_bytes=_positive_int(config, "MaxOutputBytes", 100_000),
        execution_timeout_ms=_positive_int(config, "ExecutionTimeoutMs", 30_000),
        store_backend=store_backend,
        db_path=str(config.get("DbPath", ".tiny_chatbot/sessions.db")),
        prompts_path=str(config.get("PromptsPath", "config/prompts.json")),
        tenant_id=str(config.get("TenantId", "default")),
        retry_max_retries=int(config.get("RetryMaxRetries", 3)),
        retry_initial_delay=float(config.get("RetryInitialDelay", 1.0)),
        retry_max_delay=float(config.get("RetryMaxDelay", 30.0)),
        retry_backoff_multiplier=float(config.get("RetryBackoffMultiplier", 2.0)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    env_var = _API_KEY_ENV_VARS[provider_name]
    return RuntimeEnv(
        provider_api_key=os.environ.get(env_var, ""),
        provider_env_var=env_var,
    )
