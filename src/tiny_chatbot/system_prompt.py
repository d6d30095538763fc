from __future__ import annotations

import json
from pathlib import Path

DEFAULT_PROMPT_KEY = "_default"


def build_system_prompt(working_directory: str | None = None) -> str:
    prompt = """\
You are a helpful assistant that can inspect files with a small set of read-only \
tools: ls, cat, grep, rg, head, tail, wc, which, echo and pwd. You cannot modify \
files or run any other command.

When the user asks about the contents of the workspace, use the tools to look \
before answering. Think step by step about which tools you need, then use them.

If a tool call fails, read the error message carefully and try a different approach.

Be concise in your responses."""

    if working_directory:
        prompt += f"""

Every tool runs in: {working_directory}
Use paths relative to that directory. Paths outside it are rejected."""

    return prompt


class PromptConfigError(Exception):
    def __init__(self, message: str, original_error: BaseException | None = None):
        super().__init__(message)
        self.original_error = original_error


class PromptService:
    """Per-tenant system prompts with a mandatory ``_default`` fallback."""

    def __init__(self, prompts: dict[str, str]):
        default = prompts.get(DEFAULT_PROMPT_KEY)
        if default is None:
            raise PromptConfigError(f'Prompts config must have a "{DEFAULT_PROMPT_KEY}" key')
        if not isinstance(default, str) or not default.strip():
            raise PromptConfigError("Default prompt must be a non-empty string")
        self._prompts = dict(prompts)

    @classmethod
    def from_file(cls, path: str | Path) -> PromptService:
        try:
            with open(path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as ex:
            raise PromptConfigError(f"Failed to load prompts from {path}", ex) from ex
        if not isinstance(raw, dict):
            raise PromptConfigError(f"Prompts config in {path} must be a JSON object")
        return cls(raw)

    @property
    def default_prompt(self) -> str:
        return self._prompts[DEFAULT_PROMPT_KEY]

    def get_prompt_for_tenant(self, tenant_id: str) -> str:
        prompt = self._prompts.get(tenant_id)
        if isinstance(prompt, str) and prompt:
            return prompt
        return self.default_prompt

    def has_tenant_prompt(self, tenant_id: str) -> bool:
        return tenant_id != DEFAULT_PROMPT_KEY and tenant_id in self._prompts

    def tenant_ids(self) -> list[str]:
        return [key for key in self._prompts if key != DEFAULT_PROMPT_KEY]
