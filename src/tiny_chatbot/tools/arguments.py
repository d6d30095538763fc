from typing import Any

from tiny_chatbot.sandbox import ToolArgumentError


def require_string(tool_input: dict[str, Any], key: str) -> str:
    value = tool_input.get(key)
    if not isinstance(value, str) or not value:
        raise ToolArgumentError(f"'{key}' must be a non-empty string")
    return value


def optional_string(tool_input: dict[str, Any], key: str) -> str | None:
    value = tool_input.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ToolArgumentError(f"'{key}' must be a string")
    return value


def string_list(tool_input: dict[str, Any], key: str, *, required: bool = True) -> list[str]:
    value = tool_input.get(key)
    if value is None:
        if required:
            raise ToolArgumentError(f"'{key}' is required")
        return []
    # A bare string is a common model slip for a single-item list.
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ToolArgumentError(f"'{key}' must be a list of non-empty strings")
    if required and not value:
        raise ToolArgumentError(f"'{key}' must not be empty")
    return list(value)


def optional_bool(tool_input: dict[str, Any], key: str) -> bool:
    value = tool_input.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ToolArgumentError(f"'{key}' must be a boolean")
    return value


def optional_positive_int(tool_input: dict[str, Any], key: str) -> int | None:
    value = tool_input.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != int(value) or value <= 0:
        raise ToolArgumentError(f"'{key}' must be a positive integer")
    return int(value)


def _reject_option_like(key: str, value: str) -> str:
    # The sandbox only checks non-flag arguments, so a path must never look like one.
    if value.startswith("-"):
        raise ToolArgumentError(f"'{key}' must not start with '-': {value!r}")
    return value


def require_path(tool_input: dict[str, Any], key: str) -> str:
    return _reject_option_like(key, require_string(tool_input, key))


def optional_path(tool_input: dict[str, Any], key: str) -> str | None:
    value = optional_string(tool_input, key)
    return _reject_option_like(key, value) if value is not None else None


def path_list(tool_input: dict[str, Any], key: str) -> list[str]:
    return [_reject_option_like(key, v) for v in string_list(tool_input, key)]
