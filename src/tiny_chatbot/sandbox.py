from __future__ import annotations

import asyncio
import os
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace

from loguru import logger

from tiny_chatbot.messages import ToolResult

APPROVED_COMMANDS = frozenset({"ls", "cat", "grep", "rg", "head", "tail", "wc", "which", "echo", "pwd"})

# Commands whose non-flag arguments are filesystem paths.
_PATH_COMMANDS = frozenset({"ls", "cat", "grep", "rg", "head", "tail", "wc"})
# The first non-flag argument of these is a search pattern.
_PATTERN_COMMANDS = frozenset({"grep", "rg"})
# Options whose following argument is a value, not a path.
_VALUE_OPTIONS: dict[str, frozenset[str]] = {
    "head": frozenset({"-n", "-c"}),
    "tail": frozenset({"-n", "-c"}),
}
# Options that carry the search pattern explicitly.
_PATTERN_OPTIONS = frozenset({"-e", "--regexp"})

_READ_CHUNK_BYTES = 4096
_KILL_GRACE_SECONDS = 5


class ToolSandboxError(Exception):
    pass


class SandboxConfigError(ToolSandboxError):
    pass


class CommandNotAllowedError(ToolSandboxError):
    def __init__(self, command: str):
        super().__init__(f"Command '{command}' is not in the list of approved commands")
        self.command = command


class PathViolationError(ToolSandboxError):
    def __init__(self, path: str):
        super().__init__(f"Path '{path}' is outside the allowed working directory")
        self.path = path


class ToolArgumentError(ToolSandboxError):
    pass


@dataclass(frozen=True)
class ToolsConfig:
    working_dir_root: str
    max_output_bytes: int = 100_000
    execution_timeout_ms: int = 30_000


class _OutputCapture:
    """Collects stdout/stderr under one combined byte budget."""

    def __init__(self, limit: int, proc: asyncio.subprocess.Process):
        self._limit = limit
        self._proc = proc
        self._buffers = {"stdout": bytearray(), "stderr": bytearray()}
        self.truncated = False

    def _total(self) -> int:
        return sum(len(b) for b in self._buffers.values())

    async def drain(self, stream: asyncio.StreamReader | None, name: str) -> None:
        if stream is None:
            return
        buffer = self._buffers[name]
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                return
            if self.truncated:
                continue
            remaining = self._limit - self._total()
            if len(chunk) > remaining:
                buffer.extend(chunk[: max(remaining, 0)])
                self.truncated = True
                logger.warning(f"Output exceeded {self._limit:,} bytes; stopping process early")
                _kill(self._proc)
                continue
            buffer.extend(chunk)

    def text(self, name: str) -> str | None:
        data = self._buffers[name]
        if not data:
            return None
        return data.decode(errors="replace")


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def _reap(proc: asyncio.subprocess.Process) -> None:
    _kill(proc)
    try:
        await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE_SECONDS)
    except (asyncio.TimeoutError, ProcessLookupError):
        logger.warning(f"Process {proc.pid} did not exit after kill")


class ToolSandbox:
    """Runs approved read-only commands confined to a root directory."""

    def __init__(self, config: ToolsConfig):
        self._config = config

    @property
    def config(self) -> ToolsConfig:
        return self._config

    def validate_working_directory(self) -> None:
        root = self._config.working_dir_root
        if not os.path.isabs(root):
            raise SandboxConfigError(f"Sandbox root must be an absolute path: {root!r}")
        if not os.path.isdir(root):
            raise SandboxConfigError(f"Sandbox root does not exist or is not a directory: {root!r}")

    async def execute_tool(self, command: str, args: Sequence[str]) -> ToolResult:
        if command not in APPROVED_COMMANDS:
            raise CommandNotAllowedError(command)
        checked_args = self._validate_paths(command, list(args))

        logger.info(f"Executing sandboxed command: {command} {' '.join(checked_args)}".rstrip())
        started = time.monotonic()
        result = await self._spawn(command, checked_args)
        duration_ms = int((time.monotonic() - started) * 1000)
        result = replace(result, duration_ms=duration_ms)

        logger.info(
            f"Sandboxed {command} finished: status={result.status}, "
            f"exit_code={result.exit_code}, truncated={bool(result.truncated)}, duration={duration_ms}ms"
        )
        return result

    def _validate_paths(self, command: str, args: list[str]) -> list[str]:
        if command not in _PATH_COMMANDS:
            return args

        value_options = _VALUE_OPTIONS.get(command, frozenset())
        expecting_pattern = command in _PATTERN_COMMANDS
        skip_next = False
        for arg in args:
            if skip_next:
                skip_next = False
                continue
            if arg.startswith("-"):
                if expecting_pattern and arg in _PATTERN_OPTIONS:
                    expecting_pattern = False
                    skip_next = True
                else:
                    skip_next = arg in value_options
                continue
            if expecting_pattern:
                expecting_pattern = False
                continue
            self._ensure_contained(arg)
        return args

    def _ensure_contained(self, path: str) -> None:
        root = os.path.realpath(self._config.working_dir_root)
        resolved = os.path.realpath(os.path.join(self._config.working_dir_root, path))
        root_prefix = root if root.endswith(os.sep) else root + os.sep
        resolved_prefix = resolved if resolved.endswith(os.sep) else resolved + os.sep
        if not resolved_prefix.startswith(root_prefix):
            logger.warning(f"Rejected path outside sandbox root: {path!r}")
            raise PathViolationError(path)

    async def _spawn(self, command: str, args: list[str]) -> ToolResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._config.working_dir_root,
            )
        except OSError as ex:
            logger.error(f"Failed to start {command}: {ex}")
            return ToolResult(status="error", error_message=f"Failed to start {command}: {ex}", truncated=False)

        capture = _OutputCapture(self._config.max_output_bytes, proc)
        timeout_seconds = self._config.execution_timeout_ms / 1000

        try:
            returncode = await asyncio.wait_for(self._wait(proc, capture), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            await _reap(proc)
            logger.warning(f"{command} timed out after {self._config.execution_timeout_ms}ms")
            return ToolResult(
                status="timeout",
                stdout=capture.text("stdout"),
                stderr=capture.text("stderr"),
                truncated=capture.truncated,
                error_message=f"Command timed out after {self._config.execution_timeout_ms}ms",
            )
        except asyncio.CancelledError:
            await _reap(proc)
            raise

        stdout = capture.text("stdout")
        stderr = capture.text("stderr")

        if capture.truncated and returncode <= 0:
            # Stopped by the output cap; whatever was captured is the answer.
            return ToolResult(
                status="success",
                stdout=stdout,
                stderr=stderr,
                exit_code=returncode if returncode == 0 else None,
                truncated=True,
            )

        status = "success" if returncode == 0 else "error"
        error_message = None
        if returncode != 0 and not stderr:
            error_message = f"Command exited with code {returncode}"
        return ToolResult(
            status=status,
            stdout=stdout,
            stderr=stderr,
            exit_code=returncode,
            truncated=capture.truncated,
            error_message=error_message,
        )

    @staticmethod
    async def _wait(proc: asyncio.subprocess.Process, capture: _OutputCapture) -> int:
        await asyncio.gather(
            capture.drain(proc.stdout, "stdout"),
            capture.drain(proc.stderr, "stderr"),
        )
        return await proc.wait()
