"""
OS‑level sandboxed execution.

The OS executor runs code through an interpreter's inline‑eval form
(``python3 -c``, ``node -e``, ``bash -c`` ...) with the working directory
confined to a sandbox root.  There is no kernel isolation: this is the
weakest tier and relies on the host being disposable or trusted.  Compiled
languages have no inline form and are rejected.

The child runs in its own session.  Its process group is killed once the
interpreter exits or the timeout fires, so anything the snippet forked
into the background is gone before ``execute`` returns.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from ..config import OsSandboxConfig
from ..errors import ProcessSpawnError, SandboxViolationError, UnsupportedLanguageError
from .base import (
    CodeExecutor,
    ExecutionRequest,
    ExecutionResult,
    ExecutorMeta,
    Language,
    Stopwatch,
    truncate_output,
)

logger = logging.getLogger(__name__)

# Seconds to wait for the killed group to exit and its pipes to close.
_KILL_GRACE = 1.0

_INLINE_COMMANDS: Dict[Language, List[str]] = {
    Language.PYTHON: ["python3", "-c"],
    Language.JAVASCRIPT: ["node", "-e"],
    Language.SHELL: ["bash", "-c"],
    Language.RUBY: ["ruby", "-e"],
}


def resolve_working_dir(root: Path, working_dir: Optional[str]) -> Path:
    """Resolve ``working_dir`` under ``root`` or raise ``SandboxViolationError``.

    Symlinks and ``..`` segments are resolved before the containment check,
    so a path is accepted only if it really lives below ``root``.
    """
    root = root.resolve()
    if not working_dir:
        return root
    candidate = (root / working_dir).resolve()
    if not candidate.is_relative_to(root):
        raise SandboxViolationError(
            f"Working directory {working_dir!r} is outside the sandbox root"
        )
    return candidate


class _CaptureProtocol(asyncio.SubprocessProtocol):
    """Collects output and reports process exit apart from pipe closure.

    A background child that inherited stdout keeps the pipes open after the
    interpreter exits, so ``exited`` and ``closed`` resolve independently.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, limit: int) -> None:
        self.limit = limit
        self.stdout = bytearray()
        self.stderr = bytearray()
        self.exited: "asyncio.Future[None]" = loop.create_future()
        self.closed: "asyncio.Future[None]" = loop.create_future()

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        buffer = self.stdout if fd == 1 else self.stderr
        # Keep accepting past the limit so the child never blocks on a full pipe.
        if self.limit <= 0 or len(buffer) <= self.limit:
            buffer.extend(data)

    def process_exited(self) -> None:
        if not self.exited.done():
            self.exited.set_result(None)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self.closed.done():
            self.closed.set_result(None)


class OsSandbox(CodeExecutor):
    """Execute snippets as interpreter subprocesses inside a sandbox root."""

    meta = ExecutorMeta(
        id="os",
        name="OS sandbox",
        description="Interpreter subprocess confined to a sandbox directory",
        supported_languages=frozenset(
            {
                Language.PYTHON,
                Language.JAVASCRIPT,
                Language.TYPESCRIPT,
                Language.SHELL,
                Language.RUBY,
            }
        ),
        security_level=1,
    )

    def __init__(
        self,
        root: Path,
        config: Optional[OsSandboxConfig] = None,
        allowed_langs: Optional[List[str]] = None,
        max_output_bytes: int = 1024 * 1024,
    ) -> None:
        super().__init__(allowed_langs)
        self.root = Path(root).expanduser().resolve()
        self.config = config or OsSandboxConfig()
        self.max_output_bytes = max_output_bytes

    def _command(self, language: Language) -> List[str]:
        if language in _INLINE_COMMANDS:
            return list(_INLINE_COMMANDS[language])
        if language is Language.TYPESCRIPT:
            if shutil.which("deno"):
                return ["deno", "eval"]
            if shutil.which("ts-node"):
                return ["ts-node", "-e"]
            raise ProcessSpawnError("TypeScript runtime not found (deno or ts-node)")
        raise UnsupportedLanguageError(
            language, self.meta.id, "inline execution is not available for compiled languages"
        )

    def _check_executable(self, executable: str) -> None:
        if executable in self.config.denied_executables:
            raise SandboxViolationError(f"Executable '{executable}' is denied by policy")
        allowed = self.config.allowed_executables
        if allowed and executable not in allowed:
            raise SandboxViolationError(f"Executable '{executable}' is not in the allowed list")

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        self.ensure_supported(request.language)
        command = self._command(request.language)
        self._check_executable(command[0])

        self.root.mkdir(parents=True, exist_ok=True)
        working_dir = resolve_working_dir(self.root, request.working_dir)
        working_dir.mkdir(parents=True, exist_ok=True)

        argv = [*command, request.code, *request.args]
        if request.language is Language.SHELL:
            # bash -c binds the first trailing argument to $0
            argv = [*command, request.code, "sandbox", *request.args]

        env = dict(os.environ)
        env.update(request.env)

        logger.debug(
            "Executing %s code in OS sandbox (working_dir=%s, timeout=%ss)",
            request.language,
            working_dir,
            request.timeout,
        )

        loop = asyncio.get_running_loop()
        protocol = _CaptureProtocol(loop, self.max_output_bytes)
        stopwatch = Stopwatch()
        try:
            transport, _ = await loop.subprocess_exec(
                lambda: protocol,
                *argv,
                cwd=str(working_dir),
                env=env,
                stdin=subprocess.PIPE if request.stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
                user=self.config.run_as_user,
            )
        except FileNotFoundError as exc:
            raise ProcessSpawnError(f"Interpreter '{command[0]}' not found on PATH") from exc
        except OSError as exc:
            raise ProcessSpawnError(f"Failed to spawn process: {exc}") from exc

        timed_out = False
        try:
            if request.stdin is not None:
                self._feed_stdin(transport, request.stdin)
            await asyncio.wait({protocol.exited}, timeout=request.timeout)
            if transport.get_returncode() is None:
                timed_out = True
                logger.warning("Execution timed out after %ss; killing process group", request.timeout)
        finally:
            self._kill_group(transport)
            await asyncio.wait({protocol.exited}, timeout=_KILL_GRACE)
            await asyncio.wait({protocol.closed}, timeout=_KILL_GRACE)
            transport.close()

        duration = stopwatch.elapsed()
        stdout, out_truncated = truncate_output(bytes(protocol.stdout), self.max_output_bytes)
        stderr, err_truncated = truncate_output(bytes(protocol.stderr), self.max_output_bytes)
        metadata = {"truncated": True} if out_truncated or err_truncated else {}

        if timed_out:
            notice = f"Execution timed out after {request.timeout} seconds."
            stderr = f"{stderr}\n{notice}" if stderr else notice
            return ExecutionResult.timeout(stdout, stderr, duration, **metadata)

        exit_code = transport.get_returncode()
        return ExecutionResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            metadata=metadata,
        )

    async def health_check(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.root, os.W_OK)

    @staticmethod
    def _feed_stdin(transport: asyncio.SubprocessTransport, data: str) -> None:
        pipe = transport.get_pipe_transport(0)
        if pipe is None:
            return
        pipe.write(data.encode("utf-8"))
        # close() flushes what is buffered; a reader that exits early just drops it
        pipe.close()

    @staticmethod
    def _kill_group(transport: asyncio.SubprocessTransport) -> None:
        # The group outlives its leader while background children remain.
        pid = transport.get_pid()
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            if transport.get_returncode() is None:
                transport.kill()
