"""Helpers for exposing the executor as an agent "run code" tool.

Tool layers distinguish two outcomes when they report back to a model
or a user:

* the code ran and failed – a normal ``ExecutionResult`` with
  ``success=False`` (non‑zero exit, trap, timeout);
* the sandbox itself could not run the code – a raised ``SandboxError``.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence, Union

from .config import SandboxConfig
from .errors import SandboxError
from .executor.base import CodeExecutor, ExecutionRequest, ExecutionResult, Language


async def run_code(
    executor: CodeExecutor,
    language: Union[Language, str],
    code: str,
    *,
    timeout: Optional[float] = None,
    stdin: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    args: Sequence[str] = (),
    working_dir: Optional[str] = None,
    config: Optional[SandboxConfig] = None,
) -> ExecutionResult:
    """Build an ``ExecutionRequest`` and run it on ``executor``.

    Without an explicit ``timeout`` the request uses
    ``config.default_timeout_secs``, or the model default when no config
    is given.
    """
    if not isinstance(language, Language):
        language = Language.parse(language)
    request = ExecutionRequest(
        language=language,
        code=code,
        env=dict(env or {}),
        stdin=stdin,
        args=tuple(args),
        working_dir=working_dir,
    )
    if timeout is None and config is not None:
        timeout = float(config.default_timeout_secs)
    if timeout is not None:
        request = request.with_timeout(timeout)
    return await executor.execute(request)


def render_result(result: ExecutionResult) -> str:
    """Text shown to the caller for a completed call."""
    elapsed = f"{result.duration:.2f}s"
    if result.success:
        output = result.stdout or "(no output)"
        return f"Execution successful ({elapsed})\n{output}"
    if result.timed_out:
        partial = result.combined_output()
        message = f"Execution timed out ({elapsed})"
        return f"{message}\n{partial}" if partial else message
    status = "unknown" if result.exit_code is None else str(result.exit_code)
    output = result.combined_output() or "(no output)"
    return f"Execution failed (exit code {status}, {elapsed})\n{output}"


def render_error(exc: SandboxError) -> str:
    """Text shown when the sandbox could not run the code at all."""
    return f"Execution error: the sandbox could not run this code: {exc}"
