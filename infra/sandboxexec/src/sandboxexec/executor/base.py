"""
Base interfaces and dataclasses for code execution backends.

All concrete executors inherit from :class:`CodeExecutor` and implement
the :meth:`~CodeExecutor.execute` and :meth:`~CodeExecutor.health_check`
coroutines.  Executors run untrusted code snippets and describe the
outcome with an :class:`ExecutionResult`.

The contract every backend honours:

* A program that fails (non‑zero exit, trap, crash) is reported through
  the result with ``success=False``.  Only sandbox problems raise, using
  the types in :mod:`sandboxexec.errors`.
* A request for an unsupported language is rejected before any process,
  VM or container is created.
* On timeout the backend terminates what it started before returning and
  reports ``timed_out=True`` with whatever output was captured.
* Nothing started for a request outlives the call to ``execute``.
"""

from __future__ import annotations

import abc
import dataclasses
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from ..errors import UnsupportedInputError, UnsupportedLanguageError

DEFAULT_TIMEOUT_SECS = 30.0


class Language(str, Enum):
    """Source languages known to the engine.

    Each backend supports its own subset; see :meth:`CodeExecutor.supports`.
    """

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    RUST = "rust"
    GO = "go"
    SHELL = "shell"
    RUBY = "ruby"

    @classmethod
    def parse(cls, value: str) -> "Language":
        """Parse a language name or common alias (``py``, ``js``, ``sh`` ...)."""
        normalized = value.strip().lower()
        language = _ALIASES.get(normalized)
        if language is None:
            supported = ", ".join(lang.value for lang in cls)
            raise UnsupportedInputError(f"Unknown language: {value}. Supported: {supported}")
        return language

    def __str__(self) -> str:
        return self.value


_ALIASES: Dict[str, Language] = {
    "python": Language.PYTHON,
    "py": Language.PYTHON,
    "javascript": Language.JAVASCRIPT,
    "js": Language.JAVASCRIPT,
    "node": Language.JAVASCRIPT,
    "typescript": Language.TYPESCRIPT,
    "ts": Language.TYPESCRIPT,
    "rust": Language.RUST,
    "rs": Language.RUST,
    "go": Language.GO,
    "golang": Language.GO,
    "shell": Language.SHELL,
    "bash": Language.SHELL,
    "sh": Language.SHELL,
    "ruby": Language.RUBY,
    "rb": Language.RUBY,
}


@dataclass(frozen=True)
class ExecutionRequest:
    """One execution attempt.

    Attributes
    ----------
    language: Language
        Language of ``code``.
    code: str
        The untrusted source text.
    timeout: float
        Wall‑clock limit in seconds.
    working_dir: str, optional
        Directory relative to the backend's sandbox root.  Must not
        resolve outside that root.
    env: dict
        Environment variable overrides.
    stdin: str, optional
        Data supplied on standard input.
    args: tuple of str
        Command‑line arguments passed to the program.
    """

    language: Language
    code: str
    timeout: float = DEFAULT_TIMEOUT_SECS
    working_dir: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    stdin: Optional[str] = None
    args: Tuple[str, ...] = ()

    def with_timeout(self, timeout: float) -> "ExecutionRequest":
        return dataclasses.replace(self, timeout=timeout)

    def with_env(self, key: str, value: str) -> "ExecutionRequest":
        env = dict(self.env)
        env[key] = value
        return dataclasses.replace(self, env=env)

    def with_stdin(self, stdin: str) -> "ExecutionRequest":
        return dataclasses.replace(self, stdin=stdin)

    def with_working_dir(self, working_dir: str) -> "ExecutionRequest":
        return dataclasses.replace(self, working_dir=working_dir)

    def with_args(self, args: Iterable[str]) -> "ExecutionRequest":
        return dataclasses.replace(self, args=tuple(args))


@dataclass(frozen=True)
class ExecutionResult:
    """Result of running a code snippet.

    Attributes
    ----------
    success: bool
        ``True`` only if the program terminated normally with status zero.
    exit_code: int, optional
        Exit status.  ``None`` when the program never completed (timeout).
    stdout: str
        Standard output, possibly partial on timeout.
    stderr: str
        Standard error, possibly partial on timeout.
    duration: float
        Observed wall‑clock time in seconds.
    timed_out: bool
        ``True`` exactly when the timeout fired before the program ended.
    metadata: dict
        Backend specific facts such as fuel consumed or the container id.
    """

    success: bool
    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        return int(self.duration * 1000)

    @classmethod
    def success_result(cls, stdout: str, duration: float, **metadata: Any) -> "ExecutionResult":
        return cls(True, 0, stdout, "", duration, metadata=metadata)

    @classmethod
    def failure(
        cls,
        stderr: str,
        duration: float,
        exit_code: Optional[int] = None,
        stdout: str = "",
        **metadata: Any,
    ) -> "ExecutionResult":
        return cls(False, exit_code, stdout, stderr, duration, metadata=metadata)

    @classmethod
    def timeout(
        cls, stdout: str, stderr: str, duration: float, **metadata: Any
    ) -> "ExecutionResult":
        return cls(False, None, stdout, stderr, duration, timed_out=True, metadata=metadata)

    def combined_output(self) -> str:
        if not self.stderr:
            return self.stdout
        if not self.stdout:
            return self.stderr
        return f"{self.stdout}\n--- stderr ---\n{self.stderr}"


@dataclass(frozen=True)
class ExecutorMeta:
    """Static description of a backend."""

    id: str
    name: str
    description: str
    supported_languages: FrozenSet[Language]
    # Higher is more isolated.
    security_level: int


def truncate_output(data: bytes, limit: int) -> Tuple[str, bool]:
    """Decode captured output lossily, keeping at most ``limit`` bytes."""
    truncated = limit > 0 and len(data) > limit
    if truncated:
        data = data[:limit]
    return data.decode("utf-8", errors="replace"), truncated


class Stopwatch:
    """Wall‑clock timer bracketing one execution."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    def elapsed(self) -> float:
        return time.perf_counter() - self._start


class CodeExecutor(abc.ABC):
    """
    Abstract base class defining the interface for code executors.

    Subclasses describe themselves with :attr:`meta` and implement
    :meth:`execute` and :meth:`health_check`.
    """

    meta: ExecutorMeta

    def __init__(self, allowed_langs: Optional[Iterable[str]] = None) -> None:
        """
        Parameters
        ----------
        allowed_langs: iterable of str, optional
            Language names the operator permits.  When empty, every
            language the backend natively supports is allowed.
        """
        self.allowed_langs: FrozenSet[Language] = frozenset(
            Language.parse(lang) for lang in (allowed_langs or ())
        )

    @property
    def name(self) -> str:
        return self.meta.id

    def supported_languages(self) -> FrozenSet[Language]:
        native = self.meta.supported_languages
        if self.allowed_langs:
            return native & self.allowed_langs
        return native

    def supports(self, language: Language) -> bool:
        return language in self.supported_languages()

    def ensure_supported(self, language: Language) -> None:
        if not self.supports(language):
            reason = None
            if language in self.meta.supported_languages:
                reason = "disabled by configuration"
            raise UnsupportedLanguageError(language, self.meta.id, reason)

    @abc.abstractmethod
    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run ``request`` and describe what happened.

        Raises
        ------
        UnsupportedInputError
            The language is not supported by this backend.
        SandboxViolationError
            The request tried to leave the sandbox.
        InfrastructureError
            The backend could not run the code.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Cheap readiness probe, independent of any request."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the backend itself."""
        return None
