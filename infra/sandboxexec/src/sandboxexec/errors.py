"""Error types raised by the execution backends.

Only problems with the sandbox itself are raised.  A program that
exits non‑zero, traps or times out is *not* an error: it produces an
``ExecutionResult`` with ``success`` set to ``False``.  The exceptions
below cover the remaining cases:

* ``UnsupportedInputError`` – the request cannot be served by the selected
  backend (unknown or unsupported language).  Raised before any process,
  VM or container is created.
* ``SandboxViolationError`` – the request tried to escape the sandbox root
  or use a forbidden executable.
* ``InfrastructureError`` – the backend could not do its job (cannot spawn
  the interpreter, reach the Docker daemon or compile a WASM module).
* ``ConfigurationError`` – invalid settings or a backend that failed to
  initialise at startup.
"""

from __future__ import annotations

from typing import Optional


class SandboxError(Exception):
    """Base class for every error raised by ``sandboxexec``."""

    def is_retryable(self) -> bool:
        return isinstance(self, InfrastructureError)

    def is_client_error(self) -> bool:
        return isinstance(self, (UnsupportedInputError, SandboxViolationError))


class UnsupportedInputError(SandboxError):
    """The request cannot be executed by this backend."""


class UnsupportedLanguageError(UnsupportedInputError):
    def __init__(self, language: object, backend: str, reason: Optional[str] = None) -> None:
        self.language = language
        self.backend = backend
        message = f"Language '{language}' is not supported by the {backend} executor"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SandboxViolationError(SandboxError):
    """The request attempted to leave the sandbox."""


class InfrastructureError(SandboxError):
    """The backend could not run the code for reasons unrelated to the code."""


class ProcessSpawnError(InfrastructureError):
    pass


class WasmError(InfrastructureError):
    pass


class ContainerError(InfrastructureError):
    pass


class ConfigurationError(SandboxError):
    """Invalid configuration or a backend that failed to start."""
