"""Sandboxed code execution package.

This package runs untrusted, model‑generated code on behalf of an agent
while bounding what that code can touch.  A single execution contract
is implemented by three isolation tiers which are selected once at
configuration time:

* ``os`` – an interpreter subprocess confined to a sandbox root directory.
* ``sandbox`` – a WebAssembly virtual machine with fuel metering.
* ``container`` – one ephemeral Docker container per request.

The top‑level modules include:

* ``config`` – configuration handling for environment variables.
* ``errors`` – the typed errors raised when the sandbox itself cannot run code.
* ``executor`` – the execution model, the three backends and the factory.
* ``tool`` – helpers used by agent tool layers to run code and render results.
* ``models`` – Pydantic models defining the HTTP request and response schemas.
* ``api`` – FastAPI application exposing the executor over HTTP.
"""

from .config import ExecutionEnv, SandboxConfig
from .errors import (
    ConfigurationError,
    ContainerError,
    InfrastructureError,
    ProcessSpawnError,
    SandboxError,
    SandboxViolationError,
    UnsupportedInputError,
    UnsupportedLanguageError,
    WasmError,
)
from .executor import (
    CodeExecutor,
    ExecutionRequest,
    ExecutionResult,
    Language,
    create_executor,
)

__all__ = [
    "CodeExecutor",
    "ConfigurationError",
    "ContainerError",
    "ExecutionEnv",
    "ExecutionRequest",
    "ExecutionResult",
    "InfrastructureError",
    "Language",
    "ProcessSpawnError",
    "SandboxConfig",
    "SandboxError",
    "SandboxViolationError",
    "UnsupportedInputError",
    "UnsupportedLanguageError",
    "WasmError",
    "create_executor",
]
