"""Build the configured execution backend."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..config import ExecutionEnv, SandboxConfig
from ..errors import ConfigurationError, InfrastructureError, UnsupportedInputError
from .base import CodeExecutor, Language

logger = logging.getLogger(__name__)

# Languages the WASM tier accepts but cannot run yet.
_SOURCE_GAP = frozenset({Language.PYTHON, Language.JAVASCRIPT})


async def create_executor(config: SandboxConfig, *, docker: Optional[Any] = None) -> CodeExecutor:
    """Instantiate exactly one backend for ``config.execution_env``.

    Backend construction failures (Docker unreachable, wasmtime engine
    cannot start, invalid limits) are raised here as ``ConfigurationError``
    so that they surface at startup rather than on the first request.
    ``docker`` optionally injects the Docker API client for the container
    tier.
    """
    try:
        return await _build(config, docker)
    except (InfrastructureError, UnsupportedInputError, ValueError) as exc:
        raise ConfigurationError(
            f"Failed to initialise the {config.execution_env} executor: {exc}"
        ) from exc


async def _build(config: SandboxConfig, docker: Optional[Any]) -> CodeExecutor:
    env = config.execution_env
    if env is ExecutionEnv.OS:
        from .os_sandbox import OsSandbox

        return OsSandbox(
            config.allowed_dir,
            config=config.os,
            allowed_langs=config.allowed_langs,
            max_output_bytes=config.max_output_bytes,
        )

    if env is ExecutionEnv.SANDBOX:
        from .wasm_executor import WasmExecutor

        executor = WasmExecutor(
            config.wasm,
            allowed_langs=config.allowed_langs,
            max_output_bytes=config.max_output_bytes,
        )
        gap = sorted(str(lang) for lang in executor.supported_languages() if lang in _SOURCE_GAP)
        if gap:
            logger.warning(
                "WebAssembly sandbox selected: source execution for %s is not available in this tier",
                ", ".join(gap),
            )
        return executor

    if env is ExecutionEnv.CONTAINER:
        from .container_executor import ContainerExecutor

        return await ContainerExecutor.create(
            config.container,
            docker=docker,
            allowed_langs=config.allowed_langs,
            max_output_bytes=config.max_output_bytes,
        )

    raise ConfigurationError(f"Unknown execution environment: {env}")

