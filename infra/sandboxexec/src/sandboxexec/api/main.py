"""
FastAPI application for the sandboxed execution service.

This module configures the FastAPI application, registers routes for
code execution and backend introspection, and enforces authentication
via an optional API key.  The execution backend is built once by
:func:`sandboxexec.executor.create_executor` when the application starts,
so a misconfigured backend (Docker unreachable, wasmtime unavailable)
fails the startup instead of the first request.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ..config import SandboxConfig
from ..errors import (
    InfrastructureError,
    SandboxViolationError,
    UnsupportedInputError,
)
from ..executor import CodeExecutor, ExecutionRequest, Language, create_executor
from ..executor.base import DEFAULT_TIMEOUT_SECS
from ..models import ExecuteRequest, ExecuteResponse, HealthResponse, LanguagesResponse


logger = logging.getLogger("sandboxexec")

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[sandboxexec] %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

logger.setLevel(logging.INFO)


def create_app(
    config: Optional[SandboxConfig] = None,
    executor: Optional[CodeExecutor] = None,
    api_key: Optional[str] = None,
) -> FastAPI:
    """Build the application.

    ``config`` defaults to :meth:`SandboxConfig.from_env` and is read when
    the application starts.  Passing ``executor`` skips the factory, which
    is how tests plug in a prepared backend.
    """
    if api_key is None:
        api_key = os.getenv("SANDBOXEXEC_API_KEY", "")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cfg = config
        backend = executor
        if backend is None:
            cfg = cfg or SandboxConfig.from_env()
            logger.info(
                "Loaded config: execution_env=%s, allowed_dir=%s, allowed_langs=%s, default_timeout=%s",
                cfg.execution_env,
                cfg.allowed_dir,
                cfg.allowed_langs,
                cfg.default_timeout_secs,
            )
            backend = await create_executor(cfg)
        app.state.executor = backend
        app.state.default_timeout = float(cfg.default_timeout_secs) if cfg else DEFAULT_TIMEOUT_SECS
        logger.info("Execution backend ready: %s", backend.meta.name)
        try:
            yield
        finally:
            await backend.close()

    app = FastAPI(title="Sandboxed Execution Service", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def authenticate(request: Request, call_next):
        """Middleware to enforce API key authentication on all requests."""
        path = request.url.path
        method = request.method
        client = getattr(request.client, "host", "unknown")

        logger.info("Incoming request: %s %s from %s", method, path, client)

        if api_key and request.headers.get("x-api-key") != api_key:
            logger.warning("Invalid API key for %s %s from %s", method, path, client)
            return JSONResponse(status_code=401, content={"detail": "Invalid API key"})

        response = await call_next(request)
        logger.info("Response: %s %s -> %s", method, path, response.status_code)
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Report whether the execution backend is ready."""
        backend: CodeExecutor = request.app.state.executor
        ready = await backend.health_check()
        return HealthResponse(status="ok" if ready else "degraded", backend=backend.name)

    @app.get("/v1/languages", response_model=LanguagesResponse)
    async def languages(request: Request) -> LanguagesResponse:
        backend: CodeExecutor = request.app.state.executor
        return LanguagesResponse(
            backend=backend.name,
            security_level=backend.meta.security_level,
            languages=sorted(str(lang) for lang in backend.supported_languages()),
        )

    @app.post("/exec", response_model=ExecuteResponse)
    async def exec_code(req: ExecuteRequest, request: Request) -> ExecuteResponse:
        """Run a snippet on the configured backend.

        A snippet that fails or times out is a normal 200 response with
        ``success`` false.  Errors mean the sandbox could not run it.
        """
        backend: CodeExecutor = request.app.state.executor
        try:
            language = Language.parse(req.language)
            execution = ExecutionRequest(
                language=language,
                code=req.code,
                timeout=req.timeout_secs or request.app.state.default_timeout,
                working_dir=req.working_dir,
                env=dict(req.env),
                stdin=req.stdin,
                args=tuple(req.args),
            )
            result = await backend.execute(execution)
        except UnsupportedInputError as exc:
            logger.warning("[/exec] Unsupported input: %s", exc)
            raise HTTPException(status_code=400, detail=str(exc))
        except SandboxViolationError as exc:
            logger.warning("[/exec] Sandbox violation: %s", exc)
            raise HTTPException(status_code=403, detail=str(exc))
        except InfrastructureError as exc:
            logger.error("[/exec] Backend failure: %s", exc)
            raise HTTPException(status_code=503, detail=str(exc))

        logger.info(
            "[/exec] Execution finished: success=%s, exit_code=%s, timed_out=%s, duration_ms=%s",
            result.success,
            result.exit_code,
            result.timed_out,
            result.duration_ms,
        )
        return ExecuteResponse(
            success=result.success,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_ms=result.duration_ms,
            timed_out=result.timed_out,
            metadata=result.metadata,
        )

    return app


app = create_app()
