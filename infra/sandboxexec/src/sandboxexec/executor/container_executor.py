"""
Docker container based execution.

Every request runs in its own ephemeral container: no network (unless
configured), a memory ceiling and a CPU ceiling, all enforced by the
container runtime.  The executor talks to the Docker Engine API through an
``aiodocker.Docker`` handle that is injected at construction, so waiting on a
container never blocks a worker thread and tests can substitute a fake.

Per request the steps are strictly ordered::

    create -> start -> wait (bounded by the timeout) -> fetch logs -> remove

Logs are fetched and the container is force‑removed on every path:
success, failure, timeout, and even when reading the logs fails.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import posixpath
import uuid
from typing import Any, Dict, List, Optional, Tuple

import aiodocker
import aiohttp
from aiodocker.exceptions import DockerError

from ..config import ContainerConfig
from ..errors import ConfigurationError, ContainerError, SandboxViolationError
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

CONTAINER_WORKDIR = "/workspace"
CONTAINER_LABEL = "sandboxexec.ephemeral"
CODE_ENV = "SANDBOXEXEC_CODE"
STDIN_ENV = "SANDBOXEXEC_STDIN"

_RUST_SCRIPT = (
    f'printf "%s" "${CODE_ENV}" > /tmp/main.rs'
    " && rustc --edition=2021 -o /tmp/program /tmp/main.rs"
    ' && exec /tmp/program "$@"'
)
_GO_SCRIPT = (
    "mkdir -p /tmp/gomain"
    f' && printf "%s" "${CODE_ENV}" > /tmp/gomain/main.go'
    ' && exec go run /tmp/gomain/main.go "$@"'
)
_STDIN_SCRIPT = f'printf "%s" "${STDIN_ENV}" | "$@"'


def build_command(request: ExecutionRequest) -> Tuple[List[str], Dict[str, str]]:
    """Map a request to the container command and the extra env it needs."""
    code = request.code
    env: Dict[str, str] = {}
    language = request.language
    if language is Language.PYTHON:
        cmd = ["python3", "-c", code]
    elif language is Language.JAVASCRIPT:
        cmd = ["node", "-e", code]
    elif language is Language.TYPESCRIPT:
        cmd = ["deno", "eval", code]
    elif language is Language.SHELL:
        cmd = ["bash", "-c", code, "sandbox"]
    elif language is Language.RUBY:
        cmd = ["ruby", "-e", code]
    elif language is Language.RUST:
        cmd = ["sh", "-c", _RUST_SCRIPT, "sandbox"]
        env[CODE_ENV] = code
    elif language is Language.GO:
        cmd = ["sh", "-c", _GO_SCRIPT, "sandbox"]
        env[CODE_ENV] = code
    else:
        raise ValueError(f"No container command for {language}")
    cmd.extend(request.args)

    if request.stdin is not None:
        cmd = ["sh", "-c", _STDIN_SCRIPT, "sandbox", *cmd]
        env[STDIN_ENV] = request.stdin
    return cmd, env


def container_working_dir(working_dir: Optional[str]) -> str:
    """Resolve ``working_dir`` under the container workspace."""
    if not working_dir:
        return CONTAINER_WORKDIR
    resolved = posixpath.normpath(posixpath.join(CONTAINER_WORKDIR, working_dir))
    if resolved != CONTAINER_WORKDIR and not resolved.startswith(CONTAINER_WORKDIR + "/"):
        raise SandboxViolationError(
            f"Working directory {working_dir!r} is outside the container workspace"
        )
    return resolved


def _split_image(image: str) -> Tuple[str, str]:
    name, sep, tag = image.rpartition(":")
    if sep and "/" not in tag:
        return name, tag
    return image, "latest"


class ContainerExecutor(CodeExecutor):
    """Run each request in an ephemeral Docker container."""

    meta = ExecutorMeta(
        id="container",
        name="Container sandbox",
        description="Ephemeral Docker container per request",
        supported_languages=frozenset(Language),
        security_level=2,
    )

    def __init__(
        self,
        config: ContainerConfig,
        docker: "aiodocker.Docker",
        allowed_langs: Optional[List[str]] = None,
        max_output_bytes: int = 1024 * 1024,
        owns_docker: bool = False,
    ) -> None:
        super().__init__(allowed_langs)
        self.config = config
        self.docker = docker
        if config.languages:
            # Narrow to the runtimes the image ships.
            self.meta = dataclasses.replace(
                type(self).meta,
                supported_languages=frozenset(Language.parse(lang) for lang in config.languages),
            )
        self.max_output_bytes = max_output_bytes
        self._owns_docker = owns_docker
        try:
            self.memory_bytes = config.memory_bytes()
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    @classmethod
    async def create(
        cls,
        config: ContainerConfig,
        docker: Optional["aiodocker.Docker"] = None,
        allowed_langs: Optional[List[str]] = None,
        max_output_bytes: int = 1024 * 1024,
    ) -> "ContainerExecutor":
        """Connect to the daemon, make sure the image exists and return an executor."""
        owns_docker = docker is None
        if docker is None:
            try:
                docker = aiodocker.Docker(url=config.docker_url)
            except (OSError, ValueError) as exc:
                raise ContainerError(f"Failed to connect to Docker: {exc}") from exc

        executor = cls(config, docker, allowed_langs, max_output_bytes, owns_docker=owns_docker)
        try:
            await executor._ping()
            logger.info("Container executor connected to Docker")
            await executor.ensure_image()
        except BaseException:
            await executor.close()
            raise
        return executor

    async def _ping(self) -> None:
        try:
            await self.docker.version()
        except (DockerError, aiohttp.ClientError, OSError) as exc:
            raise ContainerError(f"Docker ping failed: {exc}") from exc

    async def ensure_image(self) -> None:
        """Pull the configured image unless it is already present locally."""
        image = self.config.image
        try:
            await self.docker.images.inspect(image)
            return
        except DockerError as exc:
            if exc.status != 404:
                raise ContainerError(f"Failed to inspect image {image}: {exc}") from exc

        logger.info("Pulling Docker image: %s", image)
        repo, tag = _split_image(image)
        try:
            progress = await self.docker.images.pull(repo, tag=tag)
        except DockerError as exc:
            raise ContainerError(f"Failed to pull image {image}: {exc}") from exc
        for status in progress or []:
            if isinstance(status, dict) and status.get("error"):
                raise ContainerError(f"Failed to pull image {image}: {status['error']}")
        logger.info("Image %s pulled successfully", image)

    def _container_config(
        self, request: ExecutionRequest, working_dir: str
    ) -> Dict[str, Any]:
        cmd, extra_env = build_command(request)
        env = {**self.config.env, **request.env, **extra_env}
        host_config: Dict[str, Any] = {
            "NanoCpus": self.config.nano_cpus(),
            "NetworkMode": self.config.network,
            # removal happens explicitly once logs are collected
            "AutoRemove": False,
        }
        if self.memory_bytes:
            host_config["Memory"] = self.memory_bytes
        return {
            "Image": self.config.image,
            "Cmd": cmd,
            "Env": [f"{key}={value}" for key, value in env.items()],
            "WorkingDir": working_dir,
            "NetworkDisabled": self.config.network == "none",
            "AttachStdout": True,
            "AttachStderr": True,
            "Tty": False,
            "Labels": {CONTAINER_LABEL: "true"},
            "HostConfig": host_config,
        }

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        self.ensure_supported(request.language)
        working_dir = container_working_dir(request.working_dir)
        container_config = self._container_config(request, working_dir)
        name = f"sandboxexec-exec-{uuid.uuid4().hex}"

        stopwatch = Stopwatch()
        try:
            container = await self.docker.containers.create(config=container_config, name=name)
        except DockerError as exc:
            raise ContainerError(f"Failed to create container: {exc}") from exc
        logger.debug("Created container: %s", name)

        exit_code: Optional[int] = None
        wait_error: Optional[str] = None
        timed_out = False
        try:
            try:
                await container.start()
            except DockerError as exc:
                raise ContainerError(f"Failed to start container: {exc}") from exc

            try:
                status = await asyncio.wait_for(container.wait(), timeout=request.timeout)
                exit_code = int(status.get("StatusCode", -1))
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning("Container %s timed out after %ss", name, request.timeout)
            except DockerError as exc:
                wait_error = f"Wait failed: {exc}"
            duration = stopwatch.elapsed()

            stdout, stderr, truncated = await self._fetch_logs(container, name)
        finally:
            await self._remove(container, name)

        metadata: Dict[str, Any] = {"container": name, "image": self.config.image}
        if exit_code is not None:
            metadata["exit_status"] = exit_code
        if truncated:
            metadata["truncated"] = True

        if timed_out:
            notice = f"Execution timed out after {request.timeout} seconds."
            stderr = f"{stderr}\n{notice}" if stderr else notice
            return ExecutionResult.timeout(stdout, stderr, duration, **metadata)
        if wait_error is not None:
            stderr = f"{stderr}\n{wait_error}" if stderr else wait_error
            return ExecutionResult.failure(stderr, duration, stdout=stdout, **metadata)
        return ExecutionResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            metadata=metadata,
        )

    async def _fetch_logs(self, container: Any, name: str) -> Tuple[str, str, bool]:
        """Collect stdout and stderr; failures are logged and yield empty output."""
        try:
            out_lines = await container.log(stdout=True, stderr=False)
            err_lines = await container.log(stdout=False, stderr=True)
        except (DockerError, aiohttp.ClientError, UnicodeDecodeError) as exc:
            logger.warning("Error reading logs for %s: %s", name, exc)
            return "", "", False
        stdout, out_truncated = truncate_output(
            "".join(out_lines).encode("utf-8"), self.max_output_bytes
        )
        stderr, err_truncated = truncate_output(
            "".join(err_lines).encode("utf-8"), self.max_output_bytes
        )
        return stdout, stderr, out_truncated or err_truncated

    async def _remove(self, container: Any, name: str) -> None:
        try:
            await container.delete(force=True)
        except DockerError as exc:
            if exc.status == 404:
                return
            logger.error("Failed to remove container %s: %s", name, exc)
            raise ContainerError(f"Failed to remove container {name}: {exc}") from exc
        logger.debug("Removed container: %s", name)

    async def health_check(self) -> bool:
        try:
            await self._ping()
        except ContainerError:
            return False
        return True

    async def close(self) -> None:
        if self._owns_docker:
            await self.docker.close()
