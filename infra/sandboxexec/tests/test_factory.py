"""Tests for backend selection."""

from __future__ import annotations

import logging

import pytest

from sandboxexec.config import ContainerConfig, ExecutionEnv, SandboxConfig
from sandboxexec.errors import ConfigurationError
from sandboxexec.executor import create_executor
from sandboxexec.executor.base import Language
from sandboxexec.executor.container_executor import ContainerExecutor
from sandboxexec.executor.os_sandbox import OsSandbox
from sandboxexec.executor.wasm_executor import WasmExecutor


@pytest.mark.asyncio
async def test_os_backend(tmp_path):
    config = SandboxConfig(execution_env=ExecutionEnv.OS, allowed_dir=tmp_path, max_output_bytes=10)
    executor = await create_executor(config)
    assert isinstance(executor, OsSandbox)
    assert executor.root == tmp_path.resolve()
    assert executor.max_output_bytes == 10
    assert executor.meta.security_level == 1


@pytest.mark.asyncio
async def test_sandbox_backend_warns_about_source_gap(caplog):
    config = SandboxConfig(execution_env=ExecutionEnv.SANDBOX)
    with caplog.at_level(logging.WARNING, logger="sandboxexec.executor.factory"):
        executor = await create_executor(config)
    assert isinstance(executor, WasmExecutor)
    assert executor.meta.security_level == 3
    assert "javascript, python" in caplog.text


@pytest.mark.asyncio
async def test_container_backend(docker):
    config = SandboxConfig(
        execution_env=ExecutionEnv.CONTAINER,
        allowed_langs=["python", "go"],
        container=ContainerConfig(languages=[]),
    )
    executor = await create_executor(config, docker=docker)
    assert isinstance(executor, ContainerExecutor)
    assert executor.supported_languages() == {Language.PYTHON, Language.GO}
    assert executor.meta.security_level == 2


@pytest.mark.asyncio
async def test_container_backend_without_daemon(docker):
    docker.ping_error = True
    config = SandboxConfig(execution_env=ExecutionEnv.CONTAINER)
    with pytest.raises(ConfigurationError) as excinfo:
        await create_executor(config, docker=docker)
    assert "container" in str(excinfo.value)


@pytest.mark.asyncio
async def test_invalid_memory_limit(docker):
    config = SandboxConfig(
        execution_env=ExecutionEnv.CONTAINER,
        container=ContainerConfig(memory_limit="plenty"),
    )
    with pytest.raises(ConfigurationError):
        await create_executor(config, docker=docker)


@pytest.mark.asyncio
async def test_unknown_allowed_language(tmp_path):
    config = SandboxConfig(execution_env=ExecutionEnv.OS, allowed_dir=tmp_path, allowed_langs=["cobol"])
    with pytest.raises(ConfigurationError):
        await create_executor(config)


@pytest.mark.asyncio
async def test_unknown_container_language(docker):
    config = SandboxConfig(
        execution_env=ExecutionEnv.CONTAINER,
        container=ContainerConfig(languages=["python", "cobol"]),
    )
    with pytest.raises(ConfigurationError):
        await create_executor(config, docker=docker)
