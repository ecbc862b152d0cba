"""Tests for environment driven configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from sandboxexec.config import (
    ContainerConfig,
    ExecutionEnv,
    SandboxConfig,
    parse_memory_limit,
)
from sandboxexec.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any SANDBOXEXEC_* variables inherited from the host."""
    import os

    for key in list(os.environ):
        if key.startswith("SANDBOXEXEC_"):
            monkeypatch.delenv(key, raising=False)
    yield


def test_defaults():
    cfg = SandboxConfig.from_env()
    assert cfg.execution_env is ExecutionEnv.SANDBOX
    assert cfg.allowed_dir == Path.home() / ".sandboxexec" / "workspace"
    assert cfg.allowed_langs == []
    assert cfg.default_timeout_secs == 30
    assert cfg.max_output_bytes == 1024 * 1024
    assert cfg.container.image == "python:3.12-slim"
    assert cfg.container.network == "none"
    assert cfg.container.memory_limit == "512m"
    assert cfg.container.cpu_limit == 1.0
    assert cfg.wasm.max_memory_pages == 256
    assert cfg.wasm.fuel_limit == 1_000_000_000
    assert cfg.wasm.enable_wasi is True
    assert cfg.container.languages == ["python", "shell"]
    assert cfg.os.run_as_user is None


def test_values_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SANDBOXEXEC_EXECUTION_ENV", "docker")
    monkeypatch.setenv("SANDBOXEXEC_ALLOWED_DIR", str(tmp_path))
    monkeypatch.setenv("SANDBOXEXEC_ALLOWED_LANGS", "Python, bash ,")
    monkeypatch.setenv("SANDBOXEXEC_DEFAULT_TIMEOUT_SECS", "5")
    monkeypatch.setenv("SANDBOXEXEC_CONTAINER_IMAGE", "node:20")
    monkeypatch.setenv("SANDBOXEXEC_CONTAINER_CPUS", "0.5")
    monkeypatch.setenv("SANDBOXEXEC_CONTAINER_LANGUAGES", "JavaScript,ts")
    monkeypatch.setenv("SANDBOXEXEC_CONTAINER_ENV", "A=1,B=x=y")
    monkeypatch.setenv("SANDBOXEXEC_WASM_ENABLE_WASI", "false")
    monkeypatch.setenv("SANDBOXEXEC_WASM_WASI_DIRS", "/data,/models")
    monkeypatch.setenv("SANDBOXEXEC_OS_DENIED_EXECUTABLES", "ruby")

    cfg = SandboxConfig.load()
    assert cfg.execution_env is ExecutionEnv.CONTAINER
    assert cfg.allowed_dir == tmp_path
    assert cfg.allowed_langs == ["python", "bash"]
    assert cfg.default_timeout_secs == 5
    assert cfg.container.image == "node:20"
    assert cfg.container.nano_cpus() == 500_000_000
    assert cfg.container.languages == ["javascript", "ts"]
    assert cfg.container.env == {"A": "1", "B": "x=y"}
    assert cfg.wasm.enable_wasi is False
    assert cfg.wasm.wasi_dirs == [Path("/data"), Path("/models")]
    assert cfg.os.denied_executables == ["ruby"]


@pytest.mark.parametrize("value, expected", [("os", ExecutionEnv.OS), ("WASM", ExecutionEnv.SANDBOX)])
def test_execution_env_aliases(value, expected):
    assert ExecutionEnv.parse(value) is expected


def test_invalid_execution_env(monkeypatch):
    monkeypatch.setenv("SANDBOXEXEC_EXECUTION_ENV", "vm")
    with pytest.raises(ConfigurationError):
        SandboxConfig.load()


@pytest.mark.parametrize("value", ["0", "-3"])
def test_timeout_must_be_positive(monkeypatch, value):
    monkeypatch.setenv("SANDBOXEXEC_DEFAULT_TIMEOUT_SECS", value)
    with pytest.raises(ValueError):
        SandboxConfig.load()


def test_invalid_integer(monkeypatch):
    monkeypatch.setenv("SANDBOXEXEC_MAX_OUTPUT_BYTES", "lots")
    with pytest.raises(ValueError) as excinfo:
        SandboxConfig.load()
    assert "SANDBOXEXEC_MAX_OUTPUT_BYTES" in str(excinfo.value)


def test_invalid_env_pair(monkeypatch):
    monkeypatch.setenv("SANDBOXEXEC_CONTAINER_ENV", "NOEQUALS")
    with pytest.raises(ValueError):
        ContainerConfig.load()


@pytest.mark.parametrize(
    "limit, expected",
    [
        ("512m", 512 * 1024 * 1024),
        ("512MB", 512 * 1024 * 1024),
        ("1g", 1024 ** 3),
        ("64k", 64 * 1024),
        ("2048", 2048),
        ("", None),
    ],
)
def test_parse_memory_limit(limit, expected):
    assert parse_memory_limit(limit) == expected


@pytest.mark.parametrize("limit", ["lots", "12x", "m", "1.5g"])
def test_parse_memory_limit_rejects_garbage(limit):
    with pytest.raises(ValueError):
        parse_memory_limit(limit)
