"""Configuration loader.

The execution engine reads its configuration from environment variables so
that the same image can run in different contexts (local development, an
agent host, a docker‑compose stack).  Reasonable defaults are provided so
that local development works out of the box.

Environment variables:

``SANDBOXEXEC_EXECUTION_ENV``
    Selects the isolation tier.  ``os``, ``sandbox`` (alias ``wasm``) or
    ``container`` (alias ``docker``).  Defaults to ``sandbox``.

``SANDBOXEXEC_ALLOWED_DIR``
    Sandbox root for the ``os`` tier.  Every working directory must resolve
    inside it.  Defaults to ``~/.sandboxexec/workspace``.

``SANDBOXEXEC_ALLOWED_LANGS``
    Comma‑separated list of languages permitted for execution.  Empty means
    every language the selected backend supports.

``SANDBOXEXEC_DEFAULT_TIMEOUT_SECS``
    Wall‑clock timeout used when a request does not specify one.  Default 30.

``SANDBOXEXEC_MAX_OUTPUT_BYTES``
    Maximum bytes kept per output stream.  Default 1 MiB.

``SANDBOXEXEC_CONTAINER_IMAGE`` / ``_NETWORK`` / ``_MEMORY`` / ``_CPUS`` / ``_ENV``
    Container tier image (``python:3.12-slim``), network mode (``none``),
    memory ceiling (``512m``), CPU cores (``1.0``) and extra ``K=V``
    environment pairs.

``SANDBOXEXEC_CONTAINER_LANGUAGES``
    Languages whose runtimes the container image provides.  Defaults to
    ``python,shell`` to match the default image; set it when using an image
    with node, deno, ruby, rustc or go.  Empty means every language.

``SANDBOXEXEC_DOCKER_URL``
    Docker Engine API endpoint.  Defaults to the local socket.

``SANDBOXEXEC_WASM_MAX_MEMORY_PAGES`` / ``_FUEL_LIMIT`` / ``_ENABLE_WASI`` / ``_WASI_DIRS``
    WebAssembly tier memory ceiling in 64 KiB pages (256), fuel ceiling
    (1e9), WASI linking (``true``) and host directories preopened for WASI.

``SANDBOXEXEC_OS_RUN_AS_USER`` / ``_ALLOWED_EXECUTABLES`` / ``_DENIED_EXECUTABLES``
    OS tier privilege drop and interpreter allow/deny lists.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ConfigurationError


_MEMORY_UNITS = {
    "k": 1024,
    "m": 1024 * 1024,
    "g": 1024 * 1024 * 1024,
}


def parse_memory_limit(limit: str) -> Optional[int]:
    """Convert a human readable memory limit (``512m``, ``1g``) to bytes.

    A trailing ``b`` is accepted (``512mb``).  A bare number is taken as
    bytes.  An empty string means "no limit" and returns ``None``.
    Anything else raises ``ValueError``.
    """
    text = limit.strip().lower()
    if not text:
        return None
    if text.endswith("b") and len(text) > 1 and text[-2] in _MEMORY_UNITS:
        text = text[:-1]
    multiplier = 1
    if text[-1] in _MEMORY_UNITS:
        multiplier = _MEMORY_UNITS[text[-1]]
        text = text[:-1]
    if not text.isdigit():
        raise ValueError(f"Invalid memory limit: {limit!r}")
    return int(text) * multiplier


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y"}


def _int_var(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {val}")


def _float_var(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid number for {name}: {val}")


def _list_var(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _languages_var(name: str, default: List[str]) -> List[str]:
    if os.getenv(name) is None:
        return list(default)
    return [lang.lower() for lang in _list_var(name)]


def _pairs_var(name: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for item in _list_var(name):
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid KEY=VALUE pair in {name}: {item}")
        pairs[key] = value
    return pairs


class ExecutionEnv(str, Enum):
    """Which isolation tier executes code."""

    OS = "os"
    SANDBOX = "sandbox"
    CONTAINER = "container"

    @classmethod
    def parse(cls, value: str) -> "ExecutionEnv":
        normalized = value.strip().lower()
        aliases = {
            "os": cls.OS,
            "sandbox": cls.SANDBOX,
            "wasm": cls.SANDBOX,
            "container": cls.CONTAINER,
            "docker": cls.CONTAINER,
        }
        if normalized not in aliases:
            raise ConfigurationError(
                f"Invalid execution environment: {value}. Valid: os, sandbox, container"
            )
        return aliases[normalized]

    def __str__(self) -> str:
        return self.value


def _default_allowed_dir() -> Path:
    return Path.home() / ".sandboxexec" / "workspace"


@dataclass
class ContainerConfig:
    """Settings for the ephemeral container tier."""

    image: str = "python:3.12-slim"
    network: str = "none"
    memory_limit: str = "512m"
    cpu_limit: float = 1.0
    env: Dict[str, str] = field(default_factory=dict)
    docker_url: Optional[str] = None
    # Runtimes the image provides; empty means every language.
    languages: List[str] = field(default_factory=lambda: ["python", "shell"])

    def memory_bytes(self) -> Optional[int]:
        return parse_memory_limit(self.memory_limit)

    def nano_cpus(self) -> int:
        # Docker expresses CPU quota in units of 1e-9 cores.
        return int(self.cpu_limit * 1_000_000_000)

    @classmethod
    def load(cls) -> "ContainerConfig":
        return cls(
            image=os.getenv("SANDBOXEXEC_CONTAINER_IMAGE", "python:3.12-slim"),
            network=os.getenv("SANDBOXEXEC_CONTAINER_NETWORK", "none"),
            memory_limit=os.getenv("SANDBOXEXEC_CONTAINER_MEMORY", "512m"),
            cpu_limit=_float_var("SANDBOXEXEC_CONTAINER_CPUS", 1.0),
            env=_pairs_var("SANDBOXEXEC_CONTAINER_ENV"),
            docker_url=os.getenv("SANDBOXEXEC_DOCKER_URL") or None,
            languages=_languages_var("SANDBOXEXEC_CONTAINER_LANGUAGES", ["python", "shell"]),
        )


@dataclass
class WasmConfig:
    """Settings for the WebAssembly tier."""

    # 256 pages of 64 KiB = 16 MiB
    max_memory_pages: int = 256
    fuel_limit: int = 1_000_000_000
    enable_wasi: bool = True
    wasi_dirs: List[Path] = field(default_factory=list)

    @classmethod
    def load(cls) -> "WasmConfig":
        return cls(
            max_memory_pages=_int_var("SANDBOXEXEC_WASM_MAX_MEMORY_PAGES", 256),
            fuel_limit=_int_var("SANDBOXEXEC_WASM_FUEL_LIMIT", 1_000_000_000),
            enable_wasi=_parse_bool(os.getenv("SANDBOXEXEC_WASM_ENABLE_WASI"), True),
            wasi_dirs=[Path(p) for p in _list_var("SANDBOXEXEC_WASM_WASI_DIRS")],
        )


@dataclass
class OsSandboxConfig:
    """Settings for the OS process tier."""

    run_as_user: Optional[str] = None
    allowed_executables: List[str] = field(default_factory=list)
    denied_executables: List[str] = field(default_factory=list)

    @classmethod
    def load(cls) -> "OsSandboxConfig":
        return cls(
            run_as_user=os.getenv("SANDBOXEXEC_OS_RUN_AS_USER") or None,
            allowed_executables=_list_var("SANDBOXEXEC_OS_ALLOWED_EXECUTABLES"),
            denied_executables=_list_var("SANDBOXEXEC_OS_DENIED_EXECUTABLES"),
        )


@dataclass
class SandboxConfig:
    """Centralised configuration object."""

    execution_env: ExecutionEnv = ExecutionEnv.SANDBOX
    allowed_dir: Path = field(default_factory=_default_allowed_dir)
    allowed_langs: List[str] = field(default_factory=list)
    default_timeout_secs: int = 30
    max_output_bytes: int = 1024 * 1024
    container: ContainerConfig = field(default_factory=ContainerConfig)
    wasm: WasmConfig = field(default_factory=WasmConfig)
    os: OsSandboxConfig = field(default_factory=OsSandboxConfig)

    @classmethod
    def load(cls) -> "SandboxConfig":
        execution_env = ExecutionEnv.parse(os.getenv("SANDBOXEXEC_EXECUTION_ENV", "sandbox"))

        allowed_dir_env = os.getenv("SANDBOXEXEC_ALLOWED_DIR")
        allowed_dir = Path(allowed_dir_env).expanduser() if allowed_dir_env else _default_allowed_dir()

        allowed_langs = [lang.lower() for lang in _list_var("SANDBOXEXEC_ALLOWED_LANGS")]

        default_timeout_secs = _int_var("SANDBOXEXEC_DEFAULT_TIMEOUT_SECS", 30)
        if default_timeout_secs <= 0:
            raise ValueError(
                f"SANDBOXEXEC_DEFAULT_TIMEOUT_SECS must be positive, got {default_timeout_secs}"
            )
        max_output_bytes = _int_var("SANDBOXEXEC_MAX_OUTPUT_BYTES", 1024 * 1024)

        return cls(
            execution_env=execution_env,
            allowed_dir=allowed_dir,
            allowed_langs=allowed_langs,
            default_timeout_secs=default_timeout_secs,
            max_output_bytes=max_output_bytes,
            container=ContainerConfig.load(),
            wasm=WasmConfig.load(),
            os=OsSandboxConfig.load(),
        )

    @classmethod
    def from_env(cls) -> "SandboxConfig":
        """
        Alternate constructor used by the API to load configuration.

        This wrapper calls :meth:`load` to construct the configuration.
        It exists to provide a more intuitive name when consumed in
        application code.
        """
        return cls.load()
