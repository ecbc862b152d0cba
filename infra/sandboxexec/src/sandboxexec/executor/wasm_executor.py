"""
WebAssembly execution using wasmtime.

Raw WASM modules run in a fresh store per call with two independent
ceilings:

* **fuel** – an instruction budget derived once from the request timeout.
  Exhausting it is reported as a timeout, deterministically and regardless
  of how busy the host is.
* **wall clock** – the store's engine is interrupted through an epoch tick
  when the timeout elapses, so a call never outlives ``execute``.

High level source languages (Python, JavaScript) would need a language
runtime compiled to WASM.  That is not available in this tier, and such
requests get a failed result that says so instead of silently running
elsewhere.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from wasmtime import (
    Config,
    Engine,
    ExitTrap,
    Linker,
    Module,
    Store,
    Trap,
    TrapCode,
    WasiConfig,
    WasmtimeError,
)

from ..config import WasmConfig
from ..errors import WasmError
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

WASM_PAGE_SIZE = 64 * 1024
FUEL_PER_MS = 1000


def derive_fuel(timeout: float, fuel_limit: int) -> int:
    """Fuel budget for a call: proportional to the timeout, capped by config."""
    fuel = int(timeout * 1000) * FUEL_PER_MS
    if fuel_limit > 0:
        fuel = min(fuel, fuel_limit)
    return max(fuel, 1)


@dataclass
class _Outcome:
    results: List[Any] = field(default_factory=list)
    exit_code: Optional[int] = 0
    trap: Optional[str] = None
    trap_kind: Optional[str] = None
    fuel_consumed: int = 0
    stdout: bytes = b""
    stderr: bytes = b""


def _trap_kind(exc: Exception) -> str:
    code = getattr(exc, "trap_code", None)
    if code is not None:
        if code == getattr(TrapCode, "OUT_OF_FUEL", None):
            return "fuel"
        if code == getattr(TrapCode, "INTERRUPT", None):
            return "interrupt"
    message = str(exc).lower()
    if "fuel" in message:
        return "fuel"
    if "interrupt" in message:
        return "interrupt"
    return "trap"


class WasmExecutor(CodeExecutor):
    """Run WebAssembly modules in a fuel‑metered wasmtime VM."""

    meta = ExecutorMeta(
        id="sandbox",
        name="WebAssembly sandbox",
        description="Wasmtime virtual machine with fuel and memory limits",
        supported_languages=frozenset({Language.PYTHON, Language.JAVASCRIPT}),
        security_level=3,
    )

    def __init__(
        self,
        config: Optional[WasmConfig] = None,
        allowed_langs: Optional[List[str]] = None,
        max_output_bytes: int = 1024 * 1024,
    ) -> None:
        super().__init__(allowed_langs)
        self.config = config or WasmConfig()
        self.max_output_bytes = max_output_bytes
        try:
            self.engine = self._new_engine()
        except WasmtimeError as exc:
            raise WasmError(f"Failed to initialise wasmtime engine: {exc}") from exc
        logger.info("Wasm executor initialized (fuel_limit=%s)", self.config.fuel_limit)

    @staticmethod
    def _new_engine() -> Engine:
        config = Config()
        config.consume_fuel = True
        config.epoch_interruption = True
        return Engine(config)

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        self.ensure_supported(request.language)
        stopwatch = Stopwatch()
        logger.debug("%s source execution requested in WASM tier", request.language)
        message = (
            f"{request.language} execution is not implemented in the WebAssembly sandbox. "
            "Use the os or container execution environment for this language."
        )
        return ExecutionResult.failure(message, stopwatch.elapsed(), capability_gap=True)

    async def execute_module(
        self,
        wasm: Union[bytes, str],
        func_name: str,
        args: Sequence[Any] = (),
        timeout: float = 30.0,
        stdin: Optional[str] = None,
        env: Optional[dict] = None,
        argv: Sequence[str] = (),
    ) -> ExecutionResult:
        """Compile ``wasm`` and call its export ``func_name`` with ``args``.

        ``wasm`` may be a binary module or WAT text.  Running out of fuel
        or hitting the wall‑clock timeout yields ``timed_out=True``; any
        other trap yields a failed result.  Modules that cannot be
        compiled or instantiated raise ``WasmError``.
        """
        fuel = derive_fuel(timeout, self.config.fuel_limit)
        engine = self._new_engine()
        # The deadline is armed before any work starts so that an epoch tick
        # during compilation still interrupts the call.
        store = Store(engine)
        store.set_fuel(fuel)
        store.set_epoch_deadline(1)
        store.set_limits(memory_size=self.config.max_memory_pages * WASM_PAGE_SIZE)
        stopwatch = Stopwatch()

        task = asyncio.ensure_future(
            asyncio.to_thread(
                self._invoke, engine, store, wasm, func_name, list(args), fuel, stdin, env or {}, list(argv)
            )
        )
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning("WASM call to %s exceeded %ss; interrupting", func_name, timeout)
            engine.increment_epoch()
        outcome = await task
        duration = stopwatch.elapsed()

        stdout, out_truncated = truncate_output(outcome.stdout, self.max_output_bytes)
        stderr, err_truncated = truncate_output(outcome.stderr, self.max_output_bytes)
        metadata: dict = {"fuel_consumed": outcome.fuel_consumed, "fuel_budget": fuel}
        if out_truncated or err_truncated:
            metadata["truncated"] = True

        if outcome.trap_kind == "fuel":
            notice = "Execution exceeded its fuel budget"
            return ExecutionResult.timeout(stdout, f"{stderr}{notice}", duration, **metadata)
        if outcome.trap_kind == "interrupt":
            notice = f"Execution timed out after {timeout} seconds"
            return ExecutionResult.timeout(stdout, f"{stderr}{notice}", duration, **metadata)
        if outcome.trap_kind == "trap":
            return ExecutionResult(
                success=False,
                exit_code=1,
                stdout=stdout,
                stderr=f"{stderr}{outcome.trap}",
                duration=duration,
                metadata=metadata,
            )

        metadata["results"] = outcome.results
        return ExecutionResult(
            success=outcome.exit_code == 0,
            exit_code=outcome.exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            metadata=metadata,
        )

    def _invoke(
        self,
        engine: Engine,
        store: Store,
        wasm: Union[bytes, str],
        func_name: str,
        args: List[Any],
        fuel: int,
        stdin: Optional[str],
        env: dict,
        argv: List[str],
    ) -> _Outcome:
        try:
            module = Module(engine, wasm)
        except WasmtimeError as exc:
            raise WasmError(f"Failed to compile module: {exc}") from exc

        outcome = _Outcome()
        with tempfile.TemporaryDirectory(prefix="sandboxexec-wasi-") as tmpdir:
            linker = Linker(engine)
            stdout_path = Path(tmpdir) / "stdout"
            stderr_path = Path(tmpdir) / "stderr"
            if self.config.enable_wasi:
                linker.define_wasi()
                store.set_wasi(self._wasi_config(tmpdir, stdin, env, [func_name, *argv]))

            try:
                instance = linker.instantiate(store, module)
                try:
                    func = instance.exports(store)[func_name]
                except KeyError:
                    raise WasmError(f"Function '{func_name}' not found") from None
                returned = func(store, *args)
                if returned is None:
                    outcome.results = []
                elif isinstance(returned, list):
                    outcome.results = returned
                else:
                    outcome.results = [returned]
            except ExitTrap as exc:
                outcome.exit_code = exc.code
            except Trap as exc:
                outcome.trap_kind = _trap_kind(exc)
                outcome.trap = str(exc)
                outcome.exit_code = None
            except WasmtimeError as exc:
                kind = _trap_kind(exc)
                if kind == "trap":
                    raise WasmError(f"Failed to run module: {exc}") from exc
                outcome.trap_kind = kind
                outcome.exit_code = None
            except TypeError as exc:
                raise WasmError(f"Invalid arguments for '{func_name}': {exc}") from exc

            outcome.fuel_consumed = fuel - store.get_fuel()
            if stdout_path.exists():
                outcome.stdout = stdout_path.read_bytes()
            if stderr_path.exists():
                outcome.stderr = stderr_path.read_bytes()
        return outcome

    def _wasi_config(self, tmpdir: str, stdin: Optional[str], env: dict, argv: List[str]) -> WasiConfig:
        wasi = WasiConfig()
        wasi.argv = argv
        wasi.env = [[key, value] for key, value in env.items()]
        wasi.stdout_file = str(Path(tmpdir) / "stdout")
        wasi.stderr_file = str(Path(tmpdir) / "stderr")
        if stdin is not None:
            stdin_path = Path(tmpdir) / "stdin"
            stdin_path.write_text(stdin, encoding="utf-8")
            wasi.stdin_file = str(stdin_path)
        for directory in self.config.wasi_dirs:
            wasi.preopen_dir(str(directory), f"/{Path(directory).name}")
        return wasi

    async def health_check(self) -> bool:
        try:
            Module(self.engine, "(module)")
        except WasmtimeError:
            return False
        return True
