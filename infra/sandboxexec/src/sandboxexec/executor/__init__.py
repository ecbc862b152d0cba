"""
Execution backends for the sandbox.

This package exposes the execution model shared by every backend and
the factory that picks one of them.  The backends themselves live in
``os_sandbox``, ``wasm_executor`` and ``container_executor``; they are
imported lazily by :func:`create_executor` so that a deployment only
needs the third‑party client of the tier it actually uses.  Additional
backends can be added by implementing the ``CodeExecutor`` interface
from ``base.py``.
"""

from .base import (
    CodeExecutor,
    ExecutionRequest,
    ExecutionResult,
    ExecutorMeta,
    Language,
)
from .factory import create_executor

__all__ = [
    "CodeExecutor",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutorMeta",
    "Language",
    "create_executor",
]
