"""Pydantic models for request and response bodies.

These models express the structure of the HTTP API that exposes the
configured executor.  They are translated to and from the execution
model in :mod:`sandboxexec.executor.base` by the API layer.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ExecuteRequest(BaseModel):
    """Request body for executing code."""

    language: str = Field(
        default="python",
        description="Language of the snippet, e.g. 'python', 'js', 'bash'.",
    )
    code: str = Field(..., description="Source code to execute.")
    stdin: Optional[str] = Field(
        default=None, description="Standard input to pass to the program."
    )
    timeout_secs: Optional[float] = Field(
        default=None,
        gt=0,
        description="Wall-clock timeout. Uses the configured default if omitted.",
    )
    env: Dict[str, str] = Field(default_factory=dict)
    args: List[str] = Field(default_factory=list)
    working_dir: Optional[str] = Field(
        default=None, description="Directory relative to the sandbox root."
    )


class ExecuteResponse(BaseModel):
    """Response body for code execution."""

    success: bool
    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str
    backend: str


class LanguagesResponse(BaseModel):
    backend: str
    security_level: int
    languages: List[str]
