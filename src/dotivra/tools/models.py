"""Data models for tool invocations and their audit trail."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolInvocation(BaseModel):
    """A tool call requested by the model in a ``toolUsed`` turn."""

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class ToolResult(BaseModel):
    """Normalized outcome of one dispatch.  Never raised, always returned."""

    success: bool
    tool: str
    result: Any = None
    error: Optional[str] = None


class ToolExecutionRecord(BaseModel):
    """One append-only audit entry; ``args`` are the sanitized args."""

    model_config = ConfigDict(frozen=True)

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    success: bool
    error: Optional[str] = None
    timestamp: int                    # epoch milliseconds, non-decreasing
