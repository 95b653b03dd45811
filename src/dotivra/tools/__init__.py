"""Closed tool catalog and the HTTP tool broker."""

from .broker import (
    ToolBroker,
    feedback_for,
    parse_tool_invocation,
    sanitize_args,
    sanitize_value,
)
from .contracts import TOOL_REGISTRY, ToolContract, ToolParameter, get_contract
from .models import ToolExecutionRecord, ToolInvocation, ToolResult

__all__ = [
    "TOOL_REGISTRY",
    "ToolBroker",
    "ToolContract",
    "ToolExecutionRecord",
    "ToolInvocation",
    "ToolParameter",
    "ToolResult",
    "feedback_for",
    "get_contract",
    "parse_tool_invocation",
    "sanitize_args",
    "sanitize_value",
]
