"""Stage vocabulary and conversation models for the agent loop."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..tools.models import ToolExecutionRecord, ToolInvocation


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Stage(str, Enum):
    """Closed set of stages.  The first five form the protocol."""
    PLANNING = "planning"
    REASONING = "reasoning"
    TOOL_USED = "toolUsed"
    SUMMARY = "summary"
    DONE = "done"
    # Outcomes that never come from the model
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_protocol(self) -> bool:
        return self not in (Stage.ERROR, Stage.STOPPED)


# Default successor used when the model omits (or garbles) ``nextStage``
NEXT_STAGE_DEFAULTS: dict[Stage, Stage] = {
    Stage.PLANNING: Stage.REASONING,
    Stage.REASONING: Stage.TOOL_USED,
    Stage.TOOL_USED: Stage.REASONING,
    Stage.SUMMARY: Stage.DONE,
}


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class Message(BaseModel):
    """One conversation turn."""
    role: Literal["user", "assistant"]
    content: str


# ---------------------------------------------------------------------------
# Stage events
# ---------------------------------------------------------------------------

class StageEvent(BaseModel):
    """One emitted step of the agent loop.  Immutable once yielded.

    ``tool_executions`` is a snapshot of the full audit trail at the time
    the event was produced.  ``invocation`` is set for ``toolUsed`` events
    whose content named a tool.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    stage: Stage
    thought: str = ""
    content: Any = None
    next_stage: Optional[Stage] = Field(default=None, alias="nextStage")
    tool_executions: list[ToolExecutionRecord] = Field(
        default_factory=list, alias="toolExecutions"
    )
    invocation: Optional[ToolInvocation] = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the camelCase keys used on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude={"invocation"})
