"""Extract one stage object from free-form model text.

Models wrap JSON in fences, prefix it with prose, leave trailing commas,
or emit two objects on separate lines.  ``parse_stage_response`` runs an
ordered list of pure extraction strategies over the text; the first one
that yields a JSON object wins.  The object is then validated against the
closed stage vocabulary.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..errors import ResponseParseError
from .models import NEXT_STAGE_DEFAULTS, Stage

logger = logging.getLogger("dotivra.engine.parser")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_OBJECT_SPAN_RE = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA_RE = re.compile(r",\s*(?=[}\]])")

_STAGE_LOOKUP: dict[str, Stage] = {
    re.sub(r"[\s_\-]", "", s.value).lower(): s
    for s in (Stage.PLANNING, Stage.REASONING, Stage.TOOL_USED, Stage.SUMMARY, Stage.DONE)
}


@dataclass(frozen=True)
class ParsedStage:
    """A validated stage object as returned by the model."""
    stage: Stage
    thought: str
    content: Any
    next_stage: Optional[Stage]
    raw: dict[str, Any]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def repair_json(text: str) -> str:
    """Strip trailing commas before a closing brace or bracket."""
    return _TRAILING_COMMA_RE.sub("", text)


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _object_span(text: str) -> str | None:
    m = _OBJECT_SPAN_RE.search(text)
    return m.group(0) if m else None


def strict_object_span(text: str) -> dict[str, Any] | None:
    span = _object_span(text)
    return _loads_object(span) if span else None


def repaired_object_span(text: str) -> dict[str, Any] | None:
    span = _object_span(text)
    return _loads_object(repair_json(span)) if span else None


def repaired_whole(text: str) -> dict[str, Any] | None:
    return _loads_object(repair_json(text.strip()))


def line_scan(text: str) -> dict[str, Any] | None:
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("{") and line.endswith("}"):
            obj = _loads_object(repair_json(line))
            if obj is not None:
                return obj
    return None


Strategy = Callable[[str], Optional[dict[str, Any]]]

STRATEGIES: tuple[Strategy, ...] = (
    strict_object_span,
    repaired_object_span,
    repaired_whole,
    line_scan,
)


def unwrap_fence(text: str) -> str:
    """Return the inner text of the first fenced block, or *text* unchanged."""
    m = _FENCE_RE.search(text)
    return m.group(1) if m else text


def _candidates(text: str) -> list[str]:
    # Fences may also sit inside string values, so the raw text is always tried.
    inner = unwrap_fence(text)
    if inner != text and inner.lstrip().startswith("{"):
        return [inner, text]
    return [text]


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object any strategy can pull out of *text*."""
    if not text:
        return None
    for candidate in _candidates(text):
        for strategy in STRATEGIES:
            obj = strategy(candidate)
            if obj is not None:
                logger.debug("JSON extracted with strategy %s", strategy.__name__)
                return obj
    return None


# ---------------------------------------------------------------------------
# Stage validation
# ---------------------------------------------------------------------------

def normalize_stage(value: Any) -> Stage | None:
    """Map ``"ToolUsed"``, ``"tool_used"``, ``"PLANNING"``… onto the enum."""
    if isinstance(value, Stage):
        return value if value.is_protocol else None
    if not isinstance(value, str):
        return None
    return _STAGE_LOOKUP.get(re.sub(r"[\s_\-]", "", value).lower())


def infer_next_stage(stage: Stage, proposed: Any = None) -> Stage | None:
    """Validate *proposed* against the closed set, else use the default table."""
    normalized = normalize_stage(proposed)
    if normalized is not None:
        return normalized
    return NEXT_STAGE_DEFAULTS.get(stage)


def parse_stage_response(text: str) -> ParsedStage:
    """Parse one stage object out of raw model text.

    Raises
    ------
    ResponseParseError
        When no strategy yields an object carrying a known ``stage`` and a
        ``content`` key.
    """
    obj = extract_json_object(text)
    if obj is None:
        raise ResponseParseError("No JSON object found in model response", raw=text)
    if "stage" not in obj or "content" not in obj:
        raise ResponseParseError(
            "Response object is missing 'stage' or 'content'", raw=text
        )

    stage = normalize_stage(obj["stage"])
    if stage is None:
        raise ResponseParseError(f"Unknown stage {obj['stage']!r}", raw=text)

    thought = obj.get("thought")
    if not isinstance(thought, str) or not thought:
        thought = stage.value

    return ParsedStage(
        stage=stage,
        thought=thought,
        content=obj["content"],
        next_stage=infer_next_stage(stage, obj.get("nextStage")),
        raw=obj,
    )
