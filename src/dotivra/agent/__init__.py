"""The staged chat agent: models, parser, prompts and the engine."""

from .engine import StageEngine, token_budget
from .models import Message, Stage, StageEvent
from .parser import ParsedStage, extract_json_object, parse_stage_response

__all__ = [
    "Message",
    "ParsedStage",
    "Stage",
    "StageEngine",
    "StageEvent",
    "extract_json_object",
    "parse_stage_response",
    "token_budget",
]
