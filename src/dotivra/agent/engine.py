"""StageEngine — the staged chat agent loop.

Drives the model through a closed stage protocol:

    planning → reasoning → toolUsed → … → summary → done

Each turn renders the conversation, a stage breadcrumb and the system
instructions into one prompt, calls the model with a stage-specific token
budget, parses exactly one stage object out of the reply, and yields it
as a ``StageEvent``.  ``toolUsed`` turns are dispatched through the
``ToolBroker`` and the outcome is fed back as the next user message.
The first reply is always recorded as ``planning``, and a ``done`` that
arrives before any summary is recorded as the summary.

Termination:
- the model finishes (``done``, or ``summary`` with ``nextStage: done``),
- the tool-call cap is reached (a summary and ``done`` are emitted),
- three consecutive unparseable replies (one ``error`` event),
- the cancellation token fires (one ``stopped`` event).
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from typing import Any, AsyncIterator, Callable

from ..errors import (
    DotivraError,
    GenerationAborted,
    ResponseParseError,
    UnknownToolError,
)
from ..llm.cancellation import STOPPED_MESSAGE, CancellationToken
from ..llm.client import CompletionClient
from ..store.documents import DocumentContextLoader, DocumentStore
from ..tools.broker import ToolBroker, feedback_for, parse_tool_invocation
from ..tools.models import ToolExecutionRecord, ToolInvocation, ToolResult
from .models import Message, Stage, StageEvent
from .parser import ParsedStage, infer_next_stage, parse_stage_response
from .prompts import (
    PARSE_RETRY_MESSAGE,
    build_turn_prompt,
    compose_user_prompt,
    proceed_message,
    render_system_prompt,
)

logger = logging.getLogger("dotivra.engine")

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

MAX_TOOL_CALLS = 50
MAX_PARSE_ATTEMPTS = 3
HISTORY_WINDOW = 6
TEMPERATURE = 0.3

TOKEN_BUDGETS: dict[Stage, int] = {
    Stage.PLANNING: 1024,
    Stage.REASONING: 2048,
    Stage.TOOL_USED: 1024,
    Stage.SUMMARY: 8192,
}
DEFAULT_TOKEN_BUDGET = 2048

PARSE_FAILURE_MESSAGE = (
    "Failed to get valid JSON response after {attempts} attempts. Please try again."
)

ToolResultCallback = Callable[[ToolResult], None]


def token_budget(stage: Stage) -> int:
    return TOKEN_BUDGETS.get(stage, DEFAULT_TOKEN_BUDGET)


class StageEngine:
    """Runs one agent invocation at a time over a completion client.

    Parameters
    ----------
    llm
        The completion backend.
    broker
        Tool broker; its audit trail is read, never cleared.
    store
        Optional document store for the runtime placeholders.
    max_tool_calls
        Hard cap on ``toolUsed`` turns per invocation.
    """

    def __init__(
        self,
        llm: CompletionClient,
        broker: ToolBroker,
        *,
        store: DocumentStore | None = None,
        max_tool_calls: int = MAX_TOOL_CALLS,
        max_parse_attempts: int = MAX_PARSE_ATTEMPTS,
        history_window: int = HISTORY_WINDOW,
    ) -> None:
        self.llm = llm
        self.broker = broker
        self.store = store
        self.max_tool_calls = max_tool_calls
        self.max_parse_attempts = max_parse_attempts
        self.history_window = history_window

    async def run(
        self,
        prompt: str,
        *,
        history: list[Message] | None = None,
        document_id: str | None = None,
        selected_text: str | None = None,
        cancel: CancellationToken | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> AsyncIterator[StageEvent]:
        """Yield ``StageEvent`` objects until the invocation terminates."""
        t0 = time.perf_counter()
        baseline = len(self.broker.history())

        def audit() -> list[ToolExecutionRecord]:
            return self.broker.history()[baseline:]

        messages: list[Message] = list((history or [])[-self.history_window:])
        messages.append(Message(role="user", content=compose_user_prompt(prompt, selected_text)))
        completed: list[Stage] = []
        current = Stage.PLANNING
        tool_calls = 0
        last_emitted: Stage | None = None

        try:
            if cancel is not None:
                cancel.raise_if_cancelled()

            loader = DocumentContextLoader(self.store, document_id)
            system_prompt = render_system_prompt(await loader.placeholders())

            finished = False
            while tool_calls < self.max_tool_calls:
                parsed = await self._next_stage(messages, completed, current, system_prompt, cancel)
                parsed = _enforce_protocol(parsed, first_turn=not completed, last_emitted=last_emitted)
                messages.append(Message(
                    role="assistant",
                    content=json.dumps(parsed.raw, ensure_ascii=False, default=str),
                ))

                invocation: ToolInvocation | None = None
                rejection: str | None = None
                if parsed.stage is Stage.TOOL_USED:
                    tool_calls += 1
                    invocation, rejection = _read_invocation(parsed.content)

                yield StageEvent(
                    stage=parsed.stage,
                    thought=parsed.thought,
                    content=parsed.content,
                    next_stage=parsed.next_stage,
                    tool_executions=audit(),
                    invocation=invocation,
                )
                last_emitted = parsed.stage
                completed.append(parsed.stage)

                if parsed.stage is Stage.TOOL_USED:
                    result = await self._dispatch(parsed.content, invocation, rejection, document_id)
                    logger.info(
                        "[Tool %d/%d] %s → %s",
                        tool_calls, self.max_tool_calls, result.tool,
                        "ok" if result.success else result.error,
                    )
                    if on_tool_result is not None:
                        on_tool_result(result)
                    messages.append(Message(role="user", content=feedback_for(result)))

                if parsed.stage is Stage.DONE or (
                    parsed.stage is Stage.SUMMARY and parsed.next_stage is Stage.DONE
                ):
                    finished = True
                    break

                if parsed.next_stage is Stage.DONE and parsed.stage is not Stage.SUMMARY:
                    current = Stage.SUMMARY
                else:
                    current = parsed.next_stage or Stage.REASONING

                if parsed.stage is not Stage.TOOL_USED:
                    messages.append(Message(role="user", content=proceed_message(current)))

            if not finished:
                logger.warning("Tool execution limit (%d) reached", self.max_tool_calls)
                yield StageEvent(
                    stage=Stage.SUMMARY,
                    thought="Tool execution limit reached",
                    content=(
                        f"Reached maximum tool execution limit ({self.max_tool_calls}). "
                        "Stopping here; review the completed tool executions above."
                    ),
                    next_stage=Stage.DONE,
                    tool_executions=audit(),
                )
                last_emitted = Stage.SUMMARY

            if last_emitted is not Stage.DONE:
                yield StageEvent(
                    stage=Stage.DONE,
                    thought="Done",
                    content=None,
                    tool_executions=audit(),
                )
            logger.info(
                "Agent run finished in %.1fs (%d tool calls)",
                time.perf_counter() - t0, tool_calls,
            )

        except GenerationAborted:
            logger.info("Agent run stopped by user")
            yield StageEvent(
                stage=Stage.STOPPED,
                thought="Stopped",
                content=STOPPED_MESSAGE,
                tool_executions=audit(),
            )
        except ResponseParseError:
            yield StageEvent(
                stage=Stage.ERROR,
                thought="Parse failure",
                content=PARSE_FAILURE_MESSAGE.format(attempts=self.max_parse_attempts),
                tool_executions=audit(),
            )
        except DotivraError as exc:
            logger.error("Agent run failed: %s", exc)
            yield StageEvent(
                stage=Stage.ERROR,
                thought="Error",
                content=str(exc),
                tool_executions=audit(),
            )

    # -- Internal -----------------------------------------------------------

    async def _next_stage(
        self,
        messages: list[Message],
        completed: list[Stage],
        current: Stage,
        system_prompt: str,
        cancel: CancellationToken | None,
    ) -> ParsedStage:
        """Call the model until one reply parses, appending corrections."""
        budget = token_budget(current)
        failures = 0
        while True:
            logger.info("[Stage %s] requesting (budget %d)", current.value, budget)
            text = await self.llm.complete(
                build_turn_prompt(messages, completed, current, system_prompt),
                max_output_tokens=budget,
                temperature=TEMPERATURE,
                cancel=cancel,
            )
            try:
                return parse_stage_response(text)
            except ResponseParseError as exc:
                failures += 1
                logger.warning(
                    "Unparseable reply (%d/%d): %s", failures, self.max_parse_attempts, exc
                )
                if failures >= self.max_parse_attempts:
                    raise
                messages.append(Message(role="assistant", content=text))
                messages.append(Message(role="user", content=PARSE_RETRY_MESSAGE))

    async def _dispatch(
        self,
        content: Any,
        invocation: ToolInvocation | None,
        rejection: str | None,
        document_id: str | None,
    ) -> ToolResult:
        if invocation is not None:
            return await self.broker.execute(invocation, document_id=document_id)
        tool = content.get("tool") if isinstance(content, dict) else None
        args = content.get("args") if isinstance(content, dict) else None
        return self.broker.reject(
            tool if isinstance(tool, str) and tool else "unknown",
            args if isinstance(args, dict) else {},
            rejection or "Malformed tool payload",
        )


def _restage(parsed: ParsedStage, stage: Stage, next_stage: Stage | None = None) -> ParsedStage:
    if next_stage is None:
        next_stage = infer_next_stage(stage, parsed.raw.get("nextStage"))
    raw = {**parsed.raw, "stage": stage.value}
    if next_stage is not None:
        raw["nextStage"] = next_stage.value
    return replace(parsed, stage=stage, next_stage=next_stage, raw=raw)


def _enforce_protocol(
    parsed: ParsedStage, *, first_turn: bool, last_emitted: Stage | None
) -> ParsedStage:
    """Hold the model to the protocol: open with planning, close with a summary."""
    if first_turn and parsed.stage is not Stage.PLANNING:
        logger.warning("First reply was %s, recording it as planning", parsed.stage.value)
        return _restage(parsed, Stage.PLANNING)
    if parsed.stage is Stage.DONE and last_emitted is not Stage.SUMMARY:
        logger.warning("Reply ended the run without a summary, recording it as the summary")
        content = parsed.content if parsed.content not in (None, "") else parsed.thought
        summary = _restage(parsed, Stage.SUMMARY, Stage.DONE)
        return replace(summary, content=content, raw={**summary.raw, "content": content})
    return parsed


def _read_invocation(content: Any) -> tuple[ToolInvocation | None, str | None]:
    try:
        return parse_tool_invocation(content), None
    except (UnknownToolError, ValueError) as exc:
        return None, str(exc)


__all__ = [
    "DEFAULT_TOKEN_BUDGET",
    "HISTORY_WINDOW",
    "MAX_PARSE_ATTEMPTS",
    "MAX_TOOL_CALLS",
    "StageEngine",
    "TOKEN_BUDGETS",
    "token_budget",
]
