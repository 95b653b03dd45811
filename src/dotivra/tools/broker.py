"""Tool broker — the only path from the model to side effects.

The broker:
1. Sanitizes arguments (unwraps fenced / nested JSON strings).
2. Validates the invocation against the closed ``TOOL_REGISTRY``.
3. POSTs ``{tool, args, documentId}`` to the tool execution endpoint,
   retrying once on the fallback endpoint when the primary returns 404.
4. Normalizes every outcome into a ``ToolResult`` (never raises).
5. Appends one ``ToolExecutionRecord`` per dispatch to its audit trail.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Callable

import httpx

from ..errors import UnknownToolError
from .contracts import get_contract
from .models import ToolExecutionRecord, ToolInvocation, ToolResult

logger = logging.getLogger("dotivra.tools")

_SINGLE_FENCE_RE = re.compile(r"^```(?:json|html)?\s*([\s\S]*?)\s*```$")
_ANY_FENCE_RE = re.compile(r"```(?:json|html)?\s*([\s\S]*?)\s*```")
_MISSING = object()


# ---------------------------------------------------------------------------
# Argument sanitization
# ---------------------------------------------------------------------------

def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return _MISSING


def _looks_like_json(text: str) -> bool:
    return (text.startswith("{") and text.endswith("}")) or (
        text.startswith("[") and text.endswith("]")
    )


def _sanitize_string(text: str) -> Any:
    fenced = _SINGLE_FENCE_RE.match(text.strip())
    if fenced:
        inner = fenced.group(1)
        parsed = _try_json(inner)
        return inner if parsed is _MISSING else sanitize_value(parsed)

    unwrapped = _ANY_FENCE_RE.sub(lambda m: m.group(1), text) if "```" in text else text
    candidate = unwrapped.strip()
    if _looks_like_json(candidate):
        parsed = _try_json(candidate)
        if parsed is not _MISSING:
            return sanitize_value(parsed)
    return unwrapped


def sanitize_value(value: Any) -> Any:
    """Recursively unwrap fenced or stringified JSON inside *value*."""
    if isinstance(value, str):
        return _sanitize_string(value)
    if isinstance(value, dict):
        return {k: sanitize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_value(v) for v in value]
    return value


def sanitize_args(args: dict[str, Any]) -> dict[str, Any]:
    cleaned = sanitize_value(args)
    return cleaned if isinstance(cleaned, dict) else {}


# ---------------------------------------------------------------------------
# Invocation parsing
# ---------------------------------------------------------------------------

def parse_tool_invocation(content: Any) -> ToolInvocation:
    """Build a ``ToolInvocation`` from the content of a ``toolUsed`` turn.

    Raises
    ------
    UnknownToolError
        If the named tool is not in the catalog.
    ValueError
        If the payload is not an object naming a tool.
    """
    if isinstance(content, str):
        content = sanitize_value(content)
    if not isinstance(content, dict):
        raise ValueError("Tool payload must be an object with 'tool' and 'args'")

    tool = content.get("tool")
    if not isinstance(tool, str) or not tool:
        raise ValueError("Tool payload is missing the 'tool' name")
    if get_contract(tool) is None:
        raise UnknownToolError(tool)

    args = content.get("args")
    if isinstance(args, str):
        args = sanitize_value(args)
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise ValueError(f"Arguments for '{tool}' must be an object")

    description = content.get("description")
    return ToolInvocation(
        tool=tool,
        args=args,
        description=description if isinstance(description, str) else "",
    )


# ---------------------------------------------------------------------------
# Feedback messages
# ---------------------------------------------------------------------------

def success_feedback(tool: str, result: Any) -> str:
    body = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    return (
        f'Tool "{tool}" executed successfully.\n\n'
        f"COMPLETE RESULT:\n{body}\n\n"
        "Validate this result and decide your next action. "
        'If the task is complete, set nextStage to "done".'
    )


def failure_feedback(tool: str, error: str | None) -> str:
    return (
        f'Tool "{tool}" FAILED with error: {error or "Unknown error"}\n\n'
        "You MUST retry with the same tool using different args, or try a "
        'different approach. Set nextStage to "toolUsed" to retry.'
    )


def feedback_for(result: ToolResult) -> str:
    """The user message fed back to the model after a dispatch."""
    if result.success:
        return success_feedback(result.tool, result.result)
    return failure_feedback(result.tool, result.error)


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

class ToolBroker:
    """Dispatches tool invocations and keeps the per-session audit trail.

    Parameters
    ----------
    endpoint
        Primary tool execution URL.
    fallback_endpoint
        URL retried once when the primary answers 404.
    document_id
        Default active document, sent as ``documentId``.
    http_client
        Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        fallback_endpoint: str | None = None,
        document_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.endpoint = endpoint
        self.fallback_endpoint = fallback_endpoint
        self.document_id = document_id
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock
        self._records: list[ToolExecutionRecord] = []
        self._last_ts = 0

    # -- public API ---------------------------------------------------------

    def history(self) -> list[ToolExecutionRecord]:
        """A copy of every record appended so far, oldest first."""
        return list(self._records)

    async def execute(
        self,
        invocation: ToolInvocation,
        *,
        document_id: str | None = None,
    ) -> ToolResult:
        """Validate, dispatch and record one invocation.

        *document_id* overrides the broker default for this call.
        """
        args = sanitize_args(invocation.args)

        contract = get_contract(invocation.tool)
        if contract is None:
            return self.reject(invocation.tool, args, f"Unknown tool: {invocation.tool!r}")
        errors = contract.validate_params(args)
        if errors:
            return self.reject(invocation.tool, args, "; ".join(errors))

        logger.info("Executing tool %s", invocation.tool)
        result = await self._dispatch(
            invocation.tool, args, invocation.args, document_id or self.document_id
        )
        self._record(result, args)
        return result

    def reject(self, tool: str, args: dict[str, Any], error: str) -> ToolResult:
        """Record a failed invocation that never reached the endpoint."""
        logger.warning("Rejected tool call %s: %s", tool, error)
        result = ToolResult(success=False, tool=tool, error=error)
        self._record(result, args)
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # -- internal -----------------------------------------------------------

    @staticmethod
    def _payload(
        tool: str, args: dict[str, Any], document_id: str | None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"tool": tool, "args": args}
        if document_id:
            payload["documentId"] = document_id
        return payload

    async def _dispatch(
        self,
        tool: str,
        args: dict[str, Any],
        raw_args: dict[str, Any],
        document_id: str | None,
    ) -> ToolResult:
        try:
            resp = await self._http.post(self.endpoint, json=self._payload(tool, args, document_id))
            if resp.status_code == 404 and self.fallback_endpoint:
                # The fallback receives the args exactly as the model sent them.
                logger.warning(
                    "Tool endpoint returned 404, retrying %s on %s",
                    tool, self.fallback_endpoint,
                )
                resp = await self._http.post(
                    self.fallback_endpoint, json=self._payload(tool, raw_args, document_id)
                )
            if resp.status_code < 200 or resp.status_code >= 300:
                return ToolResult(
                    success=False, tool=tool,
                    error=f"Tool execution failed with status {resp.status_code}",
                )
            data = resp.json()
        except httpx.HTTPError as exc:
            logger.error("Tool %s transport error: %s", tool, exc)
            return ToolResult(success=False, tool=tool, error=str(exc) or type(exc).__name__)
        except ValueError:
            return ToolResult(
                success=False, tool=tool, error="Tool endpoint returned a non-JSON body",
            )
        return ToolResult(success=True, tool=tool, result=data)

    def _record(self, result: ToolResult, args: dict[str, Any]) -> None:
        ts = max(int(self._clock() * 1000), self._last_ts)
        self._last_ts = ts
        self._records.append(ToolExecutionRecord(
            tool=result.tool,
            args=args,
            result=result.result,
            success=result.success,
            error=result.error,
            timestamp=ts,
        ))
