"""Prompt assembly for the staged agent loop."""

from __future__ import annotations

import re
from typing import Iterable, Mapping

from ..tools.contracts import TOOL_REGISTRY, ToolContract
from .models import Message, Stage

# ---------------------------------------------------------------------------
# Fixed instructions
# ---------------------------------------------------------------------------

SYSTEM_INSTRUCTIONS = """\
You are Dotivra's documentation assistant. You edit and explain the active \
document by calling tools; you never see the document store or the \
repository directly.

## Runtime Variables
- {{DOCUMENT_ID}}: active document identifier.
- {{REPOLINK}}: linked repository as owner/repo, or "NOT_SET".
- {{DOCUMENT_LAST_UPDATED}}: ISO timestamp (UTC) of the last document update, or "UNKNOWN".
- {{TEMPLATE_TITLE}}: template name or document title.
- {{PROJECT_NAME}}: project name.
Substitute these values inside tool calls and explanations.

## Response Contract
Return exactly one JSON object per turn on a single line, with no text \
around it and no markdown fences:
{"stage":"STAGE_NAME","thought":"internal reasoning","content":"user-facing text or tool payload","nextStage":"NEXT_STAGE_NAME"}

## Stage Flow
Your first response in every session uses the planning stage.
1. planning: restate the objective in plain language. nextStage = "reasoning".
2. reasoning: decide the approach and the first tool. nextStage = "toolUsed" \
when a tool is needed, "summary" when no tool is needed.
3. toolUsed: content is an object {"tool":"tool_name","args":{...},"description":"friendly explanation"}. \
nextStage = "reasoning", "toolUsed" or "summary".
4. summary: short markdown recap starting with "## Title". nextStage = "done".
5. done: terminal.

## Tool Catalogue (names and argument keys are case-sensitive)
{{TOOL_CATALOGUE}}

## Repository Context
When {{REPOLINK}} is set and you plan to modify the document, call \
get_repo_structure and get_repo_commits first. Compare the newest commit \
with {{DOCUMENT_LAST_UPDATED}} and report whether the document is behind. \
When {{REPOLINK}} is "NOT_SET" or repository tools fail with an \
authorization error, skip this step and say so in your reasoning.

## Editing Rules
- Run search_document_content before replace_document_content or \
remove_document_content; derive from/to from character_position and match_length.
- Every <h1> or <h2> is followed by exactly one <hr class="tiptap-divider" />.
- Never nest headings inside list items; keep numbering consistent.
- Keep suggestions in chat; only write sections the user asked for.

## Tool Results
After each tool call you receive the result. If success is false, retry \
with different args or another tool. If success is true, use the data in \
your next reasoning stage.
"""

PARSE_RETRY_MESSAGE = (
    "ERROR: Your response was not valid JSON. Please respond with EXACTLY ONE "
    "JSON object on a single line in the format: "
    '{"stage":"...","thought":"...","content":"...","nextStage":"..."} '
    "- NO NEWLINES, NO MULTIPLE OBJECTS. MUST include nextStage field."
)

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _describe_contract(contract: ToolContract) -> str:
    params = ", ".join(
        p.name if p.required else f"{p.name}?" for p in contract.parameters
    )
    line = f"- {contract.name}({params}): {contract.description}"
    if contract.returns:
        line += f" → {contract.returns}"
    return line


def tool_catalogue(contracts: Iterable[ToolContract] | None = None) -> str:
    """Render the catalog section of the system instructions."""
    items = contracts if contracts is not None else TOOL_REGISTRY.values()
    return "\n".join(_describe_contract(c) for c in items)


def render_system_prompt(values: Mapping[str, str]) -> str:
    """Fill ``{{NAME}}`` placeholders; unknown names are left untouched."""
    template = SYSTEM_INSTRUCTIONS.replace("{{TOOL_CATALOGUE}}", tool_catalogue())

    def _sub(m: re.Match[str]) -> str:
        return values.get(m.group(1), m.group(0))

    return _PLACEHOLDER_RE.sub(_sub, template)


def compose_user_prompt(prompt: str, selected_text: str | None = None) -> str:
    if selected_text:
        return f'Selected text from document: "{selected_text}"\n\nUser request: {prompt}'
    return prompt


def render_history(messages: Iterable[Message]) -> str:
    return "\n\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages
    )


def stage_breadcrumb(completed: list[Stage], current: Stage) -> str:
    """Stage history hint, empty until at least one stage completed."""
    if not completed:
        return ""
    trail = " → ".join(s.value for s in completed)
    return (
        f"\n\nPREVIOUS STAGES COMPLETED: {trail}"
        f"\nCURRENT STAGE TO EXECUTE: {current.value}"
        "\nRemember: Review the conversation history above to see what you "
        "learned in previous stages."
    )


def build_turn_prompt(
    messages: list[Message],
    completed: list[Stage],
    current: Stage,
    system_prompt: str,
) -> str:
    return (
        render_history(messages)
        + stage_breadcrumb(completed, current)
        + "\n\nSystem: "
        + system_prompt
    )


def proceed_message(stage: Stage) -> str:
    return (
        f"Good. Now proceed to {stage.value} stage. "
        "Remember to review what you learned in previous stages."
    )
