"""Tool contract definitions and the closed tool catalog.

Each tool exposed to the agent is described by a ``ToolContract`` that
names it, documents it, and lists its parameters.  ``TOOL_REGISTRY`` maps
tool names → contracts; names are case-sensitive and the set is closed,
so a name missing from the registry is an error rather than a pass-through.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Parameter & contract models
# ---------------------------------------------------------------------------

class ToolParameter(BaseModel):
    """Schema for a single parameter of a tool."""
    name: str
    type: str                       # "string", "integer", "object", "range"
    description: str = ""
    required: bool = True
    enum: list[str] | None = None   # allowed values (if constrained)


class ToolContract(BaseModel):
    """Contract for one tool on the execution endpoint.

    The stage engine checks invocations against these before anything is
    sent over the wire.
    """
    name: str
    description: str = ""
    category: str = ""              # "document", "summary", "project", "repo"
    parameters: list[ToolParameter] = Field(default_factory=list)
    returns: str = ""               # shape of the endpoint's result
    mutates: bool = False

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """Return a list of validation errors (empty = valid)."""
        errors: list[str] = []
        for p in self.parameters:
            if p.required and p.name not in params:
                errors.append(f"Missing required parameter: {p.name}")
            if p.enum and p.name in params and params[p.name] not in p.enum:
                errors.append(
                    f"Parameter '{p.name}' must be one of {p.enum}, "
                    f"got '{params[p.name]}'"
                )
        return errors


# ---------------------------------------------------------------------------
# Tool registry
# ---------------------------------------------------------------------------

TOOL_REGISTRY: dict[str, ToolContract] = {}


def register_tool(contract: ToolContract) -> ToolContract:
    """Register a tool contract in the global registry."""
    TOOL_REGISTRY[contract.name] = contract
    return contract


def get_contract(name: str) -> ToolContract | None:
    """Case-sensitive lookup; ``None`` for names outside the catalog."""
    return TOOL_REGISTRY.get(name)


def _reason() -> ToolParameter:
    return ToolParameter(
        name="reason", type="string",
        description="Why the tool is being called", required=False,
    )


def _document_id() -> ToolParameter:
    return ToolParameter(
        name="documentId", type="string",
        description="Target document; defaults to the active one", required=False,
    )


def _range() -> ToolParameter:
    return ToolParameter(
        name="position", type="range",
        description="Character range {from, to}",
    )


# ---------------------------------------------------------------------------
# Document content tools
# ---------------------------------------------------------------------------

GET_DOCUMENT_CONTENT = register_tool(ToolContract(
    name="get_document_content",
    description="Read the full content of the document.",
    category="document",
    parameters=[_document_id(), _reason()],
    returns="{success, content}",
))

SCAN_DOCUMENT_CONTENT = register_tool(ToolContract(
    name="scan_document_content",
    description="Analyze document structure (lines, words, headings).",
    category="document",
    parameters=[_document_id(), _reason()],
    returns="{success, structure}",
))

SEARCH_DOCUMENT_CONTENT = register_tool(ToolContract(
    name="search_document_content",
    description="Find text or patterns; results carry absolute character offsets.",
    category="document",
    parameters=[
        ToolParameter(name="query", type="string", description="Text or pattern to find"),
        _document_id(),
        _reason(),
    ],
    returns="{success, matches: [{character_position, match_length, element_index, context}]}",
))

APPEND_DOCUMENT_CONTENT = register_tool(ToolContract(
    name="append_document_content",
    description="Add HTML content to the end of the document.",
    category="document",
    parameters=[
        ToolParameter(name="content", type="string", description="HTML to append"),
        _document_id(),
        _reason(),
    ],
    returns="{success, html}",
    mutates=True,
))

INSERT_DOCUMENT_CONTENT = register_tool(ToolContract(
    name="insert_document_content",
    description="Insert HTML content at a character position.",
    category="document",
    parameters=[
        ToolParameter(name="position", type="integer", description="Insertion offset"),
        ToolParameter(name="content", type="string", description="HTML to insert"),
        _document_id(),
        _reason(),
    ],
    returns="{success, html}",
    mutates=True,
))

INSERT_DOCUMENT_CONTENT_AT_LOCATION = register_tool(ToolContract(
    name="insert_document_content_at_location",
    description="Insert HTML before or after a target snippet.",
    category="document",
    parameters=[
        ToolParameter(name="target", type="string", description="Snippet to anchor on"),
        ToolParameter(
            name="position", type="string",
            description="Side of the target", enum=["before", "after"],
        ),
        ToolParameter(name="content", type="string", description="HTML to insert"),
        _document_id(),
        _reason(),
    ],
    returns="{success, html}",
    mutates=True,
))

REPLACE_DOCUMENT_CONTENT = register_tool(ToolContract(
    name="replace_document_content",
    description="Replace a character range with new HTML content.",
    category="document",
    parameters=[
        _range(),
        ToolParameter(name="content", type="string", description="Replacement HTML"),
        _document_id(),
        _reason(),
    ],
    returns="{success, html}",
    mutates=True,
))

REMOVE_DOCUMENT_CONTENT = register_tool(ToolContract(
    name="remove_document_content",
    description="Delete a character range from the document.",
    category="document",
    parameters=[_range(), _document_id(), _reason()],
    returns="{success, html}",
    mutates=True,
))

# ---------------------------------------------------------------------------
# Summary tools
# ---------------------------------------------------------------------------

GET_DOCUMENT_SUMMARY = register_tool(ToolContract(
    name="get_document_summary",
    description="Fetch the summary of the active or specified document.",
    category="summary",
    parameters=[_document_id(), _reason()],
    returns="{success, summary, summaryLength}",
))

SEARCH_DOCUMENT_SUMMARY = register_tool(ToolContract(
    name="search_document_summary",
    description="Search the document summary.",
    category="summary",
    parameters=[
        ToolParameter(name="query", type="string", description="Text to find"),
        _document_id(),
        _reason(),
    ],
    returns="{success, matches}",
))

APPEND_DOCUMENT_SUMMARY = register_tool(ToolContract(
    name="append_document_summary",
    description="Append text to the document summary.",
    category="summary",
    parameters=[
        ToolParameter(name="content", type="string", description="Text to append"),
        _document_id(),
        _reason(),
    ],
    returns="{success, html}",
    mutates=True,
))

INSERT_DOCUMENT_SUMMARY = register_tool(ToolContract(
    name="insert_document_summary",
    description="Insert text into the summary at a character position.",
    category="summary",
    parameters=[
        ToolParameter(name="position", type="integer", description="Insertion offset"),
        ToolParameter(name="content", type="string", description="Text to insert"),
        _document_id(),
        _reason(),
    ],
    returns="{success, html}",
    mutates=True,
))

# The tool endpoint only knows this misspelled name.
REPLACE_DOCUMENT_SUMMARY = register_tool(ToolContract(
    name="replace_doument_summary",
    description="Replace part of the summary with new wording.",
    category="summary",
    parameters=[
        _range(),
        ToolParameter(name="content", type="string", description="Replacement text"),
        _document_id(),
        _reason(),
    ],
    returns="{success, html}",
    mutates=True,
))

REMOVE_DOCUMENT_SUMMARY = register_tool(ToolContract(
    name="remove_document_summary",
    description="Delete a character range from the summary.",
    category="summary",
    parameters=[_range(), _document_id(), _reason()],
    returns="{success, html}",
    mutates=True,
))

# ---------------------------------------------------------------------------
# Project & verification tools
# ---------------------------------------------------------------------------

GET_ALL_DOCUMENTS_METADATA = register_tool(ToolContract(
    name="get_all_documents_metadata_within_project",
    description="List metadata for every document in the document's project.",
    category="project",
    parameters=[_document_id(), _reason()],
    returns="{success, documentsCount, documents}",
))

VERIFY_DOCUMENT_CHANGE = register_tool(ToolContract(
    name="verify_document_change",
    description="Confirm the most recent edits persisted.",
    category="project",
    parameters=[_document_id(), _reason()],
    returns="{success, verified}",
))

# ---------------------------------------------------------------------------
# Repository tools
# ---------------------------------------------------------------------------

GET_REPO_STRUCTURE = register_tool(ToolContract(
    name="get_repo_structure",
    description="List the linked repository's file structure.",
    category="repo",
    parameters=[
        ToolParameter(name="repoLink", type="string", description="owner/repo"),
        ToolParameter(name="branch", type="string", required=False),
        _reason(),
    ],
    returns="{success, structure}",
))

GET_REPO_COMMITS = register_tool(ToolContract(
    name="get_repo_commits",
    description="List recent commits of the linked repository.",
    category="repo",
    parameters=[
        ToolParameter(name="repoLink", type="string", description="owner/repo"),
        ToolParameter(name="branch", type="string", required=False),
        ToolParameter(name="page", type="integer", required=False),
        ToolParameter(name="per_page", type="integer", required=False),
        _reason(),
    ],
    returns="{success, commits}",
))
