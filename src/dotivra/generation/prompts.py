"""Prompt text for the chunked generation strategies."""

from __future__ import annotations

import html

from ..repo.models import FileRecord, RepoRef

FORMATTING_RULES = """\
**EDITOR FORMATTING RULES:**
Generate content as TipTap-compatible HTML:
- Headings: <h1> to <h5> only (no <h6>)
- Text: <strong>, <em>, <u>, <mark>, <s>
- Code: code blocks only, no inline <code>:
  <pre><code class="language-python" data-language="python">code here</code></pre>
- Mermaid diagrams as code blocks:
  <pre><code class="language-mermaid" data-language="mermaid">graph TD
    A[Start] --> B[End]</code></pre>
- Mermaid: no quotes in subgraph titles (subgraph Client_Side), no spaces in node IDs
- Lists: <ul><li>, <ol><li>
- Tables: <table><thead><tr><th>, <tbody><tr><td>
- Links: <a href="url">text</a>
- Quotes: <blockquote><p>text</p></blockquote>"""


def _excerpt(text: str | None, limit: int) -> str:
    return text[:limit] if text else "None"


# ---------------------------------------------------------------------------
# Section-driven generation
# ---------------------------------------------------------------------------

def file_selection_prompt(
    template: str, name: str, role: str, repo: RepoRef, tree: str, readme: str | None,
) -> str:
    return f"""{template}

---

**YOUR TASK:**
Analyze this repository to create "{name}" for the role: {role}

**REPOSITORY:**
{repo.full_name}

**STRUCTURE:**
{tree}

**README:**
{_excerpt(readme, 800)}

**INSTRUCTION:**
Respond with JSON listing the TOP 5-8 most important files needed to create this document.
Focus on core implementation files, main components and configuration files.

Format: {{"files": ["path1", "path2", "path3"]}}

Respond with JSON only:"""


def section_plan_prompt(template: str, name: str) -> str:
    return f"""{template}

**TASK:** Plan the sections for "{name}"

Break the template into 4-8 major sections that will each be generated separately.

Respond with JSON: {{"sections": ["Section 1 Name", "Section 2 Name", ...]}}

Respond with JSON only:"""


def render_key_files(records: list[FileRecord]) -> str:
    blocks: list[str] = []
    for record in records:
        if record.ok:
            lang = record.language.lower()
            blocks.append(f"**{record.path}** ({record.language}):\n```{lang}\n{record.content}\n```")
        else:
            reason = record.error or record.fetch_status
            blocks.append(f"**{record.path}**: not available ({reason})")
    return "\n\n".join(blocks) if blocks else "None"


def section_outline(sections: list[str], current: int) -> str:
    lines = []
    for idx, section in enumerate(sections):
        if idx < current:
            marker = " ✅"
        elif idx == current:
            marker = " 👉 CURRENT"
        else:
            marker = " ⏳"
        lines.append(f"{idx + 1}. {section}{marker}")
    return "\n".join(lines)


def previous_sections(done: list[tuple[str, str]]) -> str:
    if not done:
        return "None - this is the first section"
    return "\n".join(f"[{name}]: {content[:200]}..." for name, content in done)


def section_prompt(
    template: str,
    name: str,
    role: str,
    repo: RepoRef,
    files_context: str,
    sections: list[str],
    index: int,
    done: list[tuple[str, str]],
) -> str:
    section = sections[index]
    return f"""{template}

---

{FORMATTING_RULES}

---

**REPOSITORY:** {repo.full_name}
**DOCUMENT:** {name}
**ROLE:** {role}

**KEY FILES:**
{files_context}

**YOUR TASK:**
Generate ONLY the "{section}" section of the document.

**CONTEXT - ALL SECTIONS:**
{section_outline(sections, index)}

**PREVIOUSLY GENERATED:**
{previous_sections(done)}

**REQUIREMENTS:**
- Generate ONLY the "{section}" section; do not regenerate previous sections
- Use <h2> or <h3> for the section heading (not <h1>)
- Be comprehensive and use specifics from the repository files
- Respond with ONLY the HTML content for this section (no JSON, no explanations)

Generate the "{section}" section now:"""


# ---------------------------------------------------------------------------
# File negotiation
# ---------------------------------------------------------------------------

def negotiation_initial_prompt(
    template: str, name: str, role: str, repo: RepoRef, tree: str, readme: str | None,
) -> str:
    return f"""{template}

---

{FORMATTING_RULES}

---

Create a document titled "{name}" for the role: {role}

**REPOSITORY INFORMATION:**
- Repository: {repo.full_name}
- Directory Structure:
{tree}
- README Preview:
{_excerpt(readme, 1000)}

**WORKFLOW:**
STEP 1 (now): list the files you need to write the document:
{{"needFiles": true, "files": ["path/to/file1", "path/to/file2"], "reason": "why you need them"}}

STEP 2 (after receiving files): either request more files with the same format,
or return the final document:
{{"needFiles": false, "content": "COMPLETE_HTML_CONTENT"}}

The "content" field must be a string of complete HTML that follows the template.
Do not add explanatory text around the JSON.

Which files do you need? Respond with JSON only:"""


def render_fetched_files(records: list[FileRecord], max_chars: int) -> str:
    """File bodies plus a fetch summary marking found and missing paths."""
    contents: list[str] = []
    fetched: list[str] = []
    failed: list[str] = []
    for record in records:
        if record.ok and record.content:
            size = len(record.content)
            note = f"({size} chars, showing first {max_chars})" if size > max_chars else f"({size} chars)"
            lang = record.language.lower()
            contents.append(
                f"**{record.path}** {note}\n```{lang}\n{record.content[:max_chars]}\n```"
            )
            fetched.append(record.path)
        elif record.fetch_status == "empty":
            contents.append(f"**{record.path}**: ⚠️ File exists but has no content")
            failed.append(record.path)
        else:
            contents.append(f"**{record.path}**: ❌ NOT FOUND ({record.error or 'Unknown error'})")
            failed.append(record.path)

    summary = (
        "**FILE FETCH SUMMARY:**\n"
        f"- ✅ Successfully fetched: {len(fetched)} files\n"
        f"- ❌ Failed/Not found: {len(failed)} files\n"
    )
    if failed:
        summary += f"\n**Files that don't exist:** {', '.join(failed)}\n"
    return summary + "\n---\n\n" + "\n\n".join(contents)


def negotiation_followup_prompt(files_block: str) -> str:
    return f"""**REMINDER: Follow the template format provided in the initial prompt**

You requested these files from the repository. Here they are:

{files_block}

{FORMATTING_RULES}

**CRITICAL INSTRUCTIONS:**
- Files marked ❌ NOT FOUND do not exist; do not request them again
- Work with the files marked ✅
- Follow the exact template format from the beginning of the conversation

**YOUR NEXT STEP:**
Option 1 - need more files?
{{"needFiles": true, "files": ["path/to/file"], "reason": "why you need it"}}

Option 2 - ready to write the document?
{{"needFiles": false, "content": "COMPLETE_HTML_CONTENT"}}

Respond with JSON only:"""


def fallback_document(template: str, name: str, role: str, repo: RepoRef) -> str:
    """Deterministic skeleton used when negotiation never produced content."""
    name_html = html.escape(name)
    full = html.escape(repo.full_name)
    return f"""<h1>{name_html}</h1>

<h2>Overview</h2>
<p>This document was created for the <strong>{html.escape(role)}</strong> role for the repository <code>{full}</code>.</p>

<h2>Template Guidelines</h2>
<p>{html.escape(template)}</p>

<h2>Repository Information</h2>
<p><strong>Repository:</strong> {full}</p>
<p><strong>Owner:</strong> {html.escape(repo.owner)}</p>
<p><strong>Name:</strong> {html.escape(repo.repo)}</p>

<h2>Next Steps</h2>
<ul>
  <li>Review and customize this document based on your project needs</li>
  <li>Add specific details about your project</li>
  <li>Include relevant code examples and explanations</li>
  <li>Update sections to match your documentation requirements</li>
</ul>

<p><em>This is a template document. Please edit and customize it based on your specific project requirements.</em></p>"""
