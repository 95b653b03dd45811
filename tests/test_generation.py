"""Tests for the chunked generation strategies."""

from __future__ import annotations

import json

import pytest

from dotivra.errors import GenerationFailed, LLMRequestError, RepositoryContextUnavailable
from dotivra.generation.chunked import GenerationJob, string_list
from dotivra.generation.negotiation import FileNegotiator
from dotivra.generation.prompts import fallback_document, render_fetched_files, section_outline
from dotivra.generation.sanitizer import sanitize_html
from dotivra.generation.sections import DEFAULT_SECTIONS, SectionGenerator
from dotivra.repo.models import FileRecord, RepoRef


@pytest.fixture
def job() -> GenerationJob:
    return GenerationJob(
        template_prompt="Write a developer guide.",
        repository=RepoRef(owner="acme", repo="demo"),
        document_name="Demo Guide",
        document_role="Developer",
    )


def files_reply(*paths: str) -> str:
    return json.dumps({"files": list(paths)})


def sections_reply(*names: str) -> str:
    return json.dumps({"sections": list(names)})


def need_files(*paths: str) -> str:
    return json.dumps({"needFiles": True, "files": list(paths), "reason": "context"})


def final(content: str) -> str:
    return json.dumps({"needFiles": False, "content": content})


# ===================================================================
# Section-driven generation
# ===================================================================

class TestSectionGenerator:
    @pytest.mark.asyncio
    async def test_sections_in_plan_order(self, make_llm, repos, job):
        llm = make_llm([
            files_reply("src/app.py"),
            sections_reply("A", "B", "C"),
            "<h2>A</h2><p>alpha</p>",
            "```html\n<h2>B</h2><p>beta</p>\n```",
            "<h2>C</h2><p>gamma</p>",
        ])
        html = await SectionGenerator(llm, repos).generate(job)
        assert html == (
            "<h1>Demo Guide</h1>\n"
            "<h2>A</h2><p>alpha</p>\n\n"
            "<h2>B</h2><p>beta</p>\n\n"
            "<h2>C</h2><p>gamma</p>"
        )
        assert html.count("<h1>") == 1
        assert llm.budgets == [512, 512, 8192, 8192, 8192]

    @pytest.mark.asyncio
    async def test_section_prompts_carry_context(self, make_llm, repos, job):
        llm = make_llm([
            files_reply("src/app.py", "ghost.py"),
            sections_reply("A", "B"),
            "<h2>A</h2><p>alpha</p>",
            "<h2>B</h2><p>beta</p>",
        ])
        await SectionGenerator(llm, repos).generate(job)

        assert "📁 src" in llm.prompts[0]
        assert "# Demo" in llm.prompts[0]
        first, second = llm.prompts[2], llm.prompts[3]
        assert "**src/app.py** (Python):\n```python\ndef main():" in first
        assert "**ghost.py**: not available (" in first
        assert "1. A 👉 CURRENT\n2. B ⏳" in first
        assert "None - this is the first section" in first
        assert "1. A ✅\n2. B 👉 CURRENT" in second
        assert "[A]: <h2>A</h2><p>alpha</p>..." in second

    @pytest.mark.asyncio
    async def test_unusable_plan_falls_back_to_defaults(self, make_llm, repos, job):
        llm = make_llm(
            [files_reply(), "I would suggest several sections."],
            default="<h2>Section</h2><p>text</p>",
        )
        html = await SectionGenerator(llm, repos).generate(job)
        assert llm.calls == 2 + len(DEFAULT_SECTIONS)
        assert html.count("<h2>Section</h2>") == len(DEFAULT_SECTIONS)

    @pytest.mark.asyncio
    async def test_planning_errors_do_not_abort(self, make_llm, repos, job):
        llm = make_llm(
            [LLMRequestError("down"), LLMRequestError("down")],
            default="<h2>S</h2>",
        )
        html = await SectionGenerator(llm, repos).generate(job)
        assert html.startswith("<h1>Demo Guide</h1>\n<h2>S</h2>")

    @pytest.mark.asyncio
    async def test_failed_sections_are_skipped(self, make_llm, repos, job):
        llm = make_llm([
            files_reply(),
            sections_reply("A", "B", "C", "D"),
            "<h2>A</h2>",
            LLMRequestError("AI generation failed: 500"),
            "   ",
            "<h2>D</h2>",
        ])
        html = await SectionGenerator(llm, repos).generate(job)
        assert html == "<h1>Demo Guide</h1>\n<h2>A</h2>\n\n<h2>D</h2>"

    @pytest.mark.asyncio
    async def test_no_sections_raises(self, make_llm, repos, job):
        llm = make_llm([files_reply(), sections_reply("A")], default=LLMRequestError("down"))
        with pytest.raises(GenerationFailed, match="Demo Guide"):
            await SectionGenerator(llm, repos).generate(job)

    @pytest.mark.asyncio
    async def test_document_name_escaped(self, make_llm, repos, job):
        job.document_name = "R&D <Guide>"
        llm = make_llm([files_reply(), sections_reply("A"), "<h2>A</h2>"])
        html = await SectionGenerator(llm, repos).generate(job)
        assert html.startswith("<h1>R&amp;D &lt;Guide&gt;</h1>\n")

    @pytest.mark.asyncio
    async def test_progress_reported(self, make_llm, repos, job):
        steps = []
        llm = make_llm([files_reply(), sections_reply("A"), "<h2>A</h2>"])
        await SectionGenerator(llm, repos, on_progress=lambda step, detail: steps.append(step)).generate(job)
        assert steps[0] == "init"
        assert steps[-1] == "done"
        assert "generate" in steps
        assert "finalize" in steps

    @pytest.mark.asyncio
    async def test_repository_unavailable(self, make_llm, accessor, repos, job):
        accessor.fail_repo = True
        llm = make_llm(default="<h2>x</h2>")
        with pytest.raises(RepositoryContextUnavailable):
            await SectionGenerator(llm, repos).generate(job)
        assert llm.calls == 0


# ===================================================================
# File negotiation
# ===================================================================

class TestFileNegotiator:
    @pytest.mark.asyncio
    async def test_single_round(self, make_llm, repos, job):
        llm = make_llm([final("<h1>X</h1>")])
        html = await FileNegotiator(llm, repos).generate(job)
        assert html == "<h1>X</h1>"
        assert llm.calls == 1
        assert llm.budgets == [8192]

    @pytest.mark.asyncio
    async def test_content_is_sanitized(self, make_llm, repos, job):
        llm = make_llm([final("```html\n<p>body</p>\n```")])
        html = await FileNegotiator(llm, repos).generate(job)
        assert html == "<h1>Document</h1>\n<p>body</p>"

    @pytest.mark.asyncio
    async def test_fenced_block_inside_final_content(self, make_llm, repos, job):
        llm = make_llm([final('<h1>Guide</h1>\n```json\n{"a": 1}\n```')])
        html = await FileNegotiator(llm, repos).generate(job)
        assert html == '<h1>Guide</h1>\n{"a": 1}'
        assert "needFiles" not in html

    @pytest.mark.asyncio
    async def test_round_cap_returns_fallback(self, make_llm, repos, job):
        llm = make_llm(default=need_files("src/app.py"))
        html = await FileNegotiator(llm, repos).generate(job)
        assert llm.calls == 10
        assert html == sanitize_html(fallback_document(
            job.template_prompt, job.document_name, job.document_role, job.repository,
        ))
        assert html.startswith("<h1>Demo Guide</h1>")
        assert "Template Guidelines" in html

    @pytest.mark.asyncio
    async def test_custom_round_cap(self, make_llm, repos, job):
        llm = make_llm(default=need_files("src/app.py"))
        await FileNegotiator(llm, repos, max_rounds=3).generate(job)
        assert llm.calls == 3

    @pytest.mark.asyncio
    async def test_requested_files_replace_previous_set(self, make_llm, repos, accessor, job):
        llm = make_llm([
            need_files("src/app.py", "ghost.py"),
            need_files("pyproject.toml"),
            final("<h1>Done</h1>"),
        ])
        html = await FileNegotiator(llm, repos).generate(job)
        assert html == "<h1>Done</h1>"

        second, third = llm.prompts[1], llm.prompts[2]
        assert "**src/app.py**" in second
        assert "**ghost.py**: ❌ NOT FOUND" in second
        assert "**Files that don't exist:** ghost.py" in second
        assert "**pyproject.toml**" in third
        assert "src/app.py" not in third
        assert accessor.file_requests[-3:] == ["src/app.py", "ghost.py", "pyproject.toml"]

    @pytest.mark.asyncio
    async def test_reply_without_json_is_the_document(self, make_llm, repos, job):
        llm = make_llm(["<h1>Plain</h1><p>no json here</p>"])
        html = await FileNegotiator(llm, repos).generate(job)
        assert html == "<h1>Plain</h1><p>no json here</p>"
        assert llm.calls == 1

    @pytest.mark.asyncio
    async def test_empty_content_uses_fallback(self, make_llm, repos, job):
        llm = make_llm([""])
        html = await FileNegotiator(llm, repos).generate(job)
        assert html.startswith("<h1>Demo Guide</h1>")
        assert llm.calls == 1

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self, make_llm, repos, job):
        llm = make_llm([need_files("src/app.py"), LLMRequestError("AI generation failed: 502")])
        with pytest.raises(LLMRequestError):
            await FileNegotiator(llm, repos).generate(job)

    @pytest.mark.asyncio
    async def test_repository_unavailable(self, make_llm, accessor, repos, job):
        accessor.fail_repo = True
        with pytest.raises(RepositoryContextUnavailable):
            await FileNegotiator(make_llm(), repos).generate(job)


# ===================================================================
# Prompt helpers
# ===================================================================

class TestPromptHelpers:
    def test_section_outline(self):
        assert section_outline(["A", "B", "C"], 1) == "1. A ✅\n2. B 👉 CURRENT\n3. C ⏳"

    def test_render_fetched_files_truncates(self):
        records = [
            FileRecord(path="big.py", content="x" * 20, language="Python"),
            FileRecord(path="empty.txt", fetch_status="empty"),
        ]
        block = render_fetched_files(records, max_chars=10)
        assert "- ✅ Successfully fetched: 1 files" in block
        assert "- ❌ Failed/Not found: 1 files" in block
        assert "**big.py** (20 chars, showing first 10)\n```python\nxxxxxxxxxx\n```" in block
        assert "**empty.txt**: ⚠️ File exists but has no content" in block

    def test_fallback_escapes(self):
        doc = fallback_document("<script>", "A&B", "Dev", RepoRef(owner="o", repo="r"))
        assert "<h1>A&amp;B</h1>" in doc
        assert "&lt;script&gt;" in doc

    def test_string_list(self):
        assert string_list(["a", " b ", "", 3, None]) == ["a", "b"]
        assert string_list("a") == []
