"""Section-driven generation: plan the sections, then write them one by one."""

from __future__ import annotations

import html
import logging

from ..agent.parser import extract_json_object
from ..errors import GenerationFailed, LLMRequestError
from ..llm.client import CompletionClient
from ..repo.context import RepositoryContextService
from ..repo.models import FileRecord
from . import prompts
from .chunked import ChunkedGenerator, ChunkStrategy, GenerationSession, ProgressCallback, string_list
from .sanitizer import sanitize_html

logger = logging.getLogger("dotivra.generation.sections")

DEFAULT_SECTIONS = ["Introduction", "Getting Started", "Core Features", "Technical Details", "Conclusion"]
PLANNING_BUDGET = 512
SECTION_BUDGET = 8192
FILE_CHAR_LIMIT = 3000


class SectionStrategy(ChunkStrategy):
    """Select key files, plan 4-8 sections, generate each with its own budget."""

    name = "sections"

    async def produce(self, session: GenerationSession) -> str:
        job = session.job
        records = await self._collect_files(session)
        sections = await self._plan_sections(session)
        files_context = prompts.render_key_files(records)

        done: list[tuple[str, str]] = []
        for index, section in enumerate(sections):
            session.progress("generate", f"Generating {index + 1}/{len(sections)}: {section}")
            prompt = prompts.section_prompt(
                job.template_prompt, job.document_name, job.document_role,
                job.repository, files_context, sections, index, done,
            )
            try:
                text = await session.complete(prompt, SECTION_BUDGET)
            except LLMRequestError as exc:
                logger.warning("Section %r skipped: %s", section, exc)
                continue
            cleaned = sanitize_html(text)
            if not cleaned:
                logger.warning("Section %r skipped: empty output", section)
                continue
            done.append((section, cleaned))

        if not done:
            raise GenerationFailed(
                f"No section of '{job.document_name}' could be generated"
            )

        session.progress("finalize", "Combining all sections...")
        body = "\n\n".join(content for _, content in done)
        return f"<h1>{html.escape(job.document_name)}</h1>\n{body}"

    # -- Internal -----------------------------------------------------------

    async def _collect_files(self, session: GenerationSession) -> list[FileRecord]:
        job = session.job
        session.progress("files", "Collecting repository files...")
        prompt = prompts.file_selection_prompt(
            job.template_prompt, job.document_name, job.document_role,
            job.repository, session.directory_tree, session.context.readme,
        )
        try:
            text = await session.complete(prompt, PLANNING_BUDGET)
        except LLMRequestError as exc:
            logger.warning("File selection failed, continuing without files: %s", exc)
            return []
        parsed = extract_json_object(text) or {}
        paths = string_list(parsed.get("files"))
        if not paths:
            return []
        session.progress("files", f"Fetching {len(paths)} key files...")
        return await session.fetch_files(paths, FILE_CHAR_LIMIT)

    async def _plan_sections(self, session: GenerationSession) -> list[str]:
        job = session.job
        session.progress("planning", "Planning document sections...")
        try:
            text = await session.complete(
                prompts.section_plan_prompt(job.template_prompt, job.document_name),
                PLANNING_BUDGET,
            )
        except LLMRequestError as exc:
            logger.warning("Section planning failed, using defaults: %s", exc)
            return list(DEFAULT_SECTIONS)
        parsed = extract_json_object(text) or {}
        sections = string_list(parsed.get("sections"))
        if not sections:
            logger.warning("Section plan unusable, using defaults")
            return list(DEFAULT_SECTIONS)
        return sections


class SectionGenerator(ChunkedGenerator):
    """``ChunkedGenerator`` preset with ``SectionStrategy``."""

    def __init__(
        self,
        llm: CompletionClient,
        repos: RepositoryContextService,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        super().__init__(llm, repos, SectionStrategy(), on_progress=on_progress)
