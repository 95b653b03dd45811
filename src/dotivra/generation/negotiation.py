"""File negotiation: the model asks for files until it is ready to write.

Each round the model answers with one JSON object, either
``{"needFiles": true, "files": [...], "reason": "..."}`` or
``{"needFiles": false, "content": "<html>"}``.  A new file request
replaces the previous working set; it is not merged with it.
"""

from __future__ import annotations

import logging

from ..agent.parser import extract_json_object
from ..llm.client import CompletionClient
from ..repo.context import RepositoryContextService
from . import prompts
from .chunked import ChunkedGenerator, ChunkStrategy, GenerationSession, ProgressCallback, string_list
from .sanitizer import sanitize_html

logger = logging.getLogger("dotivra.generation.negotiation")

MAX_ROUNDS = 10
ROUND_BUDGET = 8192
FILE_CHAR_LIMIT = 5000


class NegotiationStrategy(ChunkStrategy):
    """Iterative file requests, capped at ``max_rounds`` model calls."""

    name = "negotiation"

    def __init__(self, max_rounds: int = MAX_ROUNDS) -> None:
        self.max_rounds = max_rounds

    async def produce(self, session: GenerationSession) -> str:
        job = session.job
        requested: list[str] = []
        content = ""

        for round_no in range(1, self.max_rounds + 1):
            if round_no == 1:
                session.progress("analysis", "AI analyzing repository structure...")
                prompt = prompts.negotiation_initial_prompt(
                    job.template_prompt, job.document_name, job.document_role,
                    job.repository, session.directory_tree, session.context.readme,
                )
            else:
                records = await session.fetch_files(requested)
                session.progress("files", f"Processing {len(records)} files from repository...")
                prompt = prompts.negotiation_followup_prompt(
                    prompts.render_fetched_files(records, FILE_CHAR_LIMIT)
                )

            text = await session.complete(prompt, ROUND_BUDGET)
            reply = extract_json_object(text)
            if reply is None:
                logger.info("Round %d: no JSON object, treating reply as the document", round_no)
                content = text
                break

            files = string_list(reply.get("files"))
            if reply.get("needFiles") and files:
                preview = ", ".join(files[:3])
                more = f" and {len(files) - 3} more" if len(files) > 3 else ""
                session.progress("files", f"AI examining: {preview}{more}")
                requested = files
                continue

            body = reply.get("content")
            if reply.get("needFiles") is False and isinstance(body, str) and body.strip():
                session.progress("generate", "AI writing document content...")
                content = body
            else:
                content = text
            break
        else:
            logger.warning("File negotiation hit the %d-round cap", self.max_rounds)

        if not content.strip():
            session.progress("generate", "Finalizing with template content...")
            content = prompts.fallback_document(
                job.template_prompt, job.document_name, job.document_role, job.repository,
            )
        return sanitize_html(content)


class FileNegotiator(ChunkedGenerator):
    """``ChunkedGenerator`` preset with ``NegotiationStrategy``."""

    def __init__(
        self,
        llm: CompletionClient,
        repos: RepositoryContextService,
        *,
        max_rounds: int = MAX_ROUNDS,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        super().__init__(llm, repos, NegotiationStrategy(max_rounds), on_progress=on_progress)
