"""Chunked document generation.

A single model call cannot emit a long document, so generation is split
into several bounded calls.  ``ChunkedGenerator`` owns what every split
shares: loading the repository context, rendering the directory tree,
calling the model, fetching files and reporting progress.  A
``ChunkStrategy`` decides how the document is cut up:

- ``SectionStrategy``      plan sections, then one call per section
- ``NegotiationStrategy``  let the model request files until it writes
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from pydantic import BaseModel

from ..llm.client import CompletionClient
from ..repo.context import RepositoryContextService, build_directory_tree
from ..repo.models import FileRecord, RepoRef, RepositoryContext

logger = logging.getLogger("dotivra.generation")

ProgressCallback = Callable[[str, str], None]


class GenerationJob(BaseModel):
    """Inputs of one one-shot generation."""
    template_prompt: str
    repository: RepoRef
    document_name: str
    document_role: str


@dataclass
class GenerationSession:
    """Per-job state handed to a strategy, plus the shared helpers."""

    job: GenerationJob
    context: RepositoryContext
    directory_tree: str
    llm: CompletionClient
    repos: RepositoryContextService
    on_progress: ProgressCallback | None = None
    calls: int = field(default=0)

    def progress(self, step: str, detail: str = "") -> None:
        logger.info("[%s] %s", step, detail)
        if self.on_progress is not None:
            self.on_progress(step, detail)

    async def complete(self, prompt: str, max_output_tokens: int) -> str:
        """One bounded model call; generation paths are not cancellable."""
        self.calls += 1
        return await self.llm.complete(prompt, max_output_tokens=max_output_tokens)

    async def fetch_files(self, paths: list[str], max_chars: int | None = None) -> list[FileRecord]:
        """Fetch *paths* in order; failures are kept as non-ok records."""
        records: list[FileRecord] = []
        for path in paths:
            records.append(await self.repos.fetch_file(self.job.repository, path, max_chars))
        return records


class ChunkStrategy(ABC):
    """How a document is split into bounded model calls."""

    name: str = ""

    @abstractmethod
    async def produce(self, session: GenerationSession) -> str:
        """Return the final HTML for *session*."""
        ...


class ChunkedGenerator:
    """Runs a ``ChunkStrategy`` against one repository.

    Parameters
    ----------
    llm
        Completion backend.
    repos
        Repository context service (with its shared cache).
    strategy
        The splitting strategy.
    on_progress
        Optional ``(step, detail)`` callback.
    """

    def __init__(
        self,
        llm: CompletionClient,
        repos: RepositoryContextService,
        strategy: ChunkStrategy,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.llm = llm
        self.repos = repos
        self.strategy = strategy
        self.on_progress = on_progress

    async def generate(self, job: GenerationJob) -> str:
        """Generate the document for *job*.

        Raises
        ------
        RepositoryContextUnavailable
            When the repository cannot be loaded at all.
        GenerationFailed
            When the strategy produced no usable output.
        """
        t0 = time.perf_counter()
        if self.on_progress is not None:
            self.on_progress("init", f"Preparing {self.strategy.name} generation...")
        context = await self.repos.require_context(job.repository)
        session = GenerationSession(
            job=job,
            context=context,
            directory_tree=build_directory_tree(context.structure),
            llm=self.llm,
            repos=self.repos,
            on_progress=self.on_progress,
        )
        html = await self.strategy.produce(session)
        session.progress("done", "Complete!")
        logger.info(
            "%s generation for %s finished in %.1fs (%d model calls)",
            self.strategy.name, job.repository.full_name,
            time.perf_counter() - t0, session.calls,
        )
        return html


def string_list(value: object) -> list[str]:
    """Keep the non-empty strings of a JSON array, in order."""
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]
