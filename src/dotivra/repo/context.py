"""Repository context assembly for the generation paths."""

from __future__ import annotations

import asyncio
import logging

from ..errors import RepositoryContextUnavailable, RepositoryError
from .accessor import RepositoryAccessor, detect_language
from .cache import RepoContextCache
from .models import FileRecord, RepoEntry, RepoRef, RepositoryContext

logger = logging.getLogger("dotivra.repo")

README_CANDIDATES = ("README.md", "README.txt", "README.rst", "readme.md", "Readme.md")
MAX_CRAWL_DEPTH = 3
TREE_LIMIT = 100


def build_directory_tree(structure: list[RepoEntry], limit: int = TREE_LIMIT) -> str:
    """Render the first *limit* entries as an indented tree, directories first."""
    head = sorted(structure[:limit], key=lambda e: (e.type != "dir", e.path))
    lines = [
        f"{'  ' * e.path.count('/')}{'📁' if e.type == 'dir' else '📄'} {e.path}"
        for e in head
    ]
    if len(structure) > limit:
        lines.append(f"... +{len(structure) - limit} more")
    return "\n".join(lines)


class RepositoryContextService:
    """Builds and caches ``RepositoryContext`` objects.

    Parameters
    ----------
    accessor
        Provider-specific repository accessor.
    cache
        Shared cache; a private one is created when omitted.
    max_depth
        How many directory levels below the root are crawled.
    """

    def __init__(
        self,
        accessor: RepositoryAccessor,
        cache: RepoContextCache | None = None,
        *,
        max_depth: int = MAX_CRAWL_DEPTH,
    ) -> None:
        self.accessor = accessor
        self.cache = cache if cache is not None else RepoContextCache()
        self.max_depth = max_depth
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_context(self, ref: RepoRef) -> RepositoryContext | None:
        """Cached context for *ref*, built on first use; ``None`` if unavailable."""
        key = ref.cache_key
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                cached = self.cache.get(key)
                if cached is not None:
                    return cached
                return await self._build(ref)
        finally:
            # Waiters keep their own reference; later callers hit the cache.
            if self._locks.get(key) is lock:
                del self._locks[key]

    async def require_context(self, ref: RepoRef) -> RepositoryContext:
        context = await self.get_context(ref)
        if context is None:
            raise RepositoryContextUnavailable(
                f"Could not load repository context for {ref.full_name}"
            )
        return context

    async def fetch_file(self, ref: RepoRef, path: str, max_chars: int | None = None) -> FileRecord:
        """Fetch one file; failures come back as a non-ok ``FileRecord``."""
        language = detect_language(path.rsplit("/", 1)[-1])
        try:
            content = await self.accessor.get_file_content(ref.owner, ref.repo, path)
        except RepositoryError as exc:
            logger.warning("Could not fetch %s: %s", path, exc)
            return FileRecord(path=path, language=language, fetch_status="not_found", error=str(exc))
        if not content:
            return FileRecord(path=path, language=language, fetch_status="empty")
        if max_chars is not None:
            content = content[:max_chars]
        return FileRecord(path=path, content=content, language=language)

    async def search_files(self, ref: RepoRef, term: str) -> list[RepoEntry]:
        """Entries whose name, path or language contains *term*."""
        context = await self.get_context(ref)
        if context is None:
            return []
        needle = term.lower()
        return [
            e for e in context.structure
            if needle in e.name.lower()
            or needle in e.path.lower()
            or (e.language is not None and needle in e.language.lower())
        ]

    def clear_cache(self) -> None:
        self.cache.clear()

    # -- private -------------------------------------------------------------

    async def _build(self, ref: RepoRef) -> RepositoryContext | None:
        key = ref.cache_key
        try:
            info = await self.accessor.get_repository(ref.owner, ref.repo)
        except RepositoryError as exc:
            logger.error("Repository context unavailable for %s: %s", key, exc)
            return None

        structure = await self._crawl(ref, "", 0)
        readme = await self._readme(ref)
        context = RepositoryContext(repository=info, structure=structure, readme=readme)
        self.cache.set(key, context)
        logger.info(
            "Repository context built for %s (%d entries, readme=%s)",
            key, len(structure), readme is not None,
        )
        return context

    async def _crawl(self, ref: RepoRef, path: str, depth: int) -> list[RepoEntry]:
        try:
            entries = await self.accessor.list_directory(ref.owner, ref.repo, path)
        except RepositoryError as exc:
            logger.warning("Could not list %s/%s: %s", ref.full_name, path, exc)
            return []
        structure: list[RepoEntry] = []
        for entry in entries:
            structure.append(entry)
            if entry.type == "dir" and depth < self.max_depth:
                structure.extend(await self._crawl(ref, entry.path, depth + 1))
        return structure

    async def _readme(self, ref: RepoRef) -> str | None:
        for name in README_CANDIDATES:
            try:
                return await self.accessor.get_file_content(ref.owner, ref.repo, name)
            except RepositoryError:
                continue
        return None
