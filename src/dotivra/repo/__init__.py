"""Repository access, context assembly and the shared context cache."""

from .accessor import (
    GitHubRepositoryAccessor,
    RepositoryAccessor,
    detect_language,
    parse_github_url,
    repo_ref,
)
from .cache import CacheConfig, RepoContextCache
from .context import RepositoryContextService, build_directory_tree
from .models import FileRecord, RepoEntry, RepoRef, RepositoryContext, RepositoryInfo

__all__ = [
    "CacheConfig",
    "FileRecord",
    "GitHubRepositoryAccessor",
    "RepoContextCache",
    "RepoEntry",
    "RepoRef",
    "RepositoryAccessor",
    "RepositoryContext",
    "RepositoryContextService",
    "RepositoryInfo",
    "build_directory_tree",
    "detect_language",
    "parse_github_url",
    "repo_ref",
]
