"""Read-only document, project and template lookups."""

from .documents import (
    DocumentContextLoader,
    DocumentStore,
    InMemoryDocumentStore,
    find_last_updated,
    normalize_repo_link,
    normalize_timestamp,
)

__all__ = [
    "DocumentContextLoader",
    "DocumentStore",
    "InMemoryDocumentStore",
    "find_last_updated",
    "normalize_repo_link",
    "normalize_timestamp",
]
