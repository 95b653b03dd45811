"""Repository data models shared by the accessor, the cache and generation."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class RepoRef(BaseModel):
    """An ``owner/repo`` pair."""
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def cache_key(self) -> str:
        return self.full_name


class RepositoryInfo(BaseModel):
    """Top-level repository metadata."""
    name: str
    full_name: str
    description: str = ""
    language: str = "Unknown"
    default_branch: str = "main"


class RepoEntry(BaseModel):
    """One file or directory in the repository listing."""
    path: str
    name: str
    type: Literal["file", "dir"]
    size: int = 0
    language: Optional[str] = None


class RepositoryContext(BaseModel):
    """Everything the generation paths know about a repository."""
    repository: RepositoryInfo
    structure: list[RepoEntry] = Field(default_factory=list)
    readme: Optional[str] = None

    @property
    def files(self) -> list[RepoEntry]:
        return [e for e in self.structure if e.type == "file"]


class FileRecord(BaseModel):
    """A fetched (or not-fetched) file, carried into prompts."""
    path: str
    content: Optional[str] = None
    language: str = "Unknown"
    fetch_status: Literal["ok", "not_found", "empty"] = "ok"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fetch_status == "ok"


class CommitInfo(BaseModel):
    sha: str
    message: str = ""
    author: str = ""
    date: Optional[str] = None
