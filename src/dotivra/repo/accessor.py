"""Repository accessors — read-only views of a hosted repository.

``RepositoryAccessor`` is the narrow interface the rest of dotivra uses;
``GitHubRepositoryAccessor`` implements it over the GitHub REST API with
httpx.
"""

from __future__ import annotations

import base64
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..errors import RepositoryError
from .models import CommitInfo, RepoEntry, RepoRef, RepositoryInfo

logger = logging.getLogger("dotivra.repo")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GITHUB_API = "https://api.github.com"
_GITHUB_URL_RE = re.compile(
    r"(?:https?://)?github\.com/(?P<owner>[^/\s]+)/(?P<repo>[^/\s#?]+)"
)
_OWNER_REPO_RE = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)$")

_LANGUAGES: dict[str, str] = {
    "js": "JavaScript",
    "ts": "TypeScript",
    "tsx": "TypeScript React",
    "jsx": "JavaScript React",
    "py": "Python",
    "java": "Java",
    "cpp": "C++",
    "c": "C",
    "cs": "C#",
    "php": "PHP",
    "rb": "Ruby",
    "go": "Go",
    "rs": "Rust",
    "swift": "Swift",
    "kt": "Kotlin",
    "dart": "Dart",
    "html": "HTML",
    "css": "CSS",
    "scss": "SCSS",
    "sass": "Sass",
    "less": "Less",
    "md": "Markdown",
    "json": "JSON",
    "xml": "XML",
    "yml": "YAML",
    "yaml": "YAML",
    "toml": "TOML",
    "sh": "Shell",
    "sql": "SQL",
}


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

def parse_github_url(url: str) -> tuple[str, str]:
    """Extract (owner, repo) from a GitHub URL or an ``owner/repo`` string.

    Raises ValueError if *url* matches neither form.
    """
    m = _GITHUB_URL_RE.search(url) or _OWNER_REPO_RE.match(url.strip())
    if not m:
        raise ValueError(f"Not a valid GitHub URL: {url}")
    repo = m.group("repo").rstrip("/")
    if repo.endswith(".git"):
        repo = repo[:-4]
    return m.group("owner"), repo


def repo_ref(url: str) -> RepoRef:
    owner, repo = parse_github_url(url)
    return RepoRef(owner=owner, repo=repo)


def detect_language(filename: str) -> str:
    """Language label for *filename*, by extension."""
    if "." not in filename:
        return "Unknown"
    return _LANGUAGES.get(filename.rsplit(".", 1)[-1].lower(), "Unknown")


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class RepositoryAccessor(ABC):
    """Read-only access to one hosting provider.

    Every method raises ``RepositoryError`` when the lookup fails.
    """

    @abstractmethod
    async def get_repository(self, owner: str, repo: str) -> RepositoryInfo:
        ...

    @abstractmethod
    async def list_directory(self, owner: str, repo: str, path: str = "") -> list[RepoEntry]:
        ...

    @abstractmethod
    async def get_file_content(self, owner: str, repo: str, path: str) -> str:
        ...

    @abstractmethod
    async def get_commits(self, owner: str, repo: str, *, per_page: int = 10) -> list[CommitInfo]:
        ...

    async def aclose(self) -> None:
        """Release any underlying connections."""


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------

class GitHubRepositoryAccessor(RepositoryAccessor):
    """GitHub REST v3 accessor.  Public repos work without a token."""

    def __init__(
        self,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        api_base: str = _GITHUB_API,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        headers = {"Accept": "application/vnd.github.v3+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    # -- public API ----------------------------------------------------------

    async def get_repository(self, owner: str, repo: str) -> RepositoryInfo:
        data = await self._get_json(f"/repos/{owner}/{repo}")
        return RepositoryInfo(
            name=data.get("name") or repo,
            full_name=data.get("full_name") or f"{owner}/{repo}",
            description=data.get("description") or "",
            language=data.get("language") or "Unknown",
            default_branch=data.get("default_branch") or "main",
        )

    async def list_directory(self, owner: str, repo: str, path: str = "") -> list[RepoEntry]:
        data = await self._get_json(f"/repos/{owner}/{repo}/contents/{path}".rstrip("/"))
        if not isinstance(data, list):
            raise RepositoryError(f"{owner}/{repo}:{path} is not a directory")
        entries: list[RepoEntry] = []
        for item in data:
            kind = "dir" if item.get("type") == "dir" else "file"
            entries.append(RepoEntry(
                path=item.get("path", ""),
                name=item.get("name", ""),
                type=kind,
                size=item.get("size") or 0,
                language=detect_language(item.get("name", "")) if kind == "file" else None,
            ))
        return entries

    async def get_file_content(self, owner: str, repo: str, path: str) -> str:
        data = await self._get_json(f"/repos/{owner}/{repo}/contents/{path}")
        if not isinstance(data, dict) or data.get("type") != "file":
            raise RepositoryError(f"{owner}/{repo}:{path} is not a file")
        encoded = data.get("content") or ""
        if data.get("encoding") == "base64":
            try:
                return base64.b64decode(encoded).decode("utf-8", errors="replace")
            except ValueError as exc:
                raise RepositoryError(f"Could not decode {path}: {exc}") from exc
        return encoded

    async def get_commits(self, owner: str, repo: str, *, per_page: int = 10) -> list[CommitInfo]:
        data = await self._get_json(
            f"/repos/{owner}/{repo}/commits", params={"per_page": per_page}
        )
        commits: list[CommitInfo] = []
        for item in data if isinstance(data, list) else []:
            commit = item.get("commit") or {}
            author = commit.get("author") or {}
            commits.append(CommitInfo(
                sha=item.get("sha", ""),
                message=commit.get("message", ""),
                author=author.get("name", ""),
                date=author.get("date"),
            ))
        return commits

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # -- private -------------------------------------------------------------

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.api_base}{path}"
        try:
            resp = await self._http.get(url, headers=self._headers, params=params)
        except httpx.HTTPError as exc:
            raise RepositoryError(f"GitHub request failed for {path}: {exc}") from exc
        if resp.status_code == 404:
            raise RepositoryError(f"Not found on GitHub: {path}")
        if resp.status_code >= 400:
            raise RepositoryError(f"GitHub returned {resp.status_code} for {path}")
        logger.debug("GET %s → %d", path, resp.status_code)
        return resp.json()
