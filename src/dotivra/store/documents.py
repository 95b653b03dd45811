"""Read-only document / project / template lookups.

The agent never writes to the store; it only resolves the runtime values
substituted into the system instructions.  ``DocumentContextLoader``
fetches each record at most once per invocation.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("dotivra.store")

_GITHUB_PATH_RE = re.compile(r"github\.com/([^/\s]+/[^/\s?#]+)")
_OWNER_REPO_RE = re.compile(r"^[^/\s]+/[^/\s]+$")

# Keys checked, in order, for the document's last-edited time
LAST_UPDATED_KEYS = (
    "UpdatedAt",
    "updatedAt",
    "Updated_At",
    "updated_at",
    "Updated_Time",
    "updated_Time",
    "updated_time",
    "UpdatedTime",
    "updatedTime",
    "Edited_Time",
    "editedTime",
    "lastUpdated",
    "LastUpdated",
)

Record = dict[str, Any]


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------

class DocumentStore(ABC):
    """Narrow read-only view of the document database."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def get_template(self, template_id: str) -> Optional[Record]:
        ...


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store, used by the CLI (from a JSON file) and in tests."""

    def __init__(
        self,
        documents: dict[str, Record] | None = None,
        projects: dict[str, Record] | None = None,
        templates: dict[str, Record] | None = None,
    ) -> None:
        self.documents = documents or {}
        self.projects = projects or {}
        self.templates = templates or {}
        self.calls: list[tuple[str, str]] = []

    @classmethod
    def from_json(cls, path: str | Path) -> InMemoryDocumentStore:
        """Load ``{"documents": {...}, "projects": {...}, "templates": {...}}``."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(
            documents=data.get("documents", {}),
            projects=data.get("projects", {}),
            templates=data.get("templates", {}),
        )

    async def get_document(self, document_id: str) -> Optional[Record]:
        self.calls.append(("document", document_id))
        return self.documents.get(document_id)

    async def get_project(self, project_id: str) -> Optional[Record]:
        self.calls.append(("project", project_id))
        return self.projects.get(project_id)

    async def get_template(self, template_id: str) -> Optional[Record]:
        self.calls.append(("template", template_id))
        return self.templates.get(template_id)


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

def normalize_repo_link(link: Any) -> str | None:
    """Reduce a GitHub URL or ``owner/repo`` string to ``owner/repo``."""
    if not link:
        return None
    text = str(link).strip()
    if "github.com/" in text:
        m = _GITHUB_PATH_RE.search(text)
        if not m:
            return None
        return m.group(1).replace(".git", "")
    if _OWNER_REPO_RE.match(text):
        return text.replace(".git", "")
    return None


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_timestamp(value: Any) -> str | None:
    """Normalize the timestamp shapes found in stored documents to ISO-8601 UTC.

    Accepts ISO strings, ``datetime`` objects, epoch milliseconds and
    ``{"seconds": …, "nanoseconds": …}`` mappings.  Unparseable strings are
    returned unchanged; anything else yields ``None``.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _iso(value)
    if isinstance(value, str):
        try:
            return _iso(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return value
    if isinstance(value, (int, float)):
        try:
            return _iso(datetime.fromtimestamp(value / 1000, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
            if not isinstance(nanos, (int, float)):
                nanos = 0
            millis = seconds * 1000 + int(nanos // 1_000_000)
            return normalize_timestamp(millis)
    return None


def find_last_updated(document: Record) -> str | None:
    """First parseable timestamp among the known keys, top level then metadata."""
    sources: list[Record] = [document]
    for key in ("Metadata", "metadata"):
        nested = document.get(key)
        if isinstance(nested, dict):
            sources.append(nested)
    for source in sources:
        for key in LAST_UPDATED_KEYS:
            iso = normalize_timestamp(source.get(key))
            if iso:
                return iso
    return None


def prettify_repo_name(repo_link: str) -> str:
    name = repo_link.split("/")[1] if "/" in repo_link else repo_link
    pretty = re.sub(r"[-_]+", " ", name).strip()
    return pretty or name


# ---------------------------------------------------------------------------
# Per-invocation loader
# ---------------------------------------------------------------------------

class DocumentContextLoader:
    """Resolves runtime placeholder values for one agent invocation.

    Every lookup goes through a small memo so the document, its project and
    its template are each fetched at most once.  Lookup failures are logged
    and treated as missing values.
    """

    def __init__(self, store: DocumentStore | None, document_id: str | None) -> None:
        self._store = store
        self.document_id = document_id
        self._memo: dict[tuple[str, str], Optional[Record]] = {}

    async def _load(self, kind: str, key: str | None) -> Optional[Record]:
        if not key or self._store is None:
            return None
        memo_key = (kind, key)
        if memo_key not in self._memo:
            getter = {
                "document": self._store.get_document,
                "project": self._store.get_project,
                "template": self._store.get_template,
            }[kind]
            try:
                self._memo[memo_key] = await getter(key)
            except Exception as exc:
                logger.warning("Could not load %s %s: %s", kind, key, exc)
                self._memo[memo_key] = None
        return self._memo[memo_key]

    async def document(self) -> Optional[Record]:
        return await self._load("document", self.document_id)

    async def repo_link(self) -> str | None:
        doc = await self.document()
        if not doc:
            return None
        project = await self._load("project", doc.get("Project_Id"))
        if not project:
            return None
        return normalize_repo_link(project.get("GitHubRepo") or project.get("githubLink"))

    async def project_name(self, repo_link: str | None = None) -> str | None:
        if repo_link and "/" in repo_link:
            return prettify_repo_name(repo_link)
        doc = await self.document()
        if not doc:
            return None
        return doc.get("DocumentName") or doc.get("Title") or None

    async def template_title(self) -> str | None:
        doc = await self.document()
        if not doc:
            return None
        template = await self._load("template", doc.get("Template_Id"))
        if template and template.get("TemplateName"):
            return template["TemplateName"]
        return doc.get("DocumentName") or doc.get("Title") or None

    async def last_updated(self) -> str | None:
        doc = await self.document()
        return find_last_updated(doc) if doc else None

    async def placeholders(self) -> dict[str, str]:
        """Values for ``{{DOCUMENT_ID}}``, ``{{REPOLINK}}`` and friends."""
        repo = await self.repo_link()
        return {
            "DOCUMENT_ID": self.document_id or "NOT_SET",
            "REPOLINK": repo or "NOT_SET",
            "DOCUMENT_LAST_UPDATED": await self.last_updated() or "UNKNOWN",
            "TEMPLATE_TITLE": await self.template_title() or "NOT_SET",
            "PROJECT_NAME": await self.project_name(repo) or "NOT_SET",
        }
