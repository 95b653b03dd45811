"""Shared fakes: a scripted completion client, an in-memory repository and a
mock tool endpoint."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from dotivra.errors import RepositoryError
from dotivra.llm.client import CompletionClient
from dotivra.repo.accessor import RepositoryAccessor, detect_language
from dotivra.repo.context import RepositoryContextService
from dotivra.repo.models import CommitInfo, RepoEntry, RepositoryInfo
from dotivra.tools.broker import ToolBroker

TOOLS_URL = "http://api.test/api/tools/execute"
FALLBACK_URL = "http://functions.test/api/tools/execute"


# ===================================================================
# Completion client
# ===================================================================

class ScriptedLLM(CompletionClient):
    """Returns scripted replies in order; records every prompt and budget.

    A reply may be a string, an exception instance (raised), or a callable
    taking the prompt.  When the script runs out, ``default`` is used.
    """

    model = "scripted"

    def __init__(self, replies: list[Any] | None = None, default: Any = None) -> None:
        self.replies = list(replies or [])
        self.default = default
        self.prompts: list[str] = []
        self.budgets: list[int] = []
        self.temperatures: list[float | None] = []

    async def _complete(self, prompt: str, *, max_output_tokens: int, temperature: float | None) -> str:
        self.prompts.append(prompt)
        self.budgets.append(max_output_tokens)
        self.temperatures.append(temperature)
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise AssertionError("ScriptedLLM ran out of replies")
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply

    @property
    def calls(self) -> int:
        return len(self.prompts)


@pytest.fixture
def make_llm() -> Callable[..., ScriptedLLM]:
    return ScriptedLLM


# ===================================================================
# Repository
# ===================================================================

class FakeRepositoryAccessor(RepositoryAccessor):
    """In-memory repository: ``files`` maps path → content."""

    def __init__(self, files: dict[str, str], *, fail_repo: bool = False) -> None:
        self.files = files
        self.fail_repo = fail_repo
        self.repository_calls = 0
        self.file_requests: list[str] = []

    async def get_repository(self, owner: str, repo: str) -> RepositoryInfo:
        self.repository_calls += 1
        if self.fail_repo:
            raise RepositoryError("repository not found")
        return RepositoryInfo(name=repo, full_name=f"{owner}/{repo}", language="Python")

    async def list_directory(self, owner: str, repo: str, path: str = "") -> list[RepoEntry]:
        prefix = f"{path}/" if path else ""
        children: dict[str, str] = {}
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            rest = file_path[len(prefix):]
            head = rest.split("/", 1)[0]
            children[head] = "dir" if "/" in rest else children.get(head, "file")
        return [
            RepoEntry(
                path=f"{prefix}{name}",
                name=name,
                type=kind,
                language=detect_language(name) if kind == "file" else None,
            )
            for name, kind in sorted(children.items())
        ]

    async def get_file_content(self, owner: str, repo: str, path: str) -> str:
        self.file_requests.append(path)
        if path not in self.files:
            raise RepositoryError(f"Not found: {path}")
        return self.files[path]

    async def get_commits(self, owner: str, repo: str, *, per_page: int = 10) -> list[CommitInfo]:
        return [CommitInfo(sha="abc123", message="Initial commit")]


SAMPLE_FILES = {
    "README.md": "# Demo\n\nA demo project.",
    "src/app.py": "def main():\n    return 42\n",
    "src/util/helpers.py": "def helper():\n    pass\n",
    "pyproject.toml": "[project]\nname = 'demo'\n",
}


@pytest.fixture
def accessor() -> FakeRepositoryAccessor:
    return FakeRepositoryAccessor(dict(SAMPLE_FILES))


@pytest.fixture
def repos(accessor: FakeRepositoryAccessor) -> RepositoryContextService:
    return RepositoryContextService(accessor)


# ===================================================================
# Tool endpoint
# ===================================================================

class ToolEndpoint:
    """Records tool POSTs; ``responder(request_json, url)`` decides the reply."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.responder: Callable[[dict[str, Any], str], httpx.Response] = (
            lambda body, url: httpx.Response(200, json={"success": True, "echo": body["tool"]})
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        url = str(request.url)
        self.requests.append((url, body))
        return self.responder(body, url)


@pytest.fixture
def tool_endpoint() -> ToolEndpoint:
    return ToolEndpoint()


@pytest.fixture
def broker(tool_endpoint: ToolEndpoint) -> ToolBroker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(tool_endpoint.handler))
    return ToolBroker(TOOLS_URL, fallback_endpoint=FALLBACK_URL, http_client=client)
