"""Exception hierarchy shared by every layer of dotivra."""

from __future__ import annotations


class DotivraError(Exception):
    """Base class for all dotivra errors."""


class ResponseParseError(DotivraError):
    """The model reply did not contain a usable stage object."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class UnknownToolError(DotivraError):
    """A tool invocation named a tool outside the closed catalog."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"Unknown tool: {tool!r}")
        self.tool = tool


class LLMRequestError(DotivraError):
    """The completion endpoint failed or returned a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationAborted(DotivraError):
    """Raised when a cancellation token fires during an LLM call."""


class RepositoryError(DotivraError):
    """A repository lookup failed."""


class RepositoryContextUnavailable(RepositoryError):
    """No repository context could be assembled at all."""


class GenerationFailed(DotivraError):
    """A generation path produced no usable output."""
