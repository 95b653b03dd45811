"""Completion clients and cooperative cancellation."""

from .cancellation import CancellationToken, run_cancellable
from .client import (
    CompletionClient,
    EndpointCompletionClient,
    OpenAICompletionClient,
    get_completion_client,
)

__all__ = [
    "CancellationToken",
    "CompletionClient",
    "EndpointCompletionClient",
    "OpenAICompletionClient",
    "get_completion_client",
    "run_cancellable",
]
