"""Chunked one-shot document generation from a template and a repository."""

from .chunked import ChunkedGenerator, ChunkStrategy, GenerationJob, GenerationSession
from .negotiation import FileNegotiator, NegotiationStrategy
from .sanitizer import sanitize_html
from .sections import DEFAULT_SECTIONS, SectionGenerator, SectionStrategy

__all__ = [
    "DEFAULT_SECTIONS",
    "ChunkStrategy",
    "ChunkedGenerator",
    "FileNegotiator",
    "GenerationJob",
    "GenerationSession",
    "NegotiationStrategy",
    "SectionGenerator",
    "SectionStrategy",
    "sanitize_html",
]
