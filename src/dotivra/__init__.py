"""dotivra — LLM-driven document agent and repository-to-document generation.

The package is organised in layers:

- ``dotivra.agent``       the staged chat agent (planning → … → done)
- ``dotivra.tools``       the closed tool catalog and the HTTP tool broker
- ``dotivra.generation``  chunked one-shot document generation
- ``dotivra.repo``        repository access and the shared context cache
- ``dotivra.store``       read-only document / project / template lookups
- ``dotivra.llm``         completion clients and cooperative cancellation
"""

__version__ = "0.1.0"
