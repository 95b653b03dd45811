"""Runtime settings resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_API_BASE = "http://localhost:3001"
DEFAULT_FUNCTIONS_BASE = "https://us-central1-dotivra.cloudfunctions.net"
DEFAULT_GENERATE_PATH = "/api/gemini/generate"
DEFAULT_TOOLS_PATH = "/api/tools/execute"
DEFAULT_MODEL = "gemini-2.5-pro"
DEFAULT_HTTP_TIMEOUT = 120.0


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _join(base: str, path: str) -> str:
    return base.rstrip("/") + "/" + path.lstrip("/")


@dataclass
class Settings:
    """Endpoints, model selection and HTTP knobs for one process."""

    api_base: str = DEFAULT_API_BASE
    generate_path: str = DEFAULT_GENERATE_PATH
    tools_path: str = DEFAULT_TOOLS_PATH
    functions_base: str = DEFAULT_FUNCTIONS_BASE
    model: str = DEFAULT_MODEL
    llm_provider: str = "endpoint"          # "endpoint" | "openai"
    openai_api_key: str = ""
    openai_base_url: str | None = None
    github_token: str | None = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    repo_cache_ttl: float = 0.0             # 0 = entries never expire
    repo_cache_size: int = 64
    extra_headers: dict[str, str] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Derived endpoints
    # ------------------------------------------------------------------
    @property
    def generate_url(self) -> str:
        return _join(self.api_base, self.generate_path)

    @property
    def tools_url(self) -> str:
        return _join(self.api_base, self.tools_path)

    @property
    def tools_fallback_url(self) -> str:
        return _join(self.functions_base, DEFAULT_TOOLS_PATH)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``DOTIVRA_*`` and provider env vars."""
        return cls(
            api_base=os.environ.get("DOTIVRA_API_BASE", DEFAULT_API_BASE),
            generate_path=os.environ.get("DOTIVRA_GENERATE_PATH", DEFAULT_GENERATE_PATH),
            tools_path=os.environ.get("DOTIVRA_TOOLS_PATH", DEFAULT_TOOLS_PATH),
            functions_base=os.environ.get("DOTIVRA_FUNCTIONS_BASE", DEFAULT_FUNCTIONS_BASE),
            model=os.environ.get("DOTIVRA_MODEL", DEFAULT_MODEL),
            llm_provider=os.environ.get("DOTIVRA_LLM_PROVIDER", "endpoint").lower(),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_base_url=os.environ.get("OPENAI_BASE_URL") or None,
            github_token=os.environ.get("GITHUB_TOKEN") or None,
            http_timeout=_env_float("DOTIVRA_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            repo_cache_ttl=_env_float("DOTIVRA_REPO_CACHE_TTL", 0.0),
            repo_cache_size=_env_int("DOTIVRA_REPO_CACHE_SIZE", 64),
        )

    def with_overrides(self, **overrides: object) -> Settings:
        """Return a copy with the non-``None`` overrides applied."""
        applied = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **applied)
