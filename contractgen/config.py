"""contractgen configuration.

Centralised, typed configuration for the generation pipeline. All settings use
Pydantic v2 models so they can be validated at construction time and serialised
to/from JSON or environment variables without boiler-plate.

Credentials are deliberately *not* part of the configuration: they travel on
each :class:`~contractgen.session.GenerationRequest`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

ProviderName = Literal["groq", "ollama", "offline"]

DEFAULT_BASE_URLS: dict[str, str] = {
    "groq": "https://api.groq.com/openai/v1",
    "ollama": "http://localhost:11434",
    "offline": "",
}

DEFAULT_MODELS: dict[str, str] = {
    "groq": "llama-3.1-8b-instant",
    "ollama": "qwen2.5-coder:14b",
    "offline": "templates",
}


class ProviderConfig(BaseModel):
    """Which generative-model provider to call and how."""

    name: ProviderName = Field(default="groq")
    base_url: str = Field(default="", description="Empty means the provider default")
    model: str = Field(default="", description="Empty means the provider default")
    max_tokens: int = Field(default=1500, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    request_timeout: float = Field(
        default=60.0, gt=0, description="Per-attempt timeout in seconds"
    )
    deadline: float = Field(
        default=180.0, gt=0, description="Overall budget for all attempts in seconds"
    )

    @property
    def resolved_base_url(self) -> str:
        return self.base_url or DEFAULT_BASE_URLS[self.name]

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.name]


class RetryConfig(BaseModel):
    """Bounded exponential backoff for transient provider failures."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0.0, description="Delay before the 2nd attempt")
    max_delay: float = Field(default=8.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1`` (``attempt`` is 1-based)."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


class Config(BaseModel):
    """Global contractgen configuration.

    Instances are typically created once by the CLI entry point and then
    passed to :class:`~contractgen.session.ContractGenerator`.
    """

    output_dir: Path = Field(default=Path("./generated"))
    include_tests: bool = Field(default=True, description="Write tests/<Name>.test.js")
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            CG_OUTPUT_DIR, CG_INCLUDE_TESTS, CG_PROVIDER, CG_BASE_URL,
            CG_MODEL, CG_TIMEOUT, CG_DEADLINE, CG_MAX_ATTEMPTS.
        """
        provider_kwargs: dict[str, Any] = {}
        if os.environ.get("CG_PROVIDER"):
            provider_kwargs["name"] = os.environ["CG_PROVIDER"]
        if os.environ.get("CG_BASE_URL"):
            provider_kwargs["base_url"] = os.environ["CG_BASE_URL"]
        if os.environ.get("CG_MODEL"):
            provider_kwargs["model"] = os.environ["CG_MODEL"]
        if os.environ.get("CG_TIMEOUT"):
            provider_kwargs["request_timeout"] = float(os.environ["CG_TIMEOUT"])
        if os.environ.get("CG_DEADLINE"):
            provider_kwargs["deadline"] = float(os.environ["CG_DEADLINE"])

        retry_kwargs: dict[str, Any] = {}
        if os.environ.get("CG_MAX_ATTEMPTS"):
            retry_kwargs["max_attempts"] = int(os.environ["CG_MAX_ATTEMPTS"])

        include_tests = os.environ.get("CG_INCLUDE_TESTS", "1").strip().lower() not in (
            "0", "false", "no", "off",
        )

        return cls(
            output_dir=Path(os.environ.get("CG_OUTPUT_DIR", "./generated")),
            include_tests=include_tests,
            provider=ProviderConfig(**provider_kwargs),
            retry=RetryConfig(**retry_kwargs),
        )
