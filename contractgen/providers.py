"""Generative-model provider adapters.

Each provider turns a :class:`ProviderRequest` into completion text with a
single HTTP call (or none, for the offline templates) and classifies every
failure into the taxonomy in :mod:`contractgen.errors`. Retrying is *not* done
here -- that is the job of :class:`~contractgen.client.GenerationClient`.

Typical usage::

    provider = ChatCompletionsProvider()
    text = await provider.complete(
        ProviderRequest(prompt="Write an ERC20 token", credential=SecretStr(key)),
        timeout=30,
    )
"""

from __future__ import annotations

from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from contractgen.config import DEFAULT_BASE_URLS, DEFAULT_MODELS, ProviderConfig
from contractgen.errors import AuthError, ProviderError, ProviderTimeout, RateLimited
from contractgen.parser.models import Archetype
from contractgen.scaffolder.templates import TemplateRenderer


class ProviderRequest(BaseModel):
    """One outbound completion request."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    credential: SecretStr | None = None
    max_tokens: int = Field(default=1500, ge=1)
    temperature: float = Field(default=0.1, ge=0.0)
    # Hints consumed only by the offline template provider.
    contract_name: str | None = None
    archetype: Archetype = Archetype.UNKNOWN


class TextProvider(Protocol):
    """Capability interface every provider implements."""

    async def complete(self, request: ProviderRequest, timeout: float) -> str:
        ...


# ---------------------------------------------------------------------------
# Shared HTTP classification
# ---------------------------------------------------------------------------


def _retry_after(response: httpx.Response) -> float | None:
    """Parse a numeric ``Retry-After`` header, if present."""
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def classify_status(response: httpx.Response, provider: str) -> None:
    """Raise the matching failure for a non-2xx *response*."""
    status = response.status_code
    if status < 400:
        return
    body = response.text[:500]
    if status in (401, 403):
        raise AuthError(f"{provider} rejected the credential (HTTP {status})")
    if status == 429:
        raise RateLimited(
            f"{provider} rate limit hit (HTTP 429)", retry_after=_retry_after(response)
        )
    raise ProviderError(
        f"{provider} returned HTTP {status}: {body}",
        status_code=status,
        retryable=status >= 500,
    )


async def _post_json(
    client: httpx.AsyncClient, path: str, payload: dict, provider: str, timeout: float
) -> dict:
    """POST *payload* and return the decoded JSON body, classifying failures."""
    try:
        response = await client.post(path, json=payload)
    except httpx.TimeoutException as exc:
        raise ProviderTimeout(f"Request to {provider} timed out after {timeout}s.") from exc
    except httpx.TransportError as exc:
        raise ProviderError(
            f"Cannot reach {provider} at {client.base_url}: {exc}", retryable=True
        ) from exc

    classify_status(response, provider)
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(f"{provider} returned a non-JSON body", retryable=True) from exc
    if not isinstance(data, dict):
        raise ProviderError(f"{provider} returned an unexpected payload")
    return data


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions (Groq by default)
# ---------------------------------------------------------------------------


class ChatCompletionsProvider:
    """Client for OpenAI-compatible ``/chat/completions`` endpoints."""

    name = "groq"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URLS["groq"],
        model: str = DEFAULT_MODELS["groq"],
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model

    def _client(self, credential: SecretStr, timeout: float) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` with auth header and timeout."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(10.0, timeout)),
            headers={"Authorization": f"Bearer {credential.get_secret_value()}"},
        )

    @staticmethod
    def _extract_text(data: dict) -> str:
        """Pull the message content out of a chat completion response.

        Missing fields read as an empty completion; fields of the wrong type
        raise a non-retryable :class:`ProviderError`.
        """
        choices = data.get("choices", [])
        if not isinstance(choices, list):
            raise ProviderError("Unexpected chat completion payload: 'choices' is not a list")
        if not choices:
            return ""
        choice = choices[0]
        if not isinstance(choice, dict):
            raise ProviderError("Unexpected chat completion payload: choice is not an object")
        message = choice.get("message", {})
        if not isinstance(message, dict):
            raise ProviderError("Unexpected chat completion payload: 'message' is not an object")
        content = message.get("content", "")
        if not isinstance(content, str):
            raise ProviderError("Unexpected chat completion payload: 'content' is not a string")
        return content

    async def complete(self, request: ProviderRequest, timeout: float) -> str:
        if request.credential is None or not request.credential.get_secret_value():
            raise AuthError("An API key is required (pass --api-key or set GROQ_API_KEY)")

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        async with self._client(request.credential, timeout) as client:
            data = await _post_json(client, "/chat/completions", payload, self.name, timeout)

        text = self._extract_text(data)
        if not text.strip():
            raise ProviderError(f"{self.name} returned an empty completion")
        return text


# ---------------------------------------------------------------------------
# Local Ollama server
# ---------------------------------------------------------------------------


class OllamaProvider:
    """Client for a local Ollama server's ``/api/generate`` endpoint.

    The credential is ignored; Ollama runs unauthenticated on localhost.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URLS["ollama"],
        model: str = DEFAULT_MODELS["ollama"],
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(10.0, timeout)),
        )

    @staticmethod
    def _extract_text(data: dict) -> str:
        """Ollama's non-streaming response puts the full text in ``"response"``."""
        text = data.get("response", "")
        if not isinstance(text, str):
            raise ProviderError("Unexpected Ollama payload: 'response' is not a string")
        return text

    async def complete(self, request: ProviderRequest, timeout: float) -> str:
        payload = {
            "model": self.model,
            "prompt": request.prompt,
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_tokens,
            },
        }
        async with self._client(timeout) as client:
            data = await _post_json(client, "/api/generate", payload, self.name, timeout)

        text = self._extract_text(data)
        if not text.strip():
            raise ProviderError(f"{self.name} returned an empty completion")
        return text


# ---------------------------------------------------------------------------
# Offline templates
# ---------------------------------------------------------------------------

_ARCHETYPE_TEMPLATES: dict[Archetype, str] = {
    Archetype.ERC20: "contracts/erc20.sol.j2",
    Archetype.ERC721: "contracts/erc721.sol.j2",
    Archetype.GENERIC: "contracts/generic.sol.j2",
    Archetype.UNKNOWN: "contracts/generic.sol.j2",
}


class TemplateProvider:
    """Deterministic provider rendering the built-in archetype contracts.

    Answers like a model would -- a fenced Solidity block -- so the output goes
    through exactly the same parse/sanitize/scaffold path.
    """

    name = "offline"

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer or TemplateRenderer()

    async def complete(self, request: ProviderRequest, timeout: float) -> str:
        contract_name = request.contract_name or "MyContract"
        source = self.renderer.render(
            _ARCHETYPE_TEMPLATES[request.archetype],
            {"contract_name": contract_name},
        )
        return f"```solidity\n{source}```\n"


def build_provider(config: ProviderConfig) -> TextProvider:
    """Instantiate the provider selected by *config*."""
    if config.name == "offline":
        return TemplateProvider()
    if config.name == "ollama":
        return OllamaProvider(base_url=config.resolved_base_url, model=config.resolved_model)
    return ChatCompletionsProvider(base_url=config.resolved_base_url, model=config.resolved_model)
