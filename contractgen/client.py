"""Retrying front-end for generative-model providers.

:class:`GenerationClient` owns the retry, backoff and deadline policy around a
single :class:`~contractgen.providers.TextProvider`:

* ``ProviderTimeout``, ``RateLimited`` and retryable ``ProviderError`` are
  retried with bounded exponential backoff.
* ``AuthError`` and non-retryable ``ProviderError`` fail fast.
* The overall ``timeout`` is a deadline shared by all attempts; once it has
  passed with attempts still left the client raises ``Cancelled`` and makes
  no further calls. A final attempt cut short by the deadline counts as a
  timeout, so exhausting the bound always ends in ``NetworkFailure``.

Typical usage::

    client = GenerationClient(ChatCompletionsProvider(), RetryConfig())
    text = await client.generate(prompt, credential=SecretStr(key), timeout=120)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from pydantic import SecretStr

from contractgen.config import ProviderConfig, RetryConfig
from contractgen.errors import (
    Cancelled,
    GenerationError,
    NetworkFailure,
    ProviderTimeout,
    RateLimited,
)
from contractgen.parser.models import Archetype
from contractgen.providers import ProviderRequest, TextProvider

Sleep = Callable[[float], Awaitable[None]]


class GenerationClient:
    """Sends prompts to a provider and returns raw completion text.

    Attributes:
        provider: The provider adapter performing the actual call.
        retry: Attempt bound and backoff parameters.
        settings: Token/temperature/timeout settings for each request.
    """

    def __init__(
        self,
        provider: TextProvider,
        retry: RetryConfig | None = None,
        settings: ProviderConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.retry = retry or RetryConfig()
        self.settings = settings or ProviderConfig()
        self._sleep = sleep
        self._clock = clock

    def _backoff(self, attempt: int, error: GenerationError) -> float:
        delay = self.retry.delay_for(attempt)
        if isinstance(error, RateLimited) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return delay

    async def generate(
        self,
        prompt: str,
        credential: SecretStr | None = None,
        timeout: float | None = None,
        *,
        contract_name: str | None = None,
        archetype: Archetype = Archetype.UNKNOWN,
    ) -> str:
        """Return completion text for *prompt*.

        Args:
            prompt: Full prompt text.
            credential: Provider API key, if the provider needs one.
            timeout: Overall deadline in seconds for all attempts. ``None``
                uses ``settings.deadline``.
            contract_name: Offline-template hint.
            archetype: Offline-template hint.

        Raises:
            AuthError: The credential is missing or rejected.
            ProviderError: A non-retryable provider failure.
            RateLimited: Every attempt was throttled.
            NetworkFailure: Transient failures exhausted ``max_attempts``.
            Cancelled: The deadline passed.
        """
        budget = self.settings.deadline if timeout is None else timeout
        deadline = self._clock() + budget
        request = ProviderRequest(
            prompt=prompt,
            credential=credential,
            max_tokens=self.settings.max_tokens,
            temperature=self.settings.temperature,
            contract_name=contract_name,
            archetype=archetype,
        )

        attempts = 0
        failures: list[GenerationError] = []
        while attempts < self.retry.max_attempts:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise Cancelled(
                    f"Deadline of {budget}s passed after {attempts} attempt(s)"
                )
            attempt_timeout = min(self.settings.request_timeout, remaining)

            attempts += 1
            try:
                return await asyncio.wait_for(
                    self.provider.complete(request, attempt_timeout),
                    timeout=attempt_timeout,
                )
            except asyncio.TimeoutError:
                # Running out of budget on the final attempt is still an
                # exhausted attempt bound, not a cancellation.
                if attempts < self.retry.max_attempts and deadline - self._clock() <= 0:
                    raise Cancelled(
                        f"Deadline of {budget}s passed during attempt {attempts}"
                    ) from None
                error: GenerationError = ProviderTimeout(
                    f"Attempt {attempts} timed out after {attempt_timeout:.1f}s"
                )
            except GenerationError as exc:
                if not exc.retryable:
                    raise
                error = exc

            failures.append(error)
            if attempts >= self.retry.max_attempts:
                break

            delay = self._backoff(attempts, error)
            if delay >= deadline - self._clock():
                if isinstance(error, RateLimited):
                    error.attempts = attempts
                    raise error
                raise Cancelled(
                    f"Deadline of {budget}s leaves no time to retry after "
                    f"{attempts} attempt(s)"
                )
            await self._sleep(delay)

        last = failures[-1]
        if all(isinstance(failure, RateLimited) for failure in failures):
            raise RateLimited(
                f"Rate limited on all {attempts} attempt(s)",
                retry_after=getattr(last, "retry_after", None),
                attempts=attempts,
            )
        raise NetworkFailure(attempts, last)
