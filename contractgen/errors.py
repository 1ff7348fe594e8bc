"""Failure taxonomy for the contract generation pipeline.

Every stage raises a subclass of :class:`GenerationError` instead of a bare
``RuntimeError`` so that the session can tag the failure with the stage it
happened in and the CLI can report a stable ``kind`` without string matching.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class GenerationError(Exception):
    """Base for all generation failures.

    Attributes:
        kind: Stable, machine-readable failure category.
        retryable: Whether the client may retry the failing provider call.
        stage: Session stage the failure surfaced in (set by the session).
    """

    kind: str = "GenerationError"
    retryable: bool = False

    def __init__(self, message: str = "Contract generation failed") -> None:
        super().__init__(message)
        self.message = message
        self.stage: str | None = None

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.kind}: {self.message}"
        return f"{self.kind}: {self.message}"


# ---------------------------------------------------------------------------
# Provider failures
# ---------------------------------------------------------------------------


class ProviderTimeout(GenerationError):
    """A single provider call exceeded its per-attempt timeout."""

    kind = "Timeout"
    retryable = True


class ProviderError(GenerationError):
    """The provider failed; 5xx and connection errors are retryable."""

    kind = "ProviderError"

    def __init__(
        self,
        message: str = "Provider error",
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class AuthError(GenerationError):
    """Missing or rejected credential. Never retried."""

    kind = "AuthError"


class RateLimited(GenerationError):
    """The provider throttled the request."""

    kind = "RateLimited"
    retryable = True

    def __init__(
        self,
        message: str = "Rate limited by provider",
        *,
        retry_after: float | None = None,
        attempts: int | None = None,
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.attempts = attempts


class Cancelled(GenerationError):
    """The request deadline passed before the provider answered."""

    kind = "Cancelled"


class NetworkFailure(GenerationError):
    """Transient provider failures persisted past the attempt bound."""

    kind = "NetworkFailure"

    def __init__(self, attempts: int, last_error: GenerationError | None = None) -> None:
        detail = f": {last_error.message}" if last_error is not None else ""
        super().__init__(f"Provider call failed after {attempts} attempt(s){detail}")
        self.attempts = attempts
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Parse failures
# ---------------------------------------------------------------------------


class ParseError(GenerationError):
    """Model output could not be turned into a contract source."""

    kind = "ParseError"


class NoContractFound(ParseError):
    """No ``contract <Name>`` declaration was located in the model output."""

    kind = "NoContractFound"

    def __init__(self, snippet: str) -> None:
        super().__init__(f"No contract declaration found in model output: {snippet!r}")
        self.snippet = snippet


class MalformedContract(ParseError):
    """A declaration was found but its body is structurally broken."""

    kind = "MalformedContract"


# ---------------------------------------------------------------------------
# Naming / filesystem / session failures
# ---------------------------------------------------------------------------


class InvalidIdentifier(GenerationError):
    """A name about to be written is not a valid identifier."""

    kind = "InvalidIdentifier"

    def __init__(self, name: str) -> None:
        super().__init__(f"Not a valid contract identifier: {name!r}")
        self.name = name


class CollisionError(GenerationError):
    """The target project path already exists or is being generated."""

    kind = "CollisionError"

    def __init__(self, path: Path, reason: str = "already exists") -> None:
        super().__init__(f"Project path {path} {reason}")
        self.path = path


class WriteFailure(GenerationError):
    """Filesystem I/O failed while staging or promoting the project."""

    kind = "WriteFailure"


class DuplicateInFlight(GenerationError):
    """An identical request is already being processed."""

    kind = "DuplicateInFlight"

    def __init__(self, description: str, output_dir: Path) -> None:
        super().__init__(
            f"A generation for {description!r} into {output_dir} is already in progress"
        )
        self.description = description
        self.output_dir = output_dir


class UnexpectedError(GenerationError):
    """A stage failed with an exception outside this taxonomy."""

    kind = "UnexpectedError"

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.cause = cause
