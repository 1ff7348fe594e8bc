"""Generation session orchestrator.

Drives one request through the generation stages::

    Idle -> Requesting -> Parsing -> Sanitizing -> Scaffolding -> Completed
                \\___________\\__________\\____________\\______-> Failed

Every failure is re-raised with ``error.stage`` set to the stage it happened
in. Sessions running in the same process share a :class:`SessionRegistry`
that rejects duplicate in-flight requests and serialises sessions that resolve
to the same project path.

Usage::

    generator = ContractGenerator(Config())
    result = await generator.generate("NFT Treasury", credential=SecretStr(key))
    print(result.contract_file)
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from contractgen.client import GenerationClient
from contractgen.config import Config
from contractgen.errors import (
    CollisionError,
    DuplicateInFlight,
    GenerationError,
    UnexpectedError,
)
from contractgen.naming import contract_name_for, infer_archetype, sanitize, validate_identifier
from contractgen.parser import parse, rename_contract
from contractgen.prompts import build_prompt
from contractgen.providers import TextProvider, build_provider
from contractgen.scaffolder import GenerationResult, ProjectLayout, ProjectScaffolder
from contractgen.utils import print_stage, print_warning

# ---------------------------------------------------------------------------
# Request & state
# ---------------------------------------------------------------------------


class SessionState(str, Enum):
    """Lifecycle of a single generation session."""
    IDLE = "idle"
    REQUESTING = "requesting"
    PARSING = "parsing"
    SANITIZING = "sanitizing"
    SCAFFOLDING = "scaffolding"
    COMPLETED = "completed"
    FAILED = "failed"


_NEXT_STATE: dict[SessionState, SessionState] = {
    SessionState.IDLE: SessionState.REQUESTING,
    SessionState.REQUESTING: SessionState.PARSING,
    SessionState.PARSING: SessionState.SANITIZING,
    SessionState.SANITIZING: SessionState.SCAFFOLDING,
    SessionState.SCAFFOLDING: SessionState.COMPLETED,
}

_TERMINAL_STATES = {SessionState.COMPLETED, SessionState.FAILED}


class GenerationRequest(BaseModel):
    """One user request. Immutable once submitted."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(..., description="Natural-language contract description")
    output_dir: Path = Field(default=Path("./generated"))
    verbose: bool = Field(default=False)
    provider_credential: SecretStr | None = Field(default=None)

    @property
    def normalized_description(self) -> str:
        return " ".join(self.description.lower().split())

    @property
    def key(self) -> tuple[str, str]:
        """Idempotence key: ``(normalized description, resolved output dir)``."""
        return (self.normalized_description, str(self.output_dir.resolve()))


# ---------------------------------------------------------------------------
# Shared registry
# ---------------------------------------------------------------------------


class SessionRegistry:
    """In-process bookkeeping shared by concurrent sessions.

    Holds the in-flight request keys, the project paths currently being
    scaffolded and the results of completed requests. All three live only as
    long as the registry object; every insert and removal happens under one
    lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: set[tuple[str, str]] = set()
        self._claimed_paths: set[Path] = set()
        self._history: dict[tuple[str, str], GenerationResult] = {}

    def begin(self, request: GenerationRequest) -> None:
        """Register *request* as in flight.

        Raises:
            DuplicateInFlight: The same request has not finished yet.
            CollisionError: The same request already completed and its
                project still exists.
        """
        key = request.key
        with self._lock:
            if key in self._in_flight:
                raise DuplicateInFlight(request.description, request.output_dir)
            prior = self._history.get(key)
            if prior is not None and prior.project_path.exists():
                raise CollisionError(prior.project_path, "was already generated for this request")
            self._in_flight.add(key)

    def finish(self, request: GenerationRequest, result: GenerationResult | None = None) -> None:
        """Drop *request* from the in-flight set, recording *result* if any."""
        key = request.key
        with self._lock:
            self._in_flight.discard(key)
            if result is not None:
                self._history[key] = result

    @contextmanager
    def claim_path(self, path: Path) -> Iterator[None]:
        """Hold an exclusive claim on a project path while scaffolding.

        A second claim on the same path fails fast with ``CollisionError``.
        """
        resolved = path.resolve()
        with self._lock:
            if resolved in self._claimed_paths:
                raise CollisionError(path, "is being generated by another session")
            self._claimed_paths.add(resolved)
        try:
            yield
        finally:
            with self._lock:
                self._claimed_paths.discard(resolved)

    def in_flight(self) -> set[tuple[str, str]]:
        with self._lock:
            return set(self._in_flight)

    def history(self) -> dict[tuple[str, str], GenerationResult]:
        with self._lock:
            return dict(self._history)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class GenerationSession:
    """Runs exactly one request through every generation stage.

    Attributes:
        state: Current :class:`SessionState`.
        transitions: Every state entered, in order.
        failed_stage: Stage that failed, if the session ended in ``FAILED``.
        result: The :class:`GenerationResult` once ``COMPLETED``.
    """

    def __init__(
        self,
        client: GenerationClient,
        scaffolder: ProjectScaffolder,
        registry: SessionRegistry | None = None,
        timeout: float | None = None,
    ) -> None:
        self.client = client
        self.scaffolder = scaffolder
        self.registry = registry or SessionRegistry()
        self.timeout = timeout
        self.state = SessionState.IDLE
        self.transitions: list[SessionState] = [SessionState.IDLE]
        self.failed_stage: SessionState | None = None
        self.result: GenerationResult | None = None
        self._verbose = False

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _advance(self, detail: str = "") -> None:
        """Move to the next stage."""
        self.state = _NEXT_STATE[self.state]
        self.transitions.append(self.state)
        if self._verbose:
            print_stage(self.state.value, detail)

    def _fail(self, exc: BaseException) -> None:
        """Enter ``FAILED``, tagging *exc* with the stage that failed."""
        if self.state in _TERMINAL_STATES:
            return
        self.failed_stage = self.state
        if isinstance(exc, GenerationError):
            exc.stage = self.state.value
        self.state = SessionState.FAILED
        self.transitions.append(self.state)
        if self._verbose:
            kind = getattr(exc, "kind", type(exc).__name__)
            print_stage(self.state.value, f"{kind} during {self.failed_stage.value}")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, request: GenerationRequest) -> GenerationResult:
        """Generate the project for *request*.

        Returns:
            The :class:`GenerationResult` of the promoted project.

        Raises:
            GenerationError: Whatever the failing stage raised, with
                ``stage`` set. Any other exception is wrapped in
                :class:`UnexpectedError`.
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError("A GenerationSession runs exactly one request")
        self._verbose = request.verbose

        try:
            self.registry.begin(request)
        except GenerationError as exc:
            self._fail(exc)
            raise

        try:
            self.result = await self._run_stages(request)
            return self.result
        except (GenerationError, asyncio.CancelledError) as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            error = UnexpectedError(exc)
            self._fail(error)
            raise error from exc
        finally:
            self.registry.finish(request, self.result)

    async def _run_stages(self, request: GenerationRequest) -> GenerationResult:
        archetype = infer_archetype(request.description)
        requested_name = contract_name_for(request.description)

        self._advance(f"{requested_name} ({archetype.value})")
        prompt = build_prompt(request.description, requested_name, archetype)
        raw_text = await self.client.generate(
            prompt,
            credential=request.provider_credential,
            timeout=self.timeout,
            contract_name=requested_name,
            archetype=archetype,
        )

        self._advance(f"{len(raw_text)} characters")
        parsed = parse(raw_text, expected_name=requested_name)

        self._advance(parsed.candidate_name)
        name = validate_identifier(sanitize(parsed.candidate_name))
        if name != parsed.candidate_name:
            if self._verbose:
                print_warning(f"Renamed contract {parsed.candidate_name!r} to {name!r}")
            parsed = parsed.model_copy(
                update={
                    "source_body": rename_contract(
                        parsed.source_body, parsed.candidate_name, name
                    )
                }
            )
        layout = ProjectLayout.for_project(request.output_dir, name)

        # From here on there is no await: a cancellation can only be observed
        # after the project has been promoted.
        self._advance(str(layout.root))
        with self.registry.claim_path(layout.root):
            result = self.scaffolder.materialize(layout, parsed, name)

        self._advance(name)
        return result


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------


class ContractGenerator:
    """Owns the client, scaffolder and registry for one process run.

    Creates a fresh :class:`GenerationSession` per request; all of them share
    the same :class:`SessionRegistry`.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        provider: TextProvider | None = None,
        registry: SessionRegistry | None = None,
        client: GenerationClient | None = None,
    ) -> None:
        self.config = config or Config()
        self.registry = registry or SessionRegistry()
        self.client = client or GenerationClient(
            provider or build_provider(self.config.provider),
            retry=self.config.retry,
            settings=self.config.provider,
        )
        self.scaffolder = ProjectScaffolder(include_tests=self.config.include_tests)

    def session(self) -> GenerationSession:
        return GenerationSession(self.client, self.scaffolder, self.registry)

    async def generate(
        self,
        description: str,
        *,
        output_dir: str | Path | None = None,
        credential: SecretStr | str | None = None,
        verbose: bool = False,
    ) -> GenerationResult:
        """Build a :class:`GenerationRequest` and run it in a new session."""
        if isinstance(credential, str):
            credential = SecretStr(credential)
        request = GenerationRequest(
            description=description,
            output_dir=Path(output_dir) if output_dir is not None else self.config.output_dir,
            verbose=verbose,
            provider_credential=credential,
        )
        return await self.session().run(request)
