"""Tests for the generation session orchestrator (contractgen.session).

Covers:
- GenerationRequest normalisation and idempotence key
- SessionRegistry bookkeeping (in-flight, history, path claims)
- GenerationSession state transitions and stage tagging on failure
- Filesystem untouched when requesting or parsing fails
- Duplicate in-flight requests, repeated requests, same-path races
- Cancellation while the provider call is pending
- The hyphenated-name regression ("NFT-Treasury")
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import SecretStr

from contractgen.errors import (
    AuthError,
    CollisionError,
    DuplicateInFlight,
    NetworkFailure,
    NoContractFound,
    ProviderError,
    ProviderTimeout,
    UnexpectedError,
    WriteFailure,
)
from contractgen.providers import OllamaProvider
from contractgen.scaffolder import GenerationResult
from contractgen.session import (
    GenerationRequest,
    GenerationSession,
    SessionRegistry,
    SessionState,
)

BALLOT_OUTPUT = "```solidity\ncontract Ballot {\n    uint256 public votes;\n}\n```"


class GatedProvider:
    """Answers only once ``release`` is set; records how often it was called."""

    def __init__(self, answer: str) -> None:
        self.answer = answer
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def complete(self, request, timeout: float) -> str:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.answer


# ---------------------------------------------------------------------------
# GenerationRequest
# ---------------------------------------------------------------------------


class TestGenerationRequest:
    @pytest.mark.unit
    def test_defaults(self):
        request = GenerationRequest(description="ERC721")
        assert request.output_dir == Path("./generated")
        assert request.verbose is False
        assert request.provider_credential is None

    @pytest.mark.unit
    def test_key_normalises_description(self, tmp_path: Path):
        a = GenerationRequest(description="  NFT   Treasury ", output_dir=tmp_path)
        b = GenerationRequest(description="nft treasury", output_dir=tmp_path)
        assert a.key == b.key

    @pytest.mark.unit
    def test_key_uses_resolved_output_dir(self, tmp_path: Path):
        a = GenerationRequest(description="ERC20", output_dir=tmp_path / "out")
        b = GenerationRequest(description="ERC20", output_dir=tmp_path / "x" / ".." / "out")
        assert a.key == b.key

    @pytest.mark.unit
    def test_credential_hidden(self):
        request = GenerationRequest(description="ERC20", provider_credential=SecretStr("gsk-123"))
        assert "gsk-123" not in repr(request)


# ---------------------------------------------------------------------------
# SessionRegistry
# ---------------------------------------------------------------------------


class TestSessionRegistry:
    @pytest.mark.unit
    def test_begin_and_finish(self, tmp_path: Path):
        registry = SessionRegistry()
        request = GenerationRequest(description="ERC20", output_dir=tmp_path)

        registry.begin(request)
        assert registry.in_flight() == {request.key}

        registry.finish(request)
        assert registry.in_flight() == set()
        assert registry.history() == {}

    @pytest.mark.unit
    def test_duplicate_begin(self, tmp_path: Path):
        registry = SessionRegistry()
        registry.begin(GenerationRequest(description="ERC20", output_dir=tmp_path))
        with pytest.raises(DuplicateInFlight):
            registry.begin(GenerationRequest(description="erc20", output_dir=tmp_path))

    @pytest.mark.unit
    def test_completed_request_with_existing_project(self, tmp_path: Path):
        registry = SessionRegistry()
        request = GenerationRequest(description="ERC20", output_dir=tmp_path)
        project = tmp_path / "ERC20Contract"
        project.mkdir()
        result = GenerationResult(
            project_path=project,
            contract_file=project / "contracts" / "ERC20Contract.sol",
            deploy_script_file=project / "scripts" / "deploy-ERC20Contract.js",
            contract_name="ERC20Contract",
        )

        registry.begin(request)
        registry.finish(request, result)
        with pytest.raises(CollisionError):
            registry.begin(request)

        project.rmdir()
        registry.begin(request)
        assert request.key in registry.in_flight()

    @pytest.mark.unit
    def test_claim_path_is_exclusive(self, tmp_path: Path):
        registry = SessionRegistry()
        with registry.claim_path(tmp_path / "Vault"):
            with pytest.raises(CollisionError) as exc_info:
                with registry.claim_path(tmp_path / "Vault"):
                    pass
        assert "another session" in exc_info.value.message

        # Released after the block, even though the inner claim failed.
        with registry.claim_path(tmp_path / "Vault"):
            pass


# ---------------------------------------------------------------------------
# Successful sessions
# ---------------------------------------------------------------------------


class TestSessionSuccess:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_erc721_end_to_end(self, stub, make_generator, erc721_output: str, output_dir: Path):
        generator = make_generator(stub(erc721_output))
        session = generator.session()

        result = await session.run(GenerationRequest(description="ERC721", output_dir=output_dir))

        assert result.contract_name == "ERC721Contract"
        assert result.project_path == output_dir / "ERC721Contract"
        assert result.contract_file.read_text(encoding="utf-8").count("contract ERC721Contract") == 1
        assert 'getContractFactory("ERC721Contract")' in result.deploy_script_file.read_text(encoding="utf-8")
        assert result.test_file.exists()
        assert session.state is SessionState.COMPLETED
        assert session.transitions == [
            SessionState.IDLE,
            SessionState.REQUESTING,
            SessionState.PARSING,
            SessionState.SANITIZING,
            SessionState.SCAFFOLDING,
            SessionState.COMPLETED,
        ]
        assert session.result == result
        assert generator.registry.in_flight() == set()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hyphenated_name_regression(self, stub, make_generator, hyphenated_output: str, output_dir: Path):
        generator = make_generator(stub(hyphenated_output))

        result = await generator.generate("NFT Treasury", output_dir=output_dir)

        assert result.contract_name == "NFTTreasury"
        assert result.project_path == output_dir / "NFTTreasury"
        source = result.contract_file.read_text(encoding="utf-8")
        assert "contract NFTTreasury {" in source
        assert "NFT-Treasury" not in source
        assert source.startswith("// SPDX-License-Identifier: MIT\n")
        script = result.deploy_script_file.read_text(encoding="utf-8")
        assert "const NFTTreasury = await hre.ethers.getContractFactory(\"NFTTreasury\");" in script
        assert "await NFTTreasury.deploy(deployer.address);" in script
        assert "NFT-Treasury" not in script
        assert result.deploy_script_file.name == "deploy-NFTTreasury.js"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_prompt_and_credential_forwarded(self, stub, make_generator, erc20_output: str):
        provider = stub(erc20_output)
        generator = make_generator(provider)

        await generator.generate("Governance Token", credential="gsk-live")

        request = provider.calls[0]
        assert request.credential.get_secret_value() == "gsk-live"
        assert request.contract_name == "GovernanceTokenContract"
        assert "GovernanceTokenContract" in request.prompt
        assert "```solidity" in request.prompt

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_without_tests(self, stub, make_generator, erc20_output: str):
        generator = make_generator(stub(erc20_output), include_tests=False)
        result = await generator.generate("token")
        assert result.test_file is None
        assert not (result.project_path / "tests").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_verbose_prints_stages(self, stub, make_generator, erc20_output: str, capsys):
        generator = make_generator(stub(erc20_output))
        await generator.generate("token", verbose=True)

        err = capsys.readouterr().err
        for stage in ("REQUESTING", "PARSING", "SANITIZING", "SCAFFOLDING", "COMPLETED"):
            assert stage in err

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_session_runs_once(self, stub, make_generator, erc20_output: str, output_dir: Path):
        session = make_generator(stub(erc20_output)).session()
        await session.run(GenerationRequest(description="a", output_dir=output_dir))
        with pytest.raises(RuntimeError):
            await session.run(GenerationRequest(description="b", output_dir=output_dir))


# ---------------------------------------------------------------------------
# Failing sessions
# ---------------------------------------------------------------------------


class TestSessionFailure:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_contract_found(self, stub, make_generator, prose_output: str, output_dir: Path):
        session = make_generator(stub(prose_output)).session()

        with pytest.raises(NoContractFound) as exc_info:
            await session.run(GenerationRequest(description="Voting DAO", output_dir=output_dir))

        assert exc_info.value.stage == "parsing"
        assert session.state is SessionState.FAILED
        assert session.failed_stage is SessionState.PARSING
        assert not output_dir.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_repeated_timeouts(self, stub, make_generator, output_dir: Path):
        provider = stub(ProviderTimeout("slow"))
        generator = make_generator(provider)

        with pytest.raises(NetworkFailure) as exc_info:
            await generator.generate("ERC20", output_dir=output_dir)

        assert exc_info.value.stage == "requesting"
        assert exc_info.value.attempts == 3
        assert len(provider.calls) == 3
        assert not output_dir.exists()
        assert generator.registry.in_flight() == set()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auth_error_fails_fast(self, stub, make_generator):
        provider = stub(AuthError("bad key"))
        with pytest.raises(AuthError) as exc_info:
            await make_generator(provider).generate("ERC20")
        assert exc_info.value.stage == "requesting"
        assert len(provider.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_existing_project_collides(self, stub, make_generator, erc721_output: str, output_dir: Path):
        existing = output_dir / "ERC721Contract"
        existing.mkdir(parents=True)
        session = make_generator(stub(erc721_output)).session()

        with pytest.raises(CollisionError) as exc_info:
            await session.run(GenerationRequest(description="ERC721", output_dir=output_dir))

        assert exc_info.value.stage == "scaffolding"
        assert list(existing.iterdir()) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_write_failure_tagged(self, stub, make_generator, erc20_output: str, output_dir: Path, monkeypatch):
        generator = make_generator(stub(erc20_output))

        def _boom(*args, **kwargs):
            raise OSError("no space left on device")

        monkeypatch.setattr(generator.scaffolder.renderer, "render_to_file", _boom)

        with pytest.raises(WriteFailure) as exc_info:
            await generator.generate("token", output_dir=output_dir)

        assert exc_info.value.stage == "scaffolding"
        assert list(output_dir.iterdir()) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_printed_when_verbose(self, stub, make_generator, prose_output: str, capsys):
        with pytest.raises(NoContractFound):
            await make_generator(stub(prose_output)).generate("Voting DAO", verbose=True)
        err = capsys.readouterr().err
        assert "FAILED" in err
        assert "NoContractFound during parsing" in err

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_null_ollama_response_fails_in_requesting(self, make_generator, output_dir: Path):
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(
            return_value=httpx.Response(
                200,
                json={"response": None},
                request=httpx.Request("POST", "http://localhost:11434/api/generate"),
            )
        )
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        generator = make_generator(OllamaProvider())
        session = generator.session()

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(ProviderError) as exc_info:
                await session.run(GenerationRequest(description="ERC20", output_dir=output_dir))

        assert exc_info.value.stage == "requesting"
        assert session.state is SessionState.FAILED
        assert session.failed_stage is SessionState.REQUESTING
        assert mock_client.post.await_count == 1
        assert not output_dir.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_foreign_exception_wrapped_with_stage(self, make_generator, output_dir: Path):
        class BrokenProvider:
            async def complete(self, request, timeout: float) -> str:
                raise TypeError("'NoneType' object is not subscriptable")

        generator = make_generator(BrokenProvider())
        session = generator.session()

        with pytest.raises(UnexpectedError) as exc_info:
            await session.run(GenerationRequest(description="ERC20", output_dir=output_dir))

        assert exc_info.value.stage == "requesting"
        assert isinstance(exc_info.value.__cause__, TypeError)
        assert "TypeError" in exc_info.value.message
        assert session.state is SessionState.FAILED
        assert generator.registry.in_flight() == set()


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_in_flight(self, make_generator, erc721_output: str, output_dir: Path):
        provider = GatedProvider(erc721_output)
        generator = make_generator(provider)

        first = asyncio.create_task(generator.generate("ERC721", output_dir=output_dir))
        await provider.started.wait()

        with pytest.raises(DuplicateInFlight) as exc_info:
            await generator.generate("  erc721 ", output_dir=output_dir)
        assert exc_info.value.stage == "idle"

        provider.release.set()
        result = await first
        assert result.contract_name == "ERC721Contract"
        assert provider.calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_repeat_after_completion(self, stub, make_generator, erc721_output: str, output_dir: Path):
        provider = stub(erc721_output)
        generator = make_generator(provider)

        first = await generator.generate("ERC721", output_dir=output_dir)
        with pytest.raises(CollisionError):
            await generator.generate("ERC721", output_dir=output_dir)

        assert len(provider.calls) == 1
        assert first.contract_file.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_different_output_dirs_run_concurrently(self, make_generator, erc721_output: str, tmp_path: Path):
        provider = GatedProvider(erc721_output)
        generator = make_generator(provider)

        tasks = [
            asyncio.create_task(generator.generate("ERC721", output_dir=tmp_path / "a")),
            asyncio.create_task(generator.generate("ERC721", output_dir=tmp_path / "b")),
        ]
        await asyncio.sleep(0)
        provider.release.set()
        results = await asyncio.gather(*tasks)

        assert {r.project_path for r in results} == {
            tmp_path / "a" / "ERC721Contract",
            tmp_path / "b" / "ERC721Contract",
        }
        assert provider.calls == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_path_only_one_wins(self, make_generator, output_dir: Path):
        provider = GatedProvider(BALLOT_OUTPUT)
        generator = make_generator(provider)

        tasks = [
            asyncio.create_task(generator.generate("Voting DAO", output_dir=output_dir)),
            asyncio.create_task(generator.generate("Ballot box", output_dir=output_dir)),
        ]
        await asyncio.sleep(0)
        provider.release.set()
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results = [o for o in outcomes if isinstance(o, GenerationResult)]
        errors = [o for o in outcomes if isinstance(o, CollisionError)]
        assert len(results) == 1
        assert len(errors) == 1
        assert results[0].project_path == output_dir / "Ballot"
        assert [p.name for p in output_dir.iterdir()] == ["Ballot"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_while_requesting(self, make_generator, erc721_output: str, output_dir: Path):
        provider = GatedProvider(erc721_output)
        generator = make_generator(provider)
        session = generator.session()

        task = asyncio.create_task(
            session.run(GenerationRequest(description="ERC721", output_dir=output_dir))
        )
        await provider.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state is SessionState.FAILED
        assert session.failed_stage is SessionState.REQUESTING
        assert generator.registry.in_flight() == set()
        assert not output_dir.exists()


class TestSessionWiring:
    @pytest.mark.unit
    def test_sessions_share_registry(self, stub, make_generator):
        generator = make_generator(stub("x"))
        a, b = generator.session(), generator.session()
        assert isinstance(a, GenerationSession)
        assert a is not b
        assert a.registry is b.registry is generator.registry


class TestVerboseRename:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rename_reported(self, stub, make_generator, hyphenated_output: str, capsys):
        await make_generator(stub(hyphenated_output)).generate("NFT Treasury", verbose=True)
        err = capsys.readouterr().err
        assert "Renamed contract 'NFT-Treasury' to 'NFTTreasury'" in err
