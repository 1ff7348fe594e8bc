"""Shared pytest fixtures for the contractgen test suite.

Provides reusable fixtures for:
- Realistic raw model outputs (fenced, chatty, headerless, broken)
- A deterministic stub provider standing in for the network
- Fast retry settings and ready-made clients/generators
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from contractgen.client import GenerationClient
from contractgen.config import Config, ProviderConfig, RetryConfig
from contractgen.errors import GenerationError
from contractgen.providers import ProviderRequest
from contractgen.session import ContractGenerator, SessionRegistry


# ---------------------------------------------------------------------------
# Raw model outputs
# ---------------------------------------------------------------------------

ERC721_SOURCE = textwrap.dedent("""\
    // SPDX-License-Identifier: MIT
    pragma solidity ^0.8.19;

    import "@openzeppelin/contracts/token/ERC721/ERC721.sol";
    import "@openzeppelin/contracts/access/Ownable.sol";

    contract ERC721Contract is ERC721, Ownable {
        uint256 private _tokenIdCounter;

        constructor() ERC721("ERC721Contract", "NFT") Ownable(msg.sender) {}

        function mint(address to) public onlyOwner {
            uint256 tokenId = _tokenIdCounter;
            _tokenIdCounter++;
            _safeMint(to, tokenId);
        }
    }
""")

ERC20_SOURCE = textwrap.dedent("""\
    // SPDX-License-Identifier: MIT
    pragma solidity ^0.8.19;

    import "@openzeppelin/contracts/token/ERC20/ERC20.sol";

    contract TokenContract is ERC20 {
        constructor(string memory _name, string memory _symbol, uint256 _initialSupply) ERC20(_name, _symbol) {
            _mint(msg.sender, _initialSupply);
        }
    }
""")

HYPHENATED_SOURCE = textwrap.dedent("""\
    pragma solidity ^0.8.19;

    contract NFT-Treasury {
        address public owner;

        constructor(address _owner) {
            owner = _owner;
        }

        receive() external payable {}
    }
""")


def fenced(source: str, tag: str = "solidity") -> str:
    """Wrap *source* the way chat models usually answer."""
    return f"Here is the contract you asked for:\n\n```{tag}\n{source}```\n\nLet me know if you need changes!"


@pytest.fixture
def erc721_output() -> str:
    return fenced(ERC721_SOURCE)


@pytest.fixture
def erc20_output() -> str:
    return fenced(ERC20_SOURCE)


@pytest.fixture
def hyphenated_output() -> str:
    return fenced(HYPHENATED_SOURCE)


@pytest.fixture
def prose_output() -> str:
    """A completion with no contract declaration at all."""
    return (
        "I'm sorry, but I can't write that contract without more details. "
        "Could you describe the treasury rules you need?"
    )


# ---------------------------------------------------------------------------
# Stub provider
# ---------------------------------------------------------------------------

class StubProvider:
    """Deterministic provider: replays scripted answers and records calls.

    Each scripted item is either a string (returned) or a ``GenerationError``
    instance (raised). The last item repeats once the script runs out.
    """

    name = "stub"

    def __init__(self, *script: str | GenerationError) -> None:
        self.script = list(script) or [""]
        self.calls: list[ProviderRequest] = []

    async def complete(self, request: ProviderRequest, timeout: float) -> str:
        self.calls.append(request)
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]
        if isinstance(item, GenerationError):
            raise item
        return item


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry settings without real backoff delays."""
    return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def make_client(fast_retry: RetryConfig):
    """Factory: ``make_client(provider)`` -> GenerationClient with fast retries."""

    def _make(provider, retry: RetryConfig | None = None) -> GenerationClient:
        return GenerationClient(
            provider,
            retry=retry or fast_retry,
            settings=ProviderConfig(request_timeout=5.0, deadline=30.0),
        )

    return _make


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Output directory for generated projects (auto-cleanup)."""
    return tmp_path / "generated"


@pytest.fixture
def make_generator(output_dir: Path, fast_retry: RetryConfig):
    """Factory: ``make_generator(provider)`` -> ContractGenerator writing to tmp."""

    def _make(provider, registry: SessionRegistry | None = None, **config_kwargs) -> ContractGenerator:
        config = Config(output_dir=output_dir, retry=fast_retry, **config_kwargs)
        return ContractGenerator(config, provider=provider, registry=registry)

    return _make


@pytest.fixture
def erc20_source() -> str:
    return ERC20_SOURCE


@pytest.fixture
def erc721_source() -> str:
    return ERC721_SOURCE


@pytest.fixture
def hyphenated_source() -> str:
    return HYPHENATED_SOURCE


@pytest.fixture
def fence():
    """The ``fenced`` helper, for tests that wrap their own sources."""
    return fenced


@pytest.fixture
def stub():
    """The ``StubProvider`` class: ``stub("answer", ProviderTimeout())``."""
    return StubProvider
