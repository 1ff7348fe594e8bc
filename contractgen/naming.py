"""Identifier sanitization and name inference.

A contract name ends up in three places at once: the ``.sol`` file name and
``contract`` declaration, the JavaScript identifiers of the generated deploy
script and test stub, and a directory name. :func:`sanitize` produces a name
that is valid in all of them simultaneously.

Examples::

    sanitize("NFT-Treasury")  -> "NFTTreasury"
    sanitize("my cool_token") -> "MyCoolToken"
    sanitize("721 drop")      -> "C721Drop"
    contract_name_for("ERC721") -> "ERC721Contract"
"""

from __future__ import annotations

import re

from contractgen.errors import InvalidIdentifier
from contractgen.parser.models import Archetype

MAX_IDENTIFIER_LENGTH = 64
IDENTIFIER_PREFIX = "C"
DEFAULT_CONTRACT_NAME = "MyContract"
CONTRACT_SUFFIX = "Contract"

_WORD_PATTERN = re.compile(r"[A-Za-z0-9]+")
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9]{0,%d}$" % (MAX_IDENTIFIER_LENGTH - 1))

# Keyword hints are checked in order; the first match wins.
_ARCHETYPE_HINTS: list[tuple[Archetype, tuple[str, ...]]] = [
    (Archetype.ERC721, ("erc721", "erc-721", "nft", "collectible")),
    (Archetype.ERC20, ("erc20", "erc-20", "token", "coin")),
]


def sanitize(candidate: str) -> str:
    """Normalise *candidate* into a PascalCase identifier.

    Never raises. Every run of characters outside ``[A-Za-z0-9]`` acts as a
    word separator and is dropped; the first letter of each word is
    upper-cased while the rest of the word keeps its case. The result is
    prefixed with ``"C"`` when empty or starting with a digit and truncated
    to :data:`MAX_IDENTIFIER_LENGTH` characters.
    """
    words = _WORD_PATTERN.findall(candidate or "")
    result = "".join(word[0].upper() + word[1:] for word in words)
    if not result or result[0].isdigit():
        result = IDENTIFIER_PREFIX + result
    return result[:MAX_IDENTIFIER_LENGTH]


def is_valid_identifier(name: str) -> bool:
    """Return ``True`` if *name* is usable in Solidity, JavaScript and paths."""
    return bool(_IDENTIFIER_PATTERN.match(name or ""))


def validate_identifier(name: str) -> str:
    """Return *name* unchanged or raise :class:`InvalidIdentifier`."""
    if not is_valid_identifier(name):
        raise InvalidIdentifier(name)
    return name


def infer_archetype(description: str) -> Archetype:
    """Guess the contract archetype from a free-form description.

    Only a hint for prompt construction and offline templates; ``UNKNOWN``
    when nothing matches.
    """
    lower = (description or "").lower()
    for archetype, keywords in _ARCHETYPE_HINTS:
        if any(keyword in lower for keyword in keywords):
            return archetype
    return Archetype.UNKNOWN


def contract_name_for(description: str) -> str:
    """Derive the contract name requested from the model for *description*."""
    if not _WORD_PATTERN.search(description or ""):
        return DEFAULT_CONTRACT_NAME
    base = sanitize(description)
    if CONTRACT_SUFFIX.lower() in base.lower():
        return base
    return sanitize(base[: MAX_IDENTIFIER_LENGTH - len(CONTRACT_SUFFIX)] + CONTRACT_SUFFIX)
