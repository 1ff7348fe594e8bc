"""Contract extraction from raw generative-model output.

Model completions arrive as anything from a clean Solidity file to a chatty
answer with one or more Markdown fences. :func:`parse` locates the contract
declaration, cuts out the minimal source span containing it (plus any library
or interface declared after it that it uses), checks that the braces balance
and makes sure the SPDX/pragma header is present. Uses pure
regex and a small brace scanner -- no AI calls.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

from contractgen.errors import MalformedContract, NoContractFound

from .models import Archetype, ConstructorParam, ParsedContract


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SPDX_HEADER = "// SPDX-License-Identifier: MIT"
PRAGMA_HEADER = "pragma solidity ^0.8.19;"
SNIPPET_LENGTH = 200

_FENCE_PATTERN = re.compile(
    r"```[ \t]*([A-Za-z0-9_+-]*)[^\n]*\n(.*?)(?:```|\Z)", re.DOTALL
)
_SOLIDITY_TAGS = {"solidity", "sol"}

# ``contract Name is A, B {`` -- the name is captured loosely (hyphens
# included) so that broken names still reach the sanitizer.
_DECLARATION_PATTERN = re.compile(
    r"^[ \t]*(?:abstract[ \t]+)?contract[ \t]+([A-Za-z_$][\w$-]*)\s*(?:is\s[^{;]*)?\{",
    re.MULTILINE,
)
_TOP_LEVEL_PATTERN = re.compile(
    r"^[ \t]*(?://\s*SPDX-License-Identifier|pragma\s|import\s|"
    r"(?:abstract\s+)?contract\s|interface\s|library\s)",
    re.MULTILINE,
)
# Libraries and interfaces declared after the contract that it may depend on.
_TRAILING_PATTERN = re.compile(
    r"^[ \t]*(?:library|interface)[ \t]+([A-Za-z_$][\w$]*)\s*(?:is\s[^{;]*)?\{",
    re.MULTILINE,
)
_GAP_PATTERN = re.compile(r"(?:\s|//[^\n]*|/\*.*?\*/)*", re.DOTALL)
_PRAGMA_PATTERN = re.compile(r"^[ \t]*pragma\s+solidity\b", re.MULTILINE)
_SPDX_LINE_PATTERN = re.compile(r"^.*SPDX-License-Identifier.*$", re.MULTILINE)
_CONSTRUCTOR_PATTERN = re.compile(r"\bconstructor\s*\(([^)]*)\)")

_ERC721_PATTERN = re.compile(r"\bERC721\w*\b")
_ERC20_PATTERN = re.compile(r"\bERC20\w*\b")
_STORAGE_KEYWORDS = {"memory", "calldata", "storage", "payable", "indexed"}


# ---------------------------------------------------------------------------
# Brace scanning
# ---------------------------------------------------------------------------

def _skip_string(text: str, start: int) -> int:
    """Return the index just past the string literal opening at *start*."""
    quote = text[start]
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == quote or text[i] == "\n":
            return i + 1
        i += 1
    return len(text)


def _iter_braces(text: str, start: int = 0) -> Iterator[tuple[int, str]]:
    """Yield ``(index, brace)`` for braces outside comments and strings."""
    i = start
    length = len(text)
    while i < length:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < length else ""
        if ch == "/" and nxt == "/":
            newline = text.find("\n", i)
            i = length if newline == -1 else newline
            continue
        if ch == "/" and nxt == "*":
            close = text.find("*/", i + 2)
            i = length if close == -1 else close + 2
            continue
        if ch in "\"'":
            i = _skip_string(text, i)
            continue
        if ch in "{}":
            yield i, ch
        i += 1


def _matching_brace(text: str, open_index: int) -> int | None:
    """Return the index of the brace closing the one at *open_index*."""
    depth = 0
    for index, brace in _iter_braces(text, open_index):
        depth += 1 if brace == "{" else -1
        if depth == 0:
            return index
    return None


def _is_balanced(text: str) -> bool:
    depth = 0
    for _, brace in _iter_braces(text):
        depth += 1 if brace == "{" else -1
        if depth < 0:
            return False
    return depth == 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _snippet(raw_text: str) -> str:
    return raw_text.strip()[:SNIPPET_LENGTH]


def _candidate_regions(text: str) -> list[str]:
    """Return the text regions to search, best candidates first.

    Fenced blocks tagged ``solidity``/``sol`` come first, then other fenced
    blocks, then the full text as a last resort.
    """
    tagged: list[str] = []
    untagged: list[str] = []
    for match in _FENCE_PATTERN.finditer(text):
        tag = match.group(1).lower()
        (tagged if tag in _SOLIDITY_TAGS else untagged).append(match.group(2))
    return [*tagged, *untagged, text]


def _select_declaration(
    regions: list[str], expected_name: str | None
) -> tuple[str, re.Match[str]] | None:
    """Pick the declaration to extract.

    A declaration named *expected_name* wins anywhere; otherwise the first
    declaration of the first region that has one.
    """
    first: tuple[str, re.Match[str]] | None = None
    for region in regions:
        for match in _DECLARATION_PATTERN.finditer(region):
            if expected_name and match.group(1) == expected_name:
                return region, match
            if first is None:
                first = (region, match)
    return first


def _span_start(region: str, declaration_start: int) -> int:
    """Start of the first top-level construct at or before the declaration."""
    for match in _TOP_LEVEL_PATTERN.finditer(region, 0, declaration_start + 1):
        return match.start()
    return declaration_start


def _trailing_blocks(region: str, after: int) -> list[tuple[str, int]]:
    """Libraries/interfaces directly following the brace at *after*.

    Returns ``(name, closing_brace_index)`` pairs. Only comments and
    whitespace may sit between blocks; anything else ends the run.
    """
    blocks: list[tuple[str, int]] = []
    pos = after + 1
    while True:
        match = _TRAILING_PATTERN.search(region, pos)
        if match is None or not _GAP_PATTERN.fullmatch(region, pos, match.start()):
            return blocks
        close = _matching_brace(region, match.end() - 1)
        if close is None:
            return blocks
        blocks.append((match.group(1), close))
        pos = close + 1


def _span_end(region: str, declaration_start: int, close_index: int) -> int:
    """Extend the span over trailing libraries/interfaces the contract uses."""
    blocks = _trailing_blocks(region, close_index)
    end = close_index
    while True:
        included = region[declaration_start: end + 1]
        used = [
            block_close
            for name, block_close in blocks
            if block_close > end
            and re.search(r"(?<![\w$])" + re.escape(name) + r"(?![\w$])", included)
        ]
        if not used:
            return end
        end = max(used)


def _ensure_headers(body: str) -> tuple[str, bool]:
    """Add missing SPDX and pragma lines. Returns ``(body, synthesized)``."""
    synthesized = False
    if not _PRAGMA_PATTERN.search(body):
        spdx = _SPDX_LINE_PATTERN.search(body)
        if spdx:
            body = body[: spdx.end()] + "\n" + PRAGMA_HEADER + body[spdx.end():]
        else:
            body = PRAGMA_HEADER + "\n\n" + body
        synthesized = True
    if "SPDX-License-Identifier" not in body:
        body = SPDX_HEADER + "\n" + body
        synthesized = True
    return body, synthesized


def detect_archetype(source: str) -> Archetype:
    """Classify a contract source as ERC721, ERC20 or Generic."""
    if _ERC721_PATTERN.search(source) or (
        "ownerOf(" in source and "tokenURI(" in source
    ):
        return Archetype.ERC721
    if _ERC20_PATTERN.search(source) or all(
        marker in source for marker in ("totalSupply", "balanceOf", "allowance")
    ):
        return Archetype.ERC20
    return Archetype.GENERIC


def extract_constructor_params(contract_block: str) -> tuple[ConstructorParam, ...]:
    """Return the constructor parameters declared in *contract_block*."""
    match = _CONSTRUCTOR_PATTERN.search(contract_block)
    if not match or not match.group(1).strip():
        return ()

    params: list[ConstructorParam] = []
    for raw in match.group(1).split(","):
        tokens = raw.split()
        if not tokens:
            continue
        name = ""
        if len(tokens) > 1 and tokens[-1] not in _STORAGE_KEYWORDS:
            name = tokens[-1]
        params.append(ConstructorParam(type=tokens[0], name=name))
    return tuple(params)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse(raw_text: str, expected_name: str | None = None) -> ParsedContract:
    """Extract the contract name and source from raw model output.

    Args:
        raw_text: Completion text exactly as the provider returned it.
        expected_name: Contract name requested in the prompt. Preferred when
            the output declares several contracts.

    Returns:
        A :class:`ParsedContract` whose ``source_body`` starts with an SPDX
        and pragma header and ends with the selected contract's closing brace,
        or with the last library or interface after it that the contract uses.

    Raises:
        NoContractFound: No ``contract <Name> {`` declaration was located.
        MalformedContract: The braces around the declaration do not balance.
    """
    text = (raw_text or "").replace("\r\n", "\n").replace("\r", "\n")
    selected = _select_declaration(_candidate_regions(text), expected_name)
    if selected is None:
        raise NoContractFound(_snippet(raw_text or ""))

    region, declaration = selected
    candidate_name = declaration.group(1)
    open_index = declaration.end() - 1
    close_index = _matching_brace(region, open_index)
    if close_index is None:
        raise MalformedContract(
            f"Unbalanced braces in contract {candidate_name!r}: {_snippet(region[declaration.start():])!r}"
        )

    start = _span_start(region, declaration.start())
    end = _span_end(region, declaration.start(), close_index)
    body = region[start: end + 1].strip()
    if not _is_balanced(body):
        raise MalformedContract(
            f"Unbalanced braces before contract {candidate_name!r}"
        )

    body, synthesized = _ensure_headers(body)
    contract_block = region[declaration.start(): close_index + 1]

    return ParsedContract(
        candidate_name=candidate_name,
        source_body=body + "\n",
        detected_archetype=detect_archetype(body),
        constructor_params=extract_constructor_params(contract_block),
        header_synthesized=synthesized,
    )


def rename_contract(source: str, old_name: str, new_name: str) -> str:
    """Rewrite the declaration of *old_name* (and ``type(old_name)``) to *new_name*."""
    if old_name == new_name:
        return source
    escaped = re.escape(old_name)
    source = re.sub(
        r"(\bcontract[ \t]+)" + escaped + r"(?![\w$-])", r"\g<1>" + new_name, source
    )
    return re.sub(r"(\btype\(\s*)" + escaped + r"(\s*\))", r"\g<1>" + new_name + r"\g<2>", source)
