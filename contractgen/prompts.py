"""Prompt construction for contract generation."""

from __future__ import annotations

from contractgen.parser.models import Archetype

SOLIDITY_VERSION = "^0.8.19"

_ARCHETYPE_GUIDANCE: dict[Archetype, str] = {
    Archetype.ERC20: "- Implement a fungible token following ERC-20 exactly (extend OpenZeppelin ERC20)",
    Archetype.ERC721: "- Implement a non-fungible token following ERC-721 exactly (extend OpenZeppelin ERC721)",
    Archetype.GENERIC: "",
    Archetype.UNKNOWN: "",
}


def build_prompt(description: str, contract_name: str, archetype: Archetype = Archetype.UNKNOWN) -> str:
    """Return the prompt asking the model for a single Solidity contract.

    The contract name is fixed up front so the model's declaration, the file
    name and the deploy script can all agree on it.
    """
    lines = [
        f'Write a Solidity smart contract for: "{description.strip()}"',
        "",
        "REQUIREMENTS:",
        f"- Contract name: {contract_name}",
        f"- Solidity version: {SOLIDITY_VERSION}",
        "- Use OpenZeppelin npm imports: @openzeppelin/contracts/...",
        "- Include an SPDX license identifier",
        "- Include proper events, modifiers, and error handling",
        "- Production-ready code only, with comments",
    ]
    guidance = _ARCHETYPE_GUIDANCE[archetype]
    if guidance:
        lines.append(guidance)
    lines.extend([
        "",
        f"Declare exactly one top-level contract named {contract_name}.",
        "RETURN ONLY THE SOLIDITY CODE IN A SINGLE ```solidity BLOCK - NO EXPLANATIONS:",
    ])
    return "\n".join(lines)
