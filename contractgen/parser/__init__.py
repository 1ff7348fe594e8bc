"""Extraction of contract sources from raw generative-model output.

Usage::

    from contractgen.parser import parse

    parsed = parse(raw_text, expected_name="ERC721Contract")
    print(parsed.candidate_name)
    print(parsed.source_body)
"""

from contractgen.parser.models import (
    Archetype,
    ConstructorParam,
    ParsedContract,
)
from contractgen.parser.extractor import parse, rename_contract

__all__ = [
    "parse",
    "rename_contract",
    "Archetype",
    "ConstructorParam",
    "ParsedContract",
]
