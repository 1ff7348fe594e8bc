"""Pydantic v2 models for parsed model output."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Archetype(str, Enum):
    """Recognised contract category. Only ever used as a hint."""
    ERC20 = "ERC20"
    ERC721 = "ERC721"
    GENERIC = "Generic"
    UNKNOWN = "Unknown"


class ConstructorParam(BaseModel):
    """A single constructor parameter of the selected contract."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Solidity type, e.g. 'uint256' or 'string'")
    name: str = Field(default="", description="Parameter name, may be empty")


class ParsedContract(BaseModel):
    """Contract name and source extracted from raw model output."""

    model_config = ConfigDict(frozen=True)

    candidate_name: str = Field(..., description="Name as declared by the model")
    source_body: str = Field(..., description="Minimal source span with headers")
    detected_archetype: Archetype = Field(default=Archetype.UNKNOWN)
    constructor_params: tuple[ConstructorParam, ...] = Field(default=())
    header_synthesized: bool = Field(
        default=False, description="Whether SPDX/pragma lines were added"
    )

    @field_validator("source_body")
    @classmethod
    def _body_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("source_body must not be empty")
        return value
