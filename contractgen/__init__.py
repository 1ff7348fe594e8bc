"""contractgen -- turn a short description into a Solidity contract project.

Quick usage::

    from contractgen import Config, ContractGenerator

    generator = ContractGenerator(Config())
    result = await generator.generate("NFT Treasury", credential=api_key)
"""

from contractgen.config import Config
from contractgen.errors import GenerationError
from contractgen.naming import sanitize
from contractgen.scaffolder import GenerationResult
from contractgen.session import ContractGenerator, GenerationRequest, GenerationSession

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ContractGenerator",
    "GenerationError",
    "GenerationRequest",
    "GenerationResult",
    "GenerationSession",
    "sanitize",
]
