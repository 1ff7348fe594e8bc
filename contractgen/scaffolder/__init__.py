"""contractgen scaffolder -- writes generated contracts to disk.

Quick usage::

    from contractgen.scaffolder import ProjectLayout, ProjectScaffolder

    layout = ProjectLayout.for_project("./generated", "NFTTreasury")
    result = ProjectScaffolder().materialize(layout, parsed, "NFTTreasury")
"""

from contractgen.scaffolder.generator import GenerationResult, ProjectLayout, ProjectScaffolder
from contractgen.scaffolder.templates import TemplateRenderer

__all__ = [
    "GenerationResult",
    "ProjectLayout",
    "ProjectScaffolder",
    "TemplateRenderer",
]
