"""Project scaffolding with collision and atomicity guarantees.

Takes a :class:`~contractgen.parser.ParsedContract` and a sanitized name and
materializes::

    <output_dir>/<Name>/
      contracts/<Name>.sol
      scripts/deploy-<Name>.js
      tests/<Name>.test.js        (optional)

Everything is written into a hidden staging directory next to the final
project path and promoted with a single ``os.rename``. On any failure the
staging directory is removed, so the final path either holds the complete
project or does not exist.
"""

from __future__ import annotations

import contextlib
import errno
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from contractgen.errors import CollisionError, GenerationError, InvalidIdentifier, WriteFailure
from contractgen.naming import validate_identifier
from contractgen.parser.models import ParsedContract

from .templates import TemplateRenderer


# ---------------------------------------------------------------------------
# Artifact naming
# ---------------------------------------------------------------------------

CONTRACT_EXT = "sol"
SCRIPT_EXT = "js"

DEPLOY_TEMPLATE = "scripts/deploy.js.j2"
TEST_TEMPLATE = "tests/contract.test.js.j2"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ProjectLayout(BaseModel):
    """Paths of one generated project, derived from ``output_dir / name``."""

    model_config = ConfigDict(frozen=True)

    root: Path
    contracts_dir: Path
    scripts_dir: Path
    tests_dir: Path

    @classmethod
    def for_project(cls, output_dir: str | Path, name: str) -> "ProjectLayout":
        root = Path(output_dir) / name
        return cls(
            root=root,
            contracts_dir=root / "contracts",
            scripts_dir=root / "scripts",
            tests_dir=root / "tests",
        )

    @property
    def name(self) -> str:
        return self.root.name

    def contract_file(self, base: Path | None = None) -> Path:
        return (base or self.root) / "contracts" / f"{self.name}.{CONTRACT_EXT}"

    def deploy_script_file(self, base: Path | None = None) -> Path:
        return (base or self.root) / "scripts" / f"deploy-{self.name}.{SCRIPT_EXT}"

    def test_file(self, base: Path | None = None) -> Path:
        return (base or self.root) / "tests" / f"{self.name}.test.{SCRIPT_EXT}"


class GenerationResult(BaseModel):
    """Descriptor of a successfully generated project."""

    model_config = ConfigDict(frozen=True)

    project_path: Path
    contract_file: Path
    deploy_script_file: Path
    test_file: Path | None = Field(default=None)
    contract_name: str


# ---------------------------------------------------------------------------
# Scaffolder
# ---------------------------------------------------------------------------


class ProjectScaffolder:
    """Writes the contract, deploy script and test stub for one result.

    Attributes:
        renderer: Jinja2 renderer for the script templates.
        include_tests: Whether ``tests/<Name>.test.js`` is generated.
    """

    def __init__(
        self,
        renderer: TemplateRenderer | None = None,
        include_tests: bool = True,
    ) -> None:
        self.renderer = renderer or TemplateRenderer()
        self.include_tests = include_tests

    def _build_context(self, parsed: ParsedContract, name: str) -> dict[str, Any]:
        """Template context. Only the sanitized *name* is ever exposed."""
        return {
            "contract_name": name,
            "constructor_params": list(parsed.constructor_params),
            "archetype": parsed.detected_archetype.value,
        }

    def _write_tree(self, layout: ProjectLayout, staging: Path, parsed: ParsedContract) -> None:
        """Write every artifact below *staging* using the final layout's names."""
        context = self._build_context(parsed, layout.name)

        contract_path = layout.contract_file(staging)
        contract_path.parent.mkdir(parents=True)
        contract_path.write_text(parsed.source_body, encoding="utf-8")

        self.renderer.render_to_file(DEPLOY_TEMPLATE, layout.deploy_script_file(staging), context)

        if self.include_tests:
            self.renderer.render_to_file(TEST_TEMPLATE, layout.test_file(staging), context)

    @staticmethod
    def _promote(staging: Path, root: Path) -> None:
        """Move the staged tree to *root* in one rename.

        ``os.mkdir`` claims *root* first and fails if anything is already
        there, so the rename only ever replaces the empty directory created
        here. A rename that still finds *root* occupied is a collision.
        """
        try:
            os.mkdir(root)
        except FileExistsError as exc:
            raise CollisionError(root, "appeared while staging") from exc
        try:
            os.rename(staging, root)
        except OSError as exc:
            # Only succeeds if root is still the empty claim.
            with contextlib.suppress(OSError):
                os.rmdir(root)
            if exc.errno in (errno.EEXIST, errno.ENOTEMPTY):
                raise CollisionError(root, "appeared while staging") from exc
            raise

    def materialize(
        self,
        layout: ProjectLayout,
        parsed: ParsedContract,
        sanitized_name: str,
    ) -> GenerationResult:
        """Materialize the project described by *layout*.

        Args:
            layout: Target paths; ``layout.root`` must be named *sanitized_name*.
            parsed: Parsed contract whose source already declares *sanitized_name*.
            sanitized_name: Output of :func:`contractgen.naming.sanitize`.

        Returns:
            A :class:`GenerationResult` pointing at the promoted files.

        Raises:
            InvalidIdentifier: *sanitized_name* is not a valid identifier or
                does not match the layout.
            CollisionError: ``layout.root`` already exists.
            WriteFailure: Staging or promotion failed; nothing was left behind.
        """
        validate_identifier(sanitized_name)
        if layout.name != sanitized_name:
            raise InvalidIdentifier(layout.name)

        if layout.root.exists():
            raise CollisionError(layout.root)

        parent = layout.root.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
            staging = Path(
                tempfile.mkdtemp(prefix=f".{sanitized_name}.", suffix=".staging", dir=parent)
            )
        except OSError as exc:
            raise WriteFailure(f"Cannot prepare staging area in {parent}: {exc}") from exc

        try:
            self._write_tree(layout, staging, parsed)
            self._promote(staging, layout.root)
        except GenerationError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        except Exception as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise WriteFailure(f"Failed to write project {sanitized_name}: {exc}") from exc

        return GenerationResult(
            project_path=layout.root,
            contract_file=layout.contract_file(),
            deploy_script_file=layout.deploy_script_file(),
            test_file=layout.test_file() if self.include_tests else None,
            contract_name=sanitized_name,
        )
