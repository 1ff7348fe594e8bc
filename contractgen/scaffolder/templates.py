"""Jinja2 rendering for the generated contract projects.

:class:`TemplateRenderer` loads the ``.j2`` files shipped in
``contractgen/scaffolder/templates/``:

* ``scripts/deploy.js.j2`` and ``tests/contract.test.js.j2`` -- the Hardhat
  deploy script and Mocha test stub written next to every contract.
* ``contracts/*.sol.j2`` -- archetype contracts used by the offline provider.

Every template sees the sanitized ``contract_name``; the project templates
also get ``constructor_params`` and ``archetype``.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

_BUILTIN_TEMPLATES = Path(__file__).parent / "templates"
_CONTRACT_TYPE_PATTERN = re.compile(r"[A-Z][\w$]*")


class TemplateRenderer:
    """Renders contract, deploy-script and test-stub templates.

    Undefined variables raise ``jinja2.UndefinedError`` so a missing contract
    name can never render as an empty identifier.
    """

    def __init__(self, template_dir: str | Path | None = None) -> None:
        self.template_dir = Path(template_dir) if template_dir is not None else _BUILTIN_TEMPLATES
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters.update(
            js_string=_js_string_filter,
            symbol=_symbol_filter,
            js_placeholder=_js_placeholder_filter,
        )

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render *template_path* (relative to ``template_dir``) with *context*."""
        return self.env.get_template(template_path).render(**context)

    def render_to_file(
        self,
        template_path: str,
        output_path: str | Path,
        context: dict[str, Any],
    ) -> Path:
        """Render *template_path* into *output_path*, creating its directory.

        Returns:
            The written path.
        """
        target = Path(output_path)
        rendered = self.render(template_path, context)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(rendered, encoding="utf-8")
        return target


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def _js_string_filter(value: str) -> str:
    """Quote *value* as a JavaScript string literal."""
    return json.dumps(value)


def _symbol_filter(value: str) -> str:
    """Derive a short ticker symbol: ``NFTTreasury`` -> ``NFTT``."""
    capitals = re.sub(r"[^A-Z]", "", value)
    return (capitals or value.upper())[:5] or "TKN"


def _js_placeholder_filter(param: Any, contract_name: str = "") -> str:
    """Return a JavaScript placeholder literal for a constructor parameter.

    *param* is a ``ConstructorParam`` (anything with ``type`` and ``name``).
    """
    sol_type = param.type
    name = (param.name or "").lstrip("_").lower()
    if sol_type.endswith("]"):
        return "[]"
    if sol_type == "string":
        if "symbol" in name:
            return _js_string_filter(_symbol_filter(contract_name))
        return _js_string_filter(contract_name or "Contract")
    if sol_type.startswith("address"):
        return "deployer.address"
    if sol_type == "bool":
        return "false"
    if sol_type.startswith("bytes"):
        return "hre.ethers.ZeroHash" if sol_type == "bytes32" else '"0x"'
    if sol_type.startswith(("uint", "int")):
        if "decimal" in name:
            return "18"
        if "supply" in name:
            return "1000000"
        return "0"
    if _CONTRACT_TYPE_PATTERN.fullmatch(sol_type):
        # Contract and interface parameters take an address in ethers.
        return "deployer.address"
    return "undefined"
