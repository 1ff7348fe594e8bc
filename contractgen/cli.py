"""Command-line interface.

Usage::

    contractgen generate "NFT Treasury" --output-dir ./generated --verbose
    contractgen generate ERC721 --provider offline
    python -m contractgen generate "Voting DAO" --api-key "$GROQ_API_KEY"
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import time
from pathlib import Path

from pydantic import SecretStr

from contractgen.config import Config
from contractgen.errors import GenerationError
from contractgen.session import ContractGenerator
from contractgen.utils import (
    err_console,
    format_duration,
    print_error,
    print_success,
    print_summary_table,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contractgen",
        description="Generate a Solidity contract project from a short description",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            '  contractgen generate "NFT Treasury"\n'
            "  contractgen generate ERC20 -o ./projects --provider offline\n"
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate a contract project")
    generate.add_argument("description", help='Contract description, e.g. "NFT Treasury"')
    generate.add_argument(
        "--output-dir", "-o",
        default=None,
        help="Directory the project folder is created in (default: ./generated)",
    )
    generate.add_argument("--verbose", "-v", action="store_true", help="Print stage diagnostics")
    generate.add_argument(
        "--api-key",
        default=None,
        help="Provider API key (default: $GROQ_API_KEY)",
    )
    generate.add_argument(
        "--provider",
        choices=["groq", "ollama", "offline"],
        default=None,
        help="Model provider (default: groq)",
    )
    generate.add_argument("--model", default=None, help="Override the provider model")
    generate.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Overall deadline for the provider call in seconds",
    )
    generate.add_argument(
        "--no-tests",
        action="store_true",
        help="Do not generate tests/<Name>.test.js",
    )
    generate.add_argument("--config", default=None, help="Path to a JSON config file")
    return parser


def _load_config(args: argparse.Namespace) -> Config:
    config = Config.load(Path(args.config)) if args.config else Config.from_env()
    provider = config.provider
    if args.provider:
        provider = provider.model_copy(update={"name": args.provider, "base_url": "", "model": ""})
    if args.model:
        provider = provider.model_copy(update={"model": args.model})
    if args.timeout:
        provider = provider.model_copy(update={"deadline": args.timeout})

    updates: dict = {"provider": provider}
    if args.output_dir:
        updates["output_dir"] = Path(args.output_dir)
    if args.no_tests:
        updates["include_tests"] = False
    return config.model_copy(update=updates)


async def _generate(args: argparse.Namespace, config: Config) -> int:
    api_key = args.api_key or os.environ.get("GROQ_API_KEY")
    generator = ContractGenerator(config)

    started = time.monotonic()
    try:
        result = await generator.generate(
            args.description,
            output_dir=config.output_dir,
            credential=SecretStr(api_key) if api_key else None,
            verbose=args.verbose,
        )
    except GenerationError as exc:
        print_error(f"Contract generation failed: {exc.message}")
        if args.verbose:
            err_console.print(f"  stage: [bold]{exc.stage or 'unknown'}[/bold]")
            err_console.print(f"  kind : [bold]{exc.kind}[/bold]")
        return 1

    rows = {
        "Name": result.contract_name,
        "Project": str(result.project_path),
        "Contract": str(result.contract_file),
        "Deploy script": str(result.deploy_script_file),
    }
    if result.test_file is not None:
        rows["Test file"] = str(result.test_file)
    print_summary_table(rows, title="Generated project")
    print_success(f"Contract generated in {format_duration(time.monotonic() - started)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for ``contractgen`` and ``python -m contractgen``."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
    except (OSError, ValueError) as exc:
        print_error(f"Invalid configuration: {exc}")
        return 2

    return asyncio.run(_generate(args, config))


if __name__ == "__main__":
    sys.exit(main())
