"""Console output for contractgen.

Two rich consoles: ``console`` (stdout) for the artifact summary and success
line, ``err_console`` (stderr) for errors and ``--verbose`` stage rules, so
stdout stays clean enough to pipe.
"""

from __future__ import annotations

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

STAGE_COLORS: dict[str, str] = {
    "requesting": "bright_cyan",
    "parsing": "bright_yellow",
    "sanitizing": "bright_magenta",
    "scaffolding": "bright_green",
    "completed": "bright_blue",
    "failed": "bright_red",
}


def format_duration(seconds: float) -> str:
    """Render elapsed time: ``3.7`` -> ``"3.7s"``, ``65.2`` -> ``"1m 5s"``."""
    if seconds < 0:
        return "0.0s"
    minutes, rest = divmod(seconds, 60)
    if minutes:
        return f"{int(minutes)}m {int(rest)}s"
    return f"{rest:.1f}s"


def print_stage(stage: str, detail: str = "") -> None:
    """Print a coloured rule announcing *stage* on stderr."""
    color = STAGE_COLORS.get(stage, "white")
    title = f"[bold {color}] {stage.upper()} [/bold {color}]"
    if detail:
        title += f" [dim]{detail}[/dim]"
    err_console.print(Rule(title, style=color))


def print_summary_table(rows: dict[str, str], title: str = "Summary") -> None:
    """Print generated artifacts as a two-column table on stdout."""
    table = Table(title=title, header_style="bold cyan")
    table.add_column("Artifact", style="dim", no_wrap=True)
    table.add_column("Value", overflow="fold")
    for label, value in rows.items():
        table.add_row(label, str(value))
    console.print(table)


def print_success(message: str) -> None:
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Errors always go to stderr."""
    err_console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    err_console.print(f"[bold yellow]{message}[/bold yellow]")
