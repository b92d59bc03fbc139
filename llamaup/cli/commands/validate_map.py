"""``llamaup validate-map``: report cross-family pattern overlaps."""

from __future__ import annotations

from pathlib import Path

import typer

from llamaup.cli import common
from llamaup.cli.render import overlap_table
from llamaup.core.resolver import validate_patterns


def validate_map_cmd(
    ctx: typer.Context,
    gpu_map: Path = typer.Option(None, "--gpu-map", help="Path to a gpu_map.json."),
) -> None:
    """Load the pattern table and list every ambiguous cross-family pattern.

    Overlaps are warnings: longest-match resolution still picks one answer,
    so this command exits 0 whenever the table loads.
    """
    config = common.get_config(ctx)
    with common.handle_errors():
        table = common.load_table(config, gpu_map)
        overlaps = validate_patterns(table)

    common.console.print(
        f"[bold]{len(table.families)}[/bold] families, "
        f"[bold]{len(table.patterns())}[/bold] patterns, "
        f"SM versions: {', '.join(table.sm_versions)}"
    )
    if not overlaps:
        common.console.print("[green]No cross-family pattern overlaps.[/green]")
        return
    common.console.print(overlap_table(overlaps))
    common.console.print(
        f"[yellow]{len(overlaps)} overlap(s).[/yellow] The longer pattern wins "
        "whenever both match."
    )
