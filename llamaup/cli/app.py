"""Main Typer application: imports and registers all CLI commands.

Entry point: ``llamaup`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import typer

from llamaup.cli.commands.build import build_cmd
from llamaup.cli.commands.detect import detect_cmd
from llamaup.cli.commands.list_cmd import list_cmd
from llamaup.cli.commands.pull import pull_cmd
from llamaup.cli.commands.validate_map import validate_map_cmd
from llamaup.config import load_config
from llamaup.log import configure_logging

app = typer.Typer(
    name="llamaup",
    help="llamaup: pre-built llama.cpp CUDA binaries, one per GPU architecture.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Verbose logging."),
    log_level: str = typer.Option(None, "--log-level", help="Log level (default INFO)."),
) -> None:
    """Load configuration and set up logging for every subcommand."""
    config = load_config(debug=debug or None, log_level=log_level)
    configure_logging(config.effective_log_level, debug=config.debug)
    ctx.obj = config


# Register subcommands
app.command(name="detect", help="Detect GPUs and their SM versions.")(detect_cmd)
app.command(name="validate-map", help="Check gpu_map.json for ambiguous patterns.")(
    validate_map_cmd
)
app.command(name="build", help="Build llama.cpp for one SM and package it.")(build_cmd)
app.command(name="pull", help="Download and install the binary for this GPU.")(pull_cmd)
app.command(name="list", help="List published binaries.")(list_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
