"""llamaup CLI: Typer-based command-line interface.

Provides the ``llamaup`` command with subcommands for GPU detection,
pattern table validation, building, pulling and listing release binaries.

All output uses Rich for formatted terminal display.
"""
