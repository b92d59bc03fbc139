"""``llamaup list``: show published binaries per version and SM."""

from __future__ import annotations

import json

import typer

from llamaup.cli import common
from llamaup.cli.render import release_rows_table

_ALL_RELEASES = 10


def list_cmd(
    ctx: typer.Context,
    repo: str = typer.Option(None, "--repo", help="owner/name to list."),
    version: str = typer.Option("latest", "--version", help="Release tag."),
    all_releases: bool = typer.Option(
        False, "--all", help=f"Show the last {_ALL_RELEASES} releases."
    ),
    sm: str = typer.Option(None, "--sm", help="Only show this SM version."),
    json_output: bool = typer.Option(False, "--json", help="Print rows as JSON."),
) -> None:
    """List available pre-built binaries."""
    config = common.get_config(ctx)
    with common.handle_errors():
        client = common.make_client(config, repo)
        if all_releases:
            releases = client.fetch_releases(_ALL_RELEASES)
        else:
            releases = [client.fetch_release(version)]
        rows = client.rows(releases, common.load_table(config), sm_filter=sm)

    if json_output:
        typer.echo(json.dumps([row.as_json() for row in rows], indent=2))
        return
    if not rows:
        common.console.print(f"[dim]No binaries found in {client.repo}.[/dim]")
        return
    title = f"{client.repo}: last {len(releases)} releases" if all_releases else (
        f"{client.repo}: {releases[0].tag}"
    )
    common.console.print(release_rows_table(rows, title))
