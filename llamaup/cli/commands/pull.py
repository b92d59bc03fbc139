"""``llamaup pull``: download, verify and install the binary for this GPU."""

from __future__ import annotations

from pathlib import Path

import typer

from llamaup.cli import common
from llamaup.cli.render import (
    DownloadProgress,
    assets_table,
    install_plan_panel,
    install_result_panel,
)
from llamaup.core.hardware import NvidiaSmiInventory
from llamaup.core.installer import Installer
from llamaup.core.resolver import require, resolve_explicit
from llamaup.models.install import InstallLayout


def pull_cmd(
    ctx: typer.Context,
    version: str = typer.Option("latest", "--version", help="Release tag to install."),
    repo: str = typer.Option(None, "--repo", help="owner/name to pull from."),
    sm: str = typer.Option(None, "--sm", help="SM version (default: detect)."),
    dev_sm: str = typer.Option(
        None,
        "--dev-sm",
        help="Force an SM without table validation; implies --force.",
        hidden=True,
    ),
    install_dir: Path = typer.Option(None, "--install-dir", help="Base install path."),
    list_assets: bool = typer.Option(False, "--list", help="List the release's binaries."),
    force: bool = typer.Option(False, "--force", help="Reinstall even if present."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the plan and exit."),
    gpu_map: Path = typer.Option(None, "--gpu-map", help="Path to a gpu_map.json."),
) -> None:
    """Install the pre-built llama.cpp binary matching this machine's GPU."""
    config = common.get_config(ctx)
    with common.handle_errors():
        client = common.make_client(config, repo)

        if list_assets:
            common.console.print(assets_table(client.fetch_release(version)))
            return

        if dev_sm:
            target_sm = dev_sm
            force = True
        elif sm:
            target_sm = resolve_explicit(sm, common.load_table(config, gpu_map)).sm
        elif dry_run:
            target_sm = "<detected>"
        else:
            descriptor = NvidiaSmiInventory().descriptors()[0]
            target_sm = require(descriptor, common.load_table(config, gpu_map)).sm
            common.console.print(f"Detected [bold]{descriptor}[/bold] -> SM {target_sm}")

        layout = InstallLayout(install_dir=(install_dir or config.install_dir).expanduser())
        installer = Installer(client, layout, entry_points=config.entry_points)

        if dry_run:
            common.console.print(install_plan_panel(installer.plan(target_sm, version)))
            return

        with DownloadProgress(common.console) as progress:
            result = installer.install(target_sm, version, force=force, progress=progress)

    if result.already_installed:
        common.console.print(
            f"[yellow]Already installed at {result.path}.[/yellow] "
            "Run with --force to re-download."
        )
        return
    common.console.print(install_result_panel(result, layout.bin_dir))
