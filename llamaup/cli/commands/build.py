"""``llamaup build``: compile, package and optionally publish one SM archive.

Re-running for an archive that already exists and verifies is a no-op apart
from the optional upload.
"""

from __future__ import annotations

from pathlib import Path

import typer

from llamaup.cli import common
from llamaup.cli.render import build_plan_panel, build_result_panel
from llamaup.core.artifact_store import LocalArtifactStore
from llamaup.core.builder import BuildOrchestrator
from llamaup.core.hardware import NvidiaSmiInventory
from llamaup.core.toolchain import CMakeToolchain
from llamaup.models.build import BuildRequest


def build_cmd(
    ctx: typer.Context,
    sm: str = typer.Option(None, "--sm", help="Target SM version (default: detect)."),
    version: str = typer.Option("latest", "--version", help="llama.cpp release tag."),
    cuda: str = typer.Option(None, "--cuda", help="CUDA version (default: from nvcc)."),
    output: Path = typer.Option(None, "--output", "-o", help="Output directory."),
    upload: bool = typer.Option(False, "--upload", help="Publish to a GitHub release."),
    repo: str = typer.Option(None, "--repo", help="owner/name for --upload."),
    jobs: int = typer.Option(None, "--jobs", "-j", min=1, help="Parallel build jobs."),
    src_dir: Path = typer.Option(None, "--src-dir", help="llama.cpp checkout directory."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the plan and exit."),
    gpu_map: Path = typer.Option(None, "--gpu-map", help="Path to a gpu_map.json."),
) -> None:
    """Build llama.cpp for one GPU architecture and package it."""
    config = common.get_config(ctx)
    with common.handle_errors():
        table = common.load_table(config, gpu_map)
        toolchain = CMakeToolchain(git_url=config.upstream_git_url)
        orchestrator = BuildOrchestrator(
            table,
            toolchain,
            LocalArtifactStore(output or config.output_dir),
            naming=common.naming_from(config),
            work_dir=config.work_dir,
            inventory=NvidiaSmiInventory(),
            upstream=common.make_upstream(config),
            client=common.make_client(config, repo) if upload else None,
        )
        request_fields = {
            "version": version,
            "sm": sm,
            "toolchain_version": cuda,
            "src_dir": src_dir or config.src_dir,
            "publish": upload,
        }
        if jobs is not None:
            request_fields["jobs"] = jobs
        request = BuildRequest(**request_fields)

        if dry_run:
            common.console.print(build_plan_panel(orchestrator.plan(request)))
            return

        result = orchestrator.run(request)

    common.console.print(build_result_panel(result))
