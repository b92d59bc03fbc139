"""Rich renderers for CLI output.

Colour scheme
-------------
- green  : known GPU, successful build / install
- yellow : unknown GPU, skipped work, warnings
- cyan   : paths and commands to copy
"""

from __future__ import annotations

from pathlib import Path
from types import TracebackType

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from llamaup.models.artifacts import Release, ReleaseRow
from llamaup.models.build import BuildPlan, BuildResult
from llamaup.models.gpu import DetectReport, PatternOverlap
from llamaup.models.install import InstallPlan, InstallResult


# ---------------------------------------------------------------------------
# detect / validate-map
# ---------------------------------------------------------------------------


def detect_table(report: DetectReport) -> Table:
    table = Table(title="Detected GPUs")
    table.add_column("#", justify="right", style="dim")
    table.add_column("GPU", style="bold")
    table.add_column("SM")
    table.add_column("Architecture")
    table.add_column("Min CUDA")
    for index, gpu in enumerate(report.gpus):
        sm = f"[green]{gpu.sm}[/green]" if gpu.sm else "[yellow]unknown[/yellow]"
        table.add_row(str(index), gpu.name, sm, gpu.architecture, gpu.cuda_min)
    return table


def print_detect_report(console: Console, report: DetectReport) -> None:
    console.print(detect_table(report))
    console.print(f"  CUDA toolkit : {report.cuda_toolkit}")
    console.print(f"  Driver       : {report.driver}")
    if not report.all_known:
        console.print(
            "\n[yellow]Some GPUs are not in the pattern table.[/yellow] "
            "Pass [cyan]--sm <version>[/cyan] to build or pull manually, "
            "or add the GPU name to gpu_map.json."
        )


def overlap_table(overlaps: list[PatternOverlap]) -> Table:
    table = Table(title="Cross-family pattern overlaps")
    table.add_column("Shorter pattern", style="yellow")
    table.add_column("SM")
    table.add_column("Contained in", style="bold")
    table.add_column("SM")
    for o in overlaps:
        table.add_row(o.shorter, o.shorter_sm, o.longer, o.longer_sm)
    return table


# ---------------------------------------------------------------------------
# build
# ---------------------------------------------------------------------------


def build_plan_panel(plan: BuildPlan) -> Panel:
    lines = [
        f"[bold]llama.cpp version :[/bold] {plan.version}",
        f"[bold]SM version        :[/bold] {plan.sm}",
        f"[bold]CUDA version      :[/bold] {plan.toolchain_version}",
        f"[bold]Source dir        :[/bold] {plan.src_dir}",
        f"[bold]Build jobs        :[/bold] {plan.jobs}",
        f"[bold]Output dir        :[/bold] {plan.output_dir}",
        f"[bold]Archive name      :[/bold] {plan.archive_name}",
    ]
    if plan.publish_repo:
        lines.append(f"[bold]Upload to         :[/bold] {plan.publish_repo}")
    lines += ["", "Steps that would run:"]
    lines += [f"  {i}. {step}" for i, step in enumerate(plan.steps, start=1)]
    return Panel(
        "\n".join(lines),
        title="[bold]llamaup build: DRY RUN[/bold]",
        border_style="cyan",
        padding=(1, 2),
    )


def build_result_panel(result: BuildResult) -> Panel:
    art = result.artifact
    headline = (
        "[bold yellow]Cached archive verified; build skipped.[/bold yellow]"
        if result.skipped
        else "[bold green]Build complete![/bold green]"
    )
    lines = [
        headline,
        "",
        f"[bold]Archive:[/bold] [cyan]{art.path}[/cyan]",
        f"[bold]SHA256:[/bold]  {art.sha256}",
        f"[bold]Size:[/bold]    {art.size_bytes / 1048576:.1f} MB",
        f"[bold]States:[/bold]  {' -> '.join(s.value for s in result.states)}",
    ]
    if result.published:
        lines.append(f"[bold]Release:[/bold] [cyan]{result.release_url}[/cyan]")
    return Panel(
        "\n".join(lines),
        title=f"[bold]llama.cpp {result.inputs.version} / SM {result.inputs.sm}[/bold]",
        border_style="yellow" if result.skipped else "green",
        padding=(1, 2),
    )


# ---------------------------------------------------------------------------
# pull
# ---------------------------------------------------------------------------


def install_plan_panel(plan: InstallPlan) -> Panel:
    lines = [
        f"[bold]Repo          :[/bold] {plan.repo}",
        f"[bold]Version       :[/bold] {plan.version}",
        f"[bold]SM version    :[/bold] {plan.sm}",
        f"[bold]Install dir   :[/bold] {plan.install_dir}",
        "",
        "Steps that would run:",
    ]
    lines += [f"  {i}. {step}" for i, step in enumerate(plan.steps, start=1)]
    return Panel(
        "\n".join(lines),
        title="[bold]llamaup pull: DRY RUN[/bold]",
        border_style="cyan",
        padding=(1, 2),
    )


def install_result_panel(result: InstallResult, bin_dir: Path) -> Panel:
    lines = [
        f"[bold green]Installed to:[/bold green] [cyan]{result.path}[/cyan]",
        f"[bold]SHA256:[/bold] {result.sha256}",
        "",
        "[bold]Next steps:[/bold]",
        f"  1. Add to PATH: [cyan]export PATH=\"{bin_dir}:$PATH\"[/cyan]",
        "  2. Run: [cyan]llama-cli -hf bartowski/Qwen2.5-7B-Instruct-GGUF:Q4_K_M -cnv[/cyan]",
    ]
    if result.wrappers:
        lines += ["", "[bold]Wrappers:[/bold]"]
        lines += [f"  {w}" for w in result.wrappers]
    return Panel(
        "\n".join(lines),
        title=f"[bold]llama.cpp {result.version} / SM {result.sm}[/bold]",
        border_style="green",
        padding=(1, 2),
    )


def assets_table(release: Release) -> Table:
    table = Table(title=f"Binaries in {release.tag}")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    for asset in release.binaries:
        table.add_row(asset.name, f"{asset.size / 1048576:.0f} MB")
    return table


class DownloadProgress:
    """Context manager yielding a ``progress(done, total)`` callback.

    Shows a bar when the server reports a size and a pulsing bar otherwise.
    """

    def __init__(self, console: Console, description: str = "Downloading") -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
        self._description = description
        self._task = None

    def __enter__(self) -> DownloadProgress:
        self._progress.start()
        self._task = self._progress.add_task(self._description, total=None)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._progress.stop()

    def __call__(self, done: int, total: int | None) -> None:
        self._progress.update(self._task, completed=done, total=total)


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


def release_rows_table(rows: list[ReleaseRow], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Version", style="bold")
    table.add_column("SM", justify="right")
    table.add_column("Architecture")
    table.add_column("CUDA")
    table.add_column("Size", justify="right")
    table.add_column("Published", style="dim")
    for row in rows:
        ident = row.identity
        table.add_row(
            row.release_tag,
            ident.sm if ident else "?",
            row.architecture,
            ident.toolchain_version if ident else "?",
            row.size_mb,
            row.published_at.strftime("%Y-%m-%d") if row.published_at else "",
        )
    return table
