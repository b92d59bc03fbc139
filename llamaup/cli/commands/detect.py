"""``llamaup detect``: show each GPU's SM version, plus CUDA and driver versions."""

from __future__ import annotations

from pathlib import Path

import typer

from llamaup.cli import common
from llamaup.cli.render import print_detect_report
from llamaup.core.hardware import NvidiaSmiInventory, detect_cuda_toolkit
from llamaup.core.resolver import resolve, validate_patterns
from llamaup.models.gpu import DetectReport, GpuReport, PatternTable


def build_report(
    names: list[str], table: PatternTable, cuda: str | None, driver: str | None
) -> DetectReport:
    gpus: list[GpuReport] = []
    for name in names:
        target = resolve(name, table)
        if target.family is None:
            gpus.append(GpuReport(name=name))
        else:
            gpus.append(
                GpuReport(
                    name=name,
                    sm=target.family.sm,
                    architecture=target.family.architecture,
                    cuda_min=target.family.cuda_min,
                )
            )
    return DetectReport(
        gpus=gpus,
        cuda_toolkit=cuda or "not found",
        driver=driver or "not found",
    )


def detect_cmd(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    gpu_map: Path = typer.Option(None, "--gpu-map", help="Path to a gpu_map.json."),
    validate: bool = typer.Option(
        False, "--validate", help="Warn about ambiguous patterns in the table."
    ),
) -> None:
    """Detect local NVIDIA GPUs and map each one to its SM version."""
    config = common.get_config(ctx)
    with common.handle_errors():
        table = common.load_table(config, gpu_map)
        if validate or config.validate_gpu_map or config.debug:
            validate_patterns(table)

        inventory = NvidiaSmiInventory()
        report = build_report(
            inventory.descriptors(),
            table,
            detect_cuda_toolkit(),
            inventory.driver_version(),
        )

    if json_output:
        typer.echo(report.model_dump_json(indent=2))
        return
    print_detect_report(common.console, report)
