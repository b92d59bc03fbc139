"""Shared CLI plumbing: factories from config, and error -> exit code mapping."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console

from llamaup.config import LlamaupConfig, load_config
from llamaup.core.archive import ArchiveIntegrityError
from llamaup.core.build_machine import InvalidTransitionError
from llamaup.core.builder import BuildInputError
from llamaup.core.hardware import HardwareDetectionError
from llamaup.core.hasher import ChecksumFormatError, ChecksumMismatchError
from llamaup.core.registry import GitHubRegistry, RegistryError
from llamaup.core.release_client import AssetNotFoundError, ReleaseStoreClient
from llamaup.core.resolver import (
    PatternTableError,
    ResolutionError,
    UnknownArchitectureError,
    load_pattern_table,
)
from llamaup.core.toolchain import ToolchainError
from llamaup.models.artifacts import NamingScheme
from llamaup.models.gpu import PatternTable

console = Console()
err_console = Console(stderr=True)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

# Every error the core raises on purpose.  Anything else is a bug and keeps
# its traceback.
HANDLED_ERRORS: tuple[type[BaseException], ...] = (
    PatternTableError,
    UnknownArchitectureError,
    BuildInputError,
    ResolutionError,
    HardwareDetectionError,
    ToolchainError,
    ChecksumMismatchError,
    ChecksumFormatError,
    ArchiveIntegrityError,
    RegistryError,
    AssetNotFoundError,
    InvalidTransitionError,
    PermissionError,
)


def get_config(ctx: typer.Context) -> LlamaupConfig:
    """Config installed by the app callback (or a fresh one outside it)."""
    if isinstance(ctx.obj, LlamaupConfig):
        return ctx.obj
    return load_config()


def load_table(config: LlamaupConfig, override: Path | None = None) -> PatternTable:
    return load_pattern_table(override or config.gpu_map_path)


def naming_from(config: LlamaupConfig) -> NamingScheme:
    return NamingScheme(project=config.project, platform=config.platform_tag, abi=config.abi)


def require_repo(config: LlamaupConfig, repo: str | None) -> str:
    value = repo or config.repo
    if not value:
        raise BuildInputError(
            "No GitHub repo specified. Use --repo or set LLAMA_DEPLOY_REPO "
            "(e.g. my-org/llamaup)."
        )
    return value


def make_registry(config: LlamaupConfig, repo: str) -> GitHubRegistry:
    return GitHubRegistry(
        repo,
        config.github_token,
        api_url=config.api_url,
        timeout=config.http_timeout,
    )


def make_upstream(config: LlamaupConfig) -> GitHubRegistry:
    return make_registry(config, config.upstream_repo)


def make_client(config: LlamaupConfig, repo: str | None) -> ReleaseStoreClient:
    return ReleaseStoreClient(
        make_registry(config, require_repo(config, repo)), naming_from(config)
    )


# ------------------------------------------------------------------
# Error reporting
# ------------------------------------------------------------------


def _hint_for(exc: BaseException) -> str:
    return getattr(exc, "hint", "") or getattr(exc, "suggestion", "")


def report_error(exc: BaseException) -> None:
    """Print *exc* as a red error line plus any hint or tool output."""
    err_console.print(f"[bold red]Error:[/bold red] {exc}", highlight=False)
    if isinstance(exc, ChecksumMismatchError):
        err_console.print(f"  Expected : {exc.expected}", highlight=False)
        err_console.print(f"  Actual   : {exc.actual}", highlight=False)
        err_console.print("  The downloaded file has been deleted.", style="dim")
    if isinstance(exc, ToolchainError) and exc.output:
        err_console.print(exc.output, style="dim", highlight=False, markup=False)
    hint = _hint_for(exc)
    if hint:
        err_console.print(f"  [yellow]->[/yellow] {hint}", highlight=False)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Map known failures to exit 1 and Ctrl-C to exit 130."""
    try:
        yield
    except HANDLED_ERRORS as exc:
        report_error(exc)
        raise typer.Exit(code=EXIT_FAILURE) from exc
    except KeyboardInterrupt as exc:
        err_console.print("\n[yellow]Interrupted. Partial output was removed.[/yellow]")
        raise typer.Exit(code=EXIT_INTERRUPTED) from exc
