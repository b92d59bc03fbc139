"""Runtime configuration, env-driven.

Reads ``LLAMA_DEPLOY_*`` environment variables and an optional ``.env`` file.
The CLI builds one ``LlamaupConfig`` per invocation and passes the values it
needs into the core classes; nothing under ``llamaup.core`` reads config.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_TMP = Path(tempfile.gettempdir())


class LlamaupConfig(BaseSettings):
    """Configuration with environment variable overrides.

    Examples
    --------
    Point builds and pulls at your own release repository::

        export LLAMA_DEPLOY_REPO=myorg/llamaup
        export GITHUB_TOKEN=ghp_...

    Or via .env file::

        LLAMA_DEPLOY_REPO=myorg/llamaup
        LLAMA_DEPLOY_DEBUG=1
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LLAMA_DEPLOY_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Release store
    repo: str = ""  # owner/name; required for build --upload, pull and list
    github_token: str = Field(
        default="",
        validation_alias=AliasChoices("GITHUB_TOKEN", "LLAMA_DEPLOY_GITHUB_TOKEN"),
    )
    api_url: str = "https://api.github.com"
    http_timeout: float = 30.0

    # Upstream source project
    upstream_repo: str = "ggerganov/llama.cpp"
    upstream_git_url: str = "https://github.com/ggerganov/llama.cpp"

    # Logging
    debug: bool = False
    log_level: str = "INFO"

    # Pattern table
    gpu_map_path: Path | None = None  # None = bundled table
    validate_gpu_map: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "LLAMA_VALIDATE_GPU_MAP", "LLAMA_DEPLOY_VALIDATE_GPU_MAP"
        ),
    )

    # Paths
    install_dir: Path = Path("~/.local/bin/llama").expanduser()
    output_dir: Path = Path("dist")
    src_dir: Path = _TMP / "llamaup-src"
    work_dir: Path = _TMP

    # Artifact naming
    project: str = "llama"
    platform_tag: str = "linux"
    abi: str = "x64"

    # Binaries exposed through wrappers after install
    entry_points: list[str] = Field(
        default_factory=lambda: ["llama-cli", "llama-server", "llama-bench"]
    )

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()


def load_config(**overrides: object) -> LlamaupConfig:
    """Build a config from the environment, then apply non-None overrides."""
    base = LlamaupConfig()
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return base
    return base.model_copy(update=updates)
