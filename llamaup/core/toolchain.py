"""Toolchain capability: fetch llama.cpp source and compile it for one SM.

``BuildOrchestrator`` only talks to the ``Toolchain`` protocol, so tests can
substitute a fake that writes a few files instead of running CMake.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections import deque
from pathlib import Path
from typing import Protocol

from llamaup.core.hardware import parse_nvcc_version

logger = logging.getLogger(__name__)

# Lines of tool output kept for the error message on failure.
_OUTPUT_TAIL = 200


class ToolchainError(RuntimeError):
    """A toolchain step failed.  ``output`` holds the tool's own diagnostics."""

    def __init__(self, message: str, output: str = "", hint: str = "") -> None:
        self.output = output
        self.hint = hint
        super().__init__(message)


class Toolchain(Protocol):
    """Compile capability consumed by the build orchestrator."""

    def detect_version(self) -> str: ...

    def prepare_source(self, version: str, src_dir: Path) -> None: ...

    def clean(self, src_dir: Path, sm: str) -> bool: ...

    def compile(self, src_dir: Path, sm: str, jobs: int, install_dir: Path) -> None: ...


class CMakeToolchain:
    """git + CMake/Ninja + nvcc, as used to build llama.cpp with CUDA.

    Parameters
    ----------
    git_url:
        Clone URL of the upstream source project.
    extra_cmake_args:
        Additional ``-D`` flags appended to the configure step.
    """

    REQUIRED_TOOLS = ("git", "cmake", "ninja", "nvcc")

    def __init__(
        self,
        git_url: str = "https://github.com/ggerganov/llama.cpp",
        extra_cmake_args: list[str] | None = None,
    ) -> None:
        self._git_url = git_url
        self._extra = list(extra_cmake_args or [])

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def missing_tools(self) -> list[str]:
        return [tool for tool in self.REQUIRED_TOOLS if shutil.which(tool) is None]

    def require_tools(self) -> None:
        missing = self.missing_tools()
        if missing:
            raise ToolchainError(
                f"Missing required tools: {', '.join(missing)}",
                hint="Install them (e.g. apt install git cmake ninja-build) and "
                "make sure nvcc from the CUDA toolkit is on PATH.",
            )

    def detect_version(self) -> str:
        """Return the CUDA toolkit version reported by ``nvcc``."""
        if shutil.which("nvcc") is None:
            raise ToolchainError(
                "nvcc not found",
                hint="Install the CUDA toolkit, or pass --cuda <version>.",
            )
        output = self._run(["nvcc", "--version"], step="nvcc --version")
        version = parse_nvcc_version(output)
        if version is None:
            raise ToolchainError(
                "Could not parse CUDA version from nvcc", output=output
            )
        return version

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def prepare_source(self, version: str, src_dir: Path) -> None:
        """Clone (or fetch) the source tree and check out *version*.

        Fails fast when any of ``REQUIRED_TOOLS`` is missing; only a real
        rebuild reaches this step.
        """
        self.require_tools()
        if (src_dir / ".git").is_dir():
            logger.info("Source already cloned at %s, fetching tags", src_dir)
            self._run(
                ["git", "-C", str(src_dir), "fetch", "--tags", "--quiet"],
                step="git fetch",
            )
        else:
            logger.info("Cloning %s into %s", self._git_url, src_dir)
            src_dir.parent.mkdir(parents=True, exist_ok=True)
            self._run(
                [
                    "git", "clone", "--filter=blob:none", "--no-checkout",
                    "--quiet", self._git_url, str(src_dir),
                ],
                step="git clone",
                hint="Check your internet connection.",
            )
        logger.info("Checking out %s", version)
        self._run(
            ["git", "-C", str(src_dir), "checkout", "--quiet", version],
            step=f"git checkout {version}",
            hint=f"Tag '{version}' not found in the source repository.",
        )

    def build_dir(self, src_dir: Path, sm: str) -> Path:
        return src_dir / f"build-sm{sm}"

    def clean(self, src_dir: Path, sm: str) -> bool:
        """Remove the per-SM build directory.  Returns True if one existed."""
        build_dir = self.build_dir(src_dir, sm)
        if build_dir.is_dir():
            logger.warning("Stale build directory found at %s, cleaning", build_dir)
            shutil.rmtree(build_dir)
            return True
        return False

    def compile(self, src_dir: Path, sm: str, jobs: int, install_dir: Path) -> None:
        """Configure, build and install into *install_dir*."""
        build_dir = self.build_dir(src_dir, sm)
        build_dir.mkdir(parents=True, exist_ok=True)
        install_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Configuring (SM %s)", sm)
        self._run(
            [
                "cmake", "-S", str(src_dir), "-B", str(build_dir),
                "-DCMAKE_BUILD_TYPE=Release",
                "-DGGML_CUDA=ON",
                f"-DCMAKE_CUDA_ARCHITECTURES={sm}",
                f"-DCMAKE_INSTALL_PREFIX={install_dir}",
                "-DLLAMA_CURL=ON",
                "-G", "Ninja",
                *self._extra,
            ],
            step="cmake configure",
            hint="Check that the CUDA toolkit is installed and nvcc is on PATH.",
        )
        logger.info("Compiling with %d jobs", jobs)
        self._run(
            ["cmake", "--build", str(build_dir), "--parallel", str(jobs)],
            step="cmake build",
            hint="See the compiler output above.",
        )
        logger.info("Installing to %s", install_dir)
        self._run(["cmake", "--install", str(build_dir)], step="cmake install")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _run(cmd: list[str], *, step: str, hint: str = "") -> str:
        """Run *cmd*, streaming output to the debug log.

        Returns the combined stdout/stderr.  On a non-zero exit raises
        ``ToolchainError`` carrying the tail of that output.
        """
        logger.debug("$ %s", " ".join(cmd))
        tail: deque[str] = deque(maxlen=_OUTPUT_TAIL)
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as exc:
            raise ToolchainError(f"{step} failed: {cmd[0]} not found", hint=hint) from exc

        assert proc.stdout is not None
        with proc:
            for line in proc.stdout:
                line = line.rstrip("\n")
                tail.append(line)
                logger.debug("%s", line)
        output = "\n".join(tail)
        if proc.returncode != 0:
            raise ToolchainError(
                f"{step} failed (exit {proc.returncode})", output=output, hint=hint
            )
        return output
