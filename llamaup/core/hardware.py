"""Local hardware inventory backed by ``nvidia-smi``."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from typing import Protocol

logger = logging.getLogger(__name__)

_NVCC_RELEASE = re.compile(r"release (\d+\.\d+)")


class HardwareDetectionError(RuntimeError):
    """Raised when no GPU can be enumerated."""


class HardwareInventory(Protocol):
    """Anything that can list GPU name strings, one per device."""

    def descriptors(self) -> list[str]: ...

    def driver_version(self) -> str | None: ...


class NvidiaSmiInventory:
    """Query GPUs through ``nvidia-smi``.

    Parameters
    ----------
    executable:
        Name or path of the ``nvidia-smi`` binary.
    """

    def __init__(self, executable: str = "nvidia-smi") -> None:
        self._exe = executable

    def _query(self, field: str) -> list[str]:
        if shutil.which(self._exe) is None:
            raise HardwareDetectionError(
                f"{self._exe} not found. Install the NVIDIA driver, or pass --sm "
                "to skip detection."
            )
        proc = subprocess.run(
            [self._exe, f"--query-gpu={field}", "--format=csv,noheader"],
            capture_output=True,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            raise HardwareDetectionError(
                f"{self._exe} failed (exit {proc.returncode}): "
                f"{(proc.stderr or proc.stdout).strip()}"
            )
        return [line.strip() for line in proc.stdout.splitlines() if line.strip()]

    def descriptors(self) -> list[str]:
        names = self._query("name")
        if not names:
            raise HardwareDetectionError(
                f"No GPUs detected. Run '{self._exe}' manually to check your setup."
            )
        logger.debug("Detected GPUs: %s", names)
        return names

    def driver_version(self) -> str | None:
        try:
            versions = self._query("driver_version")
        except HardwareDetectionError:
            return None
        return versions[0] if versions else None


def parse_nvcc_version(output: str) -> str | None:
    """Extract ``X.Y`` from ``nvcc --version`` output."""
    m = _NVCC_RELEASE.search(output)
    return m.group(1) if m else None


def detect_cuda_toolkit(nvcc: str = "nvcc") -> str | None:
    """Return the installed CUDA toolkit version, or ``None`` if nvcc is absent."""
    if shutil.which(nvcc) is None:
        return None
    proc = subprocess.run(
        [nvcc, "--version"], capture_output=True, text=True, check=False
    )
    return parse_nvcc_version(proc.stdout)
