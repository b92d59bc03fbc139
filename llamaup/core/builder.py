"""Build orchestrator: idempotent build-or-skip for one (version, SM) archive.

State machine (see ``llamaup.models.build``)::

    RESOLVE_INPUTS -> CHECK_EXISTING -> {SKIP | CLEAN_AND_BUILD}
        -> COMPILE -> PACKAGE -> HASH -> (PUBLISH) -> DONE

A cached archive is reused only after it passes verification; one that
fails is deleted and rebuilt.  Publishing credentials are checked in
RESOLVE_INPUTS, before any compile work.
"""

from __future__ import annotations

import logging
from pathlib import Path

from llamaup.core.archive import create_archive
from llamaup.core.artifact_store import LocalArtifactStore
from llamaup.core.build_machine import BuildMachine
from llamaup.core.fsutil import remove_path, removing_on_failure
from llamaup.core.hardware import HardwareInventory
from llamaup.core.registry import LATEST, Registry
from llamaup.core.release_client import ReleaseStoreClient
from llamaup.core.resolver import require, resolve_explicit
from llamaup.core.toolchain import Toolchain
from llamaup.models.artifacts import NamingScheme
from llamaup.models.build import (
    BuildInputs,
    BuildPlan,
    BuildRequest,
    BuildResult,
    BuildState,
)
from llamaup.models.gpu import PatternTable

logger = logging.getLogger(__name__)

PLACEHOLDER_LATEST = "<latest>"
PLACEHOLDER_DETECTED = "<detected>"


class BuildInputError(ValueError):
    """A required build input is missing or cannot be determined."""


def _version_tuple(version: str) -> tuple[int, ...]:
    parts: list[int] = []
    for piece in version.split("."):
        if not piece.isdigit():
            break
        parts.append(int(piece))
    return tuple(parts)


class BuildOrchestrator:
    """Drive one build request through the build state machine.

    Parameters
    ----------
    table:
        Pattern table used to validate or detect the SM.
    toolchain:
        Compile capability.
    store:
        Output directory of archives, keyed by artifact name.
    naming:
        Artifact naming scheme.
    work_dir:
        Parent of the per-SM install staging directory that gets packaged.
    inventory:
        Hardware inventory, needed only when the request has no SM.
    upstream:
        Registry of the source project, used to resolve ``latest`` and to
        check that an explicit tag exists.
    client:
        Release store client, needed only when publishing.
    """

    def __init__(
        self,
        table: PatternTable,
        toolchain: Toolchain,
        store: LocalArtifactStore,
        *,
        naming: NamingScheme | None = None,
        work_dir: Path = Path("/tmp"),
        inventory: HardwareInventory | None = None,
        upstream: Registry | None = None,
        client: ReleaseStoreClient | None = None,
    ) -> None:
        self._table = table
        self._toolchain = toolchain
        self._store = store
        self._naming = naming or NamingScheme()
        self._work_dir = Path(work_dir)
        self._inventory = inventory
        self._upstream = upstream
        self._client = client
        self.last_machine: BuildMachine | None = None

    def staging_dir(self, sm: str) -> Path:
        return self._work_dir / f"llamaup-install-sm{sm}"

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def plan(self, request: BuildRequest) -> BuildPlan:
        """Describe what ``run`` would do without detection, network or compute.

        An explicit SM is still validated against the table.
        """
        version = PLACEHOLDER_LATEST if request.version == LATEST else request.version
        if request.sm:
            resolve_explicit(request.sm, self._table)
        sm = request.sm or PLACEHOLDER_DETECTED
        cuda = request.toolchain_version or PLACEHOLDER_DETECTED
        archive_name = self._naming.name_for(version, cuda, sm)
        archive_path = self._store.path_for(archive_name)
        repo = self._client.repo if (request.publish and self._client) else None

        steps = [
            f"Clone/checkout llama.cpp @ {version} -> {request.src_dir}",
            f"cmake configure (SM {sm})",
            f"cmake build (-j {request.jobs})",
            "cmake install",
            f"Package -> {archive_path}",
            f"SHA256  -> {self._store.checksum_path_for(archive_name)}",
        ]
        if repo:
            steps.insert(0, "Verify GitHub token can publish")
            steps.append(f"Upload to GitHub Release {version} on {repo}")

        return BuildPlan(
            version=version,
            sm=sm,
            toolchain_version=cuda,
            src_dir=request.src_dir,
            jobs=request.jobs,
            output_dir=self._store.base_path,
            archive_name=archive_name,
            publish_repo=repo,
            steps=steps,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, request: BuildRequest) -> BuildResult:
        """Build (or reuse) the archive for *request*.

        Any failure moves the machine to FAILED and re-raises; the history
        stays available on ``last_machine``.
        """
        machine = BuildMachine()
        self.last_machine = machine
        try:
            return self._run(request, machine)
        except BaseException as exc:
            machine.fail(f"{type(exc).__name__}: {exc}")
            raise

    def _run(self, request: BuildRequest, machine: BuildMachine) -> BuildResult:
        inputs = self._resolve_inputs(request)
        name = inputs.archive_name
        machine.transition(BuildState.CHECK_EXISTING, name)

        skipped = self._reuse_existing(name)
        if skipped:
            machine.transition(BuildState.SKIP, "verified cached artifact")
        else:
            self._build(inputs, request, machine)

        identity = self._naming.identity_for(
            inputs.version, inputs.toolchain_version, inputs.sm
        )
        artifact = self._store.describe(name, identity)

        published = False
        release_url = ""
        if request.publish:
            machine.transition(BuildState.PUBLISH, self._client.repo)
            release = self._client.publish(
                inputs.version,
                artifact.path,
                artifact.checksum_path,
                title=f"llama.cpp {inputs.version}",
                notes=(
                    f"Pre-built CUDA binaries for llama.cpp {inputs.version}. "
                    "Built by llamaup."
                ),
            )
            published = True
            release_url = release.html_url

        machine.transition(BuildState.DONE)
        return BuildResult(
            inputs=inputs,
            artifact=artifact,
            skipped=skipped,
            published=published,
            release_url=release_url,
            history=machine.history,
        )

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _resolve_inputs(self, request: BuildRequest) -> BuildInputs:
        # Publishing credentials first: nothing expensive happens before this.
        if request.publish:
            if self._client is None:
                raise BuildInputError("Publishing requested but no release repository is set")
            self._client.check_publish_access()

        version = self._resolve_version(request.version)

        descriptor = ""
        if request.sm:
            target = resolve_explicit(request.sm, self._table)
        else:
            if self._inventory is None:
                raise BuildInputError("No SM given and no GPU inventory to detect one")
            descriptor = self._inventory.descriptors()[0]
            target = require(descriptor, self._table)
            logger.info(
                "Detected %s -> SM %s (%s)",
                descriptor,
                target.sm,
                target.family.architecture if target.family else "unknown",
            )
        sm = target.sm

        cuda = request.toolchain_version or self._toolchain.detect_version()
        family = target.family
        if family is not None and _version_tuple(cuda) < _version_tuple(family.cuda_min):
            logger.warning(
                "CUDA %s is older than the minimum %s for SM %s (%s)",
                cuda,
                family.cuda_min,
                sm,
                family.architecture,
            )

        return BuildInputs(
            version=version,
            sm=sm,
            toolchain_version=cuda,
            archive_name=self._naming.name_for(version, cuda, sm),
            descriptor=descriptor,
        )

    def _resolve_version(self, version: str) -> str:
        if not version:
            raise BuildInputError("Version tag must not be empty")
        if version == LATEST:
            if self._upstream is None:
                raise BuildInputError("Cannot resolve 'latest' without an upstream registry")
            tag = self._upstream.get_release(LATEST).tag
            logger.info("Latest llama.cpp release: %s", tag)
            return tag
        if self._upstream is not None:
            # ReleaseNotFoundError propagates with a hint.
            self._upstream.get_release(version)
        return version

    def _reuse_existing(self, name: str) -> bool:
        """Return True if *name* is cached and intact; purge it otherwise."""
        if not self._store.exists(name):
            return False
        verification = self._store.verify(name)
        if not verification.ok:
            logger.warning(
                "Cached %s failed verification (%s); rebuilding", name, verification.reason
            )
            self._store.discard(name)
            return False
        if not verification.has_sidecar:
            logger.info("Cached %s has no sidecar; regenerating it", name)
            self._store.write_checksum(name)
        logger.info("%s already exists and is valid; skipping build", name)
        return True

    def _build(
        self, inputs: BuildInputs, request: BuildRequest, machine: BuildMachine
    ) -> None:
        sm = inputs.sm
        staging = self.staging_dir(sm)

        machine.transition(BuildState.CLEAN_AND_BUILD)
        self._toolchain.clean(request.src_dir, sm)
        if remove_path(staging):
            logger.warning("Removed stale install staging directory %s", staging)

        machine.transition(BuildState.COMPILE, f"sm{sm} -j{request.jobs}")
        with removing_on_failure(staging):
            self._toolchain.prepare_source(inputs.version, request.src_dir)
            self._toolchain.compile(request.src_dir, sm, request.jobs, staging)

        machine.transition(BuildState.PACKAGE, inputs.archive_name)
        create_archive(staging, self._store.path_for(inputs.archive_name))

        machine.transition(BuildState.HASH)
        with removing_on_failure(self._store.checksum_path_for(inputs.archive_name)):
            self._store.write_checksum(inputs.archive_name)
