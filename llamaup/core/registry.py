"""GitHub Releases registry client.

Releases are addressed by tag (or ``"latest"``); each release lists named,
URL-addressable assets.  The ``Registry`` protocol is what the rest of the
core depends on, so tests run against an in-memory fake.
"""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import requests

from llamaup.core.fsutil import removing_on_failure
from llamaup.models.artifacts import Release

logger = logging.getLogger(__name__)

LATEST = "latest"
_CHUNK = 1024 * 1024

ProgressCallback = Callable[[int, int | None], None]
"""Called as ``progress(bytes_so_far, total_or_None)`` while downloading."""


class RegistryError(RuntimeError):
    """Base class for registry failures.  ``hint`` suggests a remedy."""

    def __init__(self, message: str, hint: str = "") -> None:
        self.hint = hint
        super().__init__(message)


class ReleaseNotFoundError(RegistryError):
    """The requested tag does not exist in the repository."""

    def __init__(self, repo: str, tag: str) -> None:
        self.repo = repo
        self.tag = tag
        what = "No releases" if tag == LATEST else f"Release '{tag}' not found"
        super().__init__(
            f"{what} in {repo}",
            hint="Run 'llamaup pull --list' or 'llamaup list --all' to see available versions.",
        )


class RegistryNetworkError(RegistryError):
    """Transport failure or unexpected HTTP status; may succeed on retry."""


class RegistryAuthError(RegistryError):
    """Missing or insufficient credentials for a write operation."""


class PublishError(RegistryError):
    """An archive/sidecar pair could not be published as a unit."""


class Registry(Protocol):
    """Remote artifact registry capability."""

    repo: str

    def get_release(self, tag: str) -> Release: ...

    def list_releases(self, limit: int = 10) -> list[Release]: ...

    def check_auth(self) -> None: ...

    def create_release(self, tag: str, title: str = "", notes: str = "") -> Release: ...

    def upload_asset(self, release: Release, path: Path) -> None: ...

    def delete_asset(self, release: Release, name: str) -> bool: ...

    def download(self, url: str, dest: Path, progress: ProgressCallback | None = None) -> int: ...

    def fetch_text(self, url: str) -> str: ...


class GitHubRegistry:
    """``Registry`` over the GitHub REST API using ``requests``.

    Parameters
    ----------
    repo:
        ``owner/name`` of the repository holding the releases.
    token:
        Optional token; required for publishing, raises rate limits for reads.
    api_url:
        Base API URL (override for GitHub Enterprise).
    timeout:
        Per-request timeout in seconds.
    session:
        Injected ``requests.Session``; a new one is created if omitted.
    """

    def __init__(
        self,
        repo: str,
        token: str = "",
        *,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.repo = repo
        self._token = token
        self._api = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("X-GitHub-Api-Version", "2022-11-28")
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    # ------------------------------------------------------------------
    # Low-level
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self._api}/repos/{self.repo}{path}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self._timeout)
        logger.debug("%s %s", method, url)
        try:
            return self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise RegistryNetworkError(
                f"Network error talking to GitHub: {exc}",
                hint="Check your internet connection and try again.",
            ) from exc

    @staticmethod
    def _is_rate_limited(response: requests.Response) -> bool:
        return response.headers.get("X-RateLimit-Remaining") == "0"

    def _raise_for_status(self, response: requests.Response, what: str) -> None:
        if response.ok:
            return
        if response.status_code == 401:
            raise RegistryAuthError(
                f"GitHub rejected the credentials while {what}",
                hint="Set GITHUB_TOKEN to a valid token.",
            )
        if response.status_code == 403 and self._is_rate_limited(response):
            raise RegistryNetworkError(
                f"GitHub API rate limit exceeded while {what}",
                hint="Set GITHUB_TOKEN to raise the limit, or wait and retry.",
            )
        if response.status_code == 403:
            raise RegistryAuthError(
                f"Permission denied while {what} on {self.repo}",
                hint="The token needs write access (contents) to this repository.",
            )
        raise RegistryNetworkError(
            f"GitHub returned HTTP {response.status_code} while {what}: "
            f"{response.text[:200]}"
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_release(self, tag: str) -> Release:
        """Fetch one release by tag, or the most recent with ``"latest"``."""
        path = "/releases/latest" if tag == LATEST else f"/releases/tags/{tag}"
        response = self._request("GET", self._url(path))
        if response.status_code == 404:
            raise ReleaseNotFoundError(self.repo, tag)
        self._raise_for_status(response, f"fetching release {tag}")
        return Release.from_api(response.json())

    def list_releases(self, limit: int = 10) -> list[Release]:
        response = self._request(
            "GET", self._url("/releases"), params={"per_page": max(1, min(limit, 100))}
        )
        if response.status_code == 404:
            raise ReleaseNotFoundError(self.repo, LATEST)
        self._raise_for_status(response, "listing releases")
        return [Release.from_api(item) for item in response.json()[:limit]]

    def fetch_text(self, url: str) -> str:
        response = self._request("GET", url, allow_redirects=True)
        if response.status_code == 404:
            raise RegistryNetworkError(f"Not found: {url}")
        self._raise_for_status(response, f"fetching {url}")
        return response.text

    def download(
        self, url: str, dest: Path, progress: ProgressCallback | None = None
    ) -> int:
        """Stream *url* to *dest*; returns bytes written.

        *dest* is removed if the transfer fails or is interrupted.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        with removing_on_failure(dest):
            try:
                with self._session.get(
                    url,
                    stream=True,
                    timeout=self._timeout,
                    headers={"Accept": "application/octet-stream"},
                ) as response:
                    self._raise_for_status(response, f"downloading {url}")
                    length = response.headers.get("Content-Length")
                    total = int(length) if length and length.isdigit() else None
                    with open(dest, "wb") as fh:
                        for chunk in response.iter_content(chunk_size=_CHUNK):
                            if not chunk:
                                continue
                            fh.write(chunk)
                            written += len(chunk)
                            if progress is not None:
                                progress(written, total)
            except requests.RequestException as exc:
                raise RegistryNetworkError(
                    f"Download failed: {exc}",
                    hint="Check your internet connection and try again.",
                ) from exc
        return written

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def check_auth(self) -> None:
        """Fail fast unless the token can push to ``repo``."""
        if not self._token:
            raise RegistryAuthError(
                "No GitHub token configured",
                hint="Set GITHUB_TOKEN before using --upload.",
            )
        response = self._request("GET", f"{self._api}/repos/{self.repo}")
        if response.status_code == 404:
            raise RegistryAuthError(
                f"Repository {self.repo} not found or not visible to this token",
                hint="Check --repo / LLAMA_DEPLOY_REPO and the token's scopes.",
            )
        self._raise_for_status(response, "checking repository access")
        permissions = response.json().get("permissions") or {}
        if not permissions.get("push", False):
            raise RegistryAuthError(
                f"Token has no push access to {self.repo}",
                hint="Use a token with write access to repository contents.",
            )

    def create_release(self, tag: str, title: str = "", notes: str = "") -> Release:
        response = self._request(
            "POST",
            self._url("/releases"),
            json={"tag_name": tag, "name": title or tag, "body": notes},
        )
        self._raise_for_status(response, f"creating release {tag}")
        logger.info("Created release %s on %s", tag, self.repo)
        return Release.from_api(response.json())

    def upload_asset(self, release: Release, path: Path) -> None:
        """Upload *path* as an asset, replacing any asset of the same name."""
        existing = release.asset_named(path.name)
        if existing is not None:
            self.delete_asset(release, path.name)

        upload_url = release.upload_url.split("{", 1)[0]
        if not upload_url:
            raise RegistryNetworkError(f"Release {release.tag} has no upload URL")
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        with open(path, "rb") as fh:
            response = self._request(
                "POST",
                upload_url,
                params={"name": path.name},
                data=fh,
                headers={
                    "Content-Type": content_type,
                    "Content-Length": str(path.stat().st_size),
                },
            )
        self._raise_for_status(response, f"uploading {path.name}")
        logger.info("Uploaded %s to %s", path.name, release.tag)

    def delete_asset(self, release: Release, name: str) -> bool:
        """Delete the asset *name* from *release*.  Returns False if absent.

        Re-reads the release so assets uploaded after *release* was fetched
        are found too.
        """
        current = self.get_release(release.tag)
        asset = current.asset_named(name)
        if asset is None or asset.asset_id is None:
            return False
        response = self._request("DELETE", self._url(f"/releases/assets/{asset.asset_id}"))
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"deleting asset {name}")
        logger.info("Deleted asset %s from %s", name, release.tag)
        return True
