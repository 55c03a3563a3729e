"""Release publishing backends.

A release is created once per tag with the changelog excerpt as its body
and exactly one attached file, the build artifact.  Publishing a tag that
already has a release is rejected; records are never updated in place.

Backends:

github
    GitHub REST API over ``requests``: look the tag up, create the release,
    upload the artifact to the returned upload URL.
local
    Writes ``{tag}/release.json`` plus a copy of the artifact under a
    directory.  Used for dry runs, tests and air-gapped hosts.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

import requests
from requests import Response, Session
from requests.exceptions import RequestException

from keelson.models.config import ReleaseConfig
from keelson.models.results import BuildArtifact, ReleaseRecord

logger = logging.getLogger(__name__)

_PAGE_SIZE = 100


class ReleasePublishError(RuntimeError):
    """Raised when a release cannot be created or its artifact not attached.

    ``partial`` is set when the release exists on the host but is missing
    its artifact; it has to be removed by hand before the tag can be
    published again.
    """

    def __init__(self, message: str, *, partial: bool = False, url: str = "") -> None:
        super().__init__(message)
        self.partial = partial
        self.url = url


class DuplicateReleaseError(ReleasePublishError):
    """Raised when a release for the tag already exists."""


@runtime_checkable
class ReleasePublisher(Protocol):
    """Protocol for a release-hosting backend."""

    name: str

    def publish(self, tag: str, body: str, artifact: BuildArtifact) -> ReleaseRecord:
        ...


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GitHubReleasePublisher:
    """Publishes releases through the GitHub REST API.

    Parameters
    ----------
    repository:
        ``owner/name`` of the repository.
    token:
        Repository-scoped token with permission to create releases.
    api_url:
        API root; override for GitHub Enterprise.
    session:
        ``requests.Session`` to send through; a fresh one by default.
    """

    name = "github"

    def __init__(
        self,
        repository: str,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        draft: bool = False,
        prerelease: bool = False,
        timeout_seconds: int = 60,
        session: Session | None = None,
    ) -> None:
        if not repository or "/" not in repository:
            raise ValueError(f"GitHub backend requires repository=owner/name, got {repository!r}")
        self.repository = repository
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._draft = draft
        self._prerelease = prerelease
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _releases_url(self) -> str:
        return f"{self._api_url}/repos/{self.repository}/releases"

    def _request(self, method: str, url: str, **kwargs) -> Response:
        try:
            return self._session.request(method, url, timeout=self._timeout, **kwargs)
        except RequestException as exc:
            raise ReleasePublishError(f"{method} {url} failed: {exc}") from exc

    def release_exists(self, tag: str) -> bool:
        """Whether any release, draft or published, already carries *tag*.

        The by-tag endpoint never returns drafts, so when drafts are being
        created the release listing is scanned instead.
        """
        if self._draft:
            return self._listed(tag)
        response = self._request("GET", f"{self._releases_url()}/tags/{tag}", headers=self._headers)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise ReleasePublishError(
            f"Release lookup for {tag} returned {response.status_code}: "
            f"{response.text or response.reason}"
        )

    def _listed(self, tag: str) -> bool:
        page = 1
        while True:
            response = self._request(
                "GET",
                self._releases_url(),
                headers=self._headers,
                params={"per_page": _PAGE_SIZE, "page": page},
            )
            if response.status_code != 200:
                raise ReleasePublishError(
                    f"Listing releases returned {response.status_code}: "
                    f"{response.text or response.reason}"
                )
            releases = response.json()
            if any(release.get("tag_name") == tag for release in releases):
                return True
            if len(releases) < _PAGE_SIZE:
                return False
            page += 1

    def publish(self, tag: str, body: str, artifact: BuildArtifact) -> ReleaseRecord:
        if self.release_exists(tag):
            raise DuplicateReleaseError(f"A release for {tag} already exists in {self.repository}")

        response = self._request(
            "POST",
            self._releases_url(),
            headers=self._headers,
            json={
                "tag_name": tag,
                "name": tag,
                "body": body,
                "draft": self._draft,
                "prerelease": self._prerelease,
            },
        )
        if response.status_code != 201:
            raise ReleasePublishError(
                f"Creating release {tag} returned {response.status_code}: "
                f"{response.text or response.reason}"
            )
        release = response.json()
        release_id = str(release.get("id", ""))
        html_url = release.get("html_url", "")
        logger.info("Created release %s (%s)", tag, html_url)

        # upload_url is an RFC 6570 template: .../assets{?name,label}
        upload_url = release.get("upload_url", "").split("{", 1)[0]
        try:
            with artifact.path.open("rb") as handle:
                upload = self._request(
                    "POST",
                    upload_url,
                    headers={**self._headers, "Content-Type": "application/octet-stream"},
                    params={"name": artifact.path.name},
                    data=handle,
                )
        except (OSError, ReleasePublishError) as exc:
            raise ReleasePublishError(
                f"Release {tag} was created but the artifact upload failed: {exc}. "
                f"Delete {html_url} before re-running.",
                partial=True,
                url=html_url,
            ) from exc
        if upload.status_code != 201:
            raise ReleasePublishError(
                f"Release {tag} was created but the artifact upload returned "
                f"{upload.status_code}. Delete {html_url} before re-running.",
                partial=True,
                url=html_url,
            )
        logger.info("Attached %s to %s", artifact.path.name, tag)

        return ReleaseRecord(
            tag=tag,
            body=body,
            artifact_path=artifact.path,
            artifact_sha256=artifact.sha256,
            release_id=release_id,
            url=html_url,
        )


# ---------------------------------------------------------------------------
# Local
# ---------------------------------------------------------------------------


class LocalReleasePublisher:
    """Publishes releases into a directory, one subdirectory per tag."""

    name = "local"

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def record_path(self, tag: str) -> Path:
        return self.root / tag / "release.json"

    def load(self, tag: str) -> ReleaseRecord | None:
        path = self.record_path(tag)
        if not path.exists():
            return None
        return ReleaseRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def publish(self, tag: str, body: str, artifact: BuildArtifact) -> ReleaseRecord:
        record_path = self.record_path(tag)
        if record_path.exists():
            raise DuplicateReleaseError(f"A release for {tag} already exists at {record_path}")

        target_dir = record_path.parent
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            attached = target_dir / artifact.path.name
            shutil.copy2(artifact.path, attached)
            record = ReleaseRecord(
                tag=tag,
                body=body,
                artifact_path=attached,
                artifact_sha256=artifact.sha256,
                release_id=tag,
                url=target_dir.resolve().as_uri(),
            )
            tmp = record_path.with_suffix(".json.tmp")
            tmp.write_text(
                json.dumps(record.model_dump(mode="json"), indent=2, sort_keys=True),
                encoding="utf-8",
            )
            os.replace(tmp, record_path)
        except OSError as exc:
            raise ReleasePublishError(f"Could not write release {tag} to {target_dir}: {exc}") from exc

        logger.info("Recorded release %s at %s", tag, target_dir)
        return record


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_publisher(
    config: ReleaseConfig,
    *,
    workspace: Path = Path("."),
    dry_run: bool = False,
    environ: Mapping[str, str] | None = None,
    session: Session | None = None,
) -> ReleasePublisher:
    """Return the configured backend.  Dry runs always publish locally."""
    backend = "local" if dry_run else (config.backend or "github").lower()
    if backend == "local":
        root = config.local_path if config.local_path.is_absolute() else Path(workspace) / config.local_path
        return LocalReleasePublisher(root)
    if backend in ("github", "gh"):
        env = os.environ if environ is None else environ
        token = env.get(config.token_env, "")
        if not token:
            raise ReleasePublishError(
                f"GitHub token environment variable '{config.token_env}' is not set."
            )
        repository = config.repository or env.get("GITHUB_REPOSITORY", "")
        return GitHubReleasePublisher(
            repository,
            token,
            api_url=config.api_url,
            draft=config.draft,
            prerelease=config.prerelease,
            timeout_seconds=config.timeout_seconds,
            session=session,
        )
    raise ValueError(f"Unknown release backend '{config.backend}'")
