"""Dependency cache keyed by lockfile fingerprint and runner OS.

Storage layout: {store_path}/{key}.tar.gz, one archive per Cache Key.
Inside an archive, member ``{i}/...`` belongs to the i-th configured path,
so paths outside the workspace (``~/.cargo/registry``) restore to the
same place.

A cache can only make a run faster: every failure here is logged and
reported through ``CacheOutcome.error``, never raised.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import tarfile
import tempfile
from pathlib import Path

from keelson.core.hasher import hash_files
from keelson.models.config import CacheConfig
from keelson.models.results import CacheOutcome

logger = logging.getLogger(__name__)

_OS_CLASSES = {"Linux": "Linux", "Darwin": "macOS", "Windows": "Windows"}


def runner_os() -> str:
    """OS class of the current runner (``Linux``, ``macOS`` or ``Windows``)."""
    system = platform.system()
    return _OS_CLASSES.get(system, system or "unknown")


def compute_cache_key(
    workspace: Path, config: CacheConfig, *, os_name: str | None = None
) -> str:
    """``{os}-{prefix}-{hash}`` where hash fingerprints every matched lockfile.

    Identical lockfile contents on the same OS class always give the same key.
    """
    lockfiles = [
        path
        for path in Path(workspace).glob(config.lockfile_glob)
        if path.is_file() and ".git" not in path.parts
    ]
    return f"{os_name or runner_os()}-{config.key_prefix}-{hash_files(lockfiles)}"


class DependencyCache:
    """Restores and saves dependency directories as keyed archives.

    Parameters
    ----------
    config:
        Cache configuration: store location and the directories to cache.
    workspace:
        Root that relative cache paths resolve against.
    """

    def __init__(self, config: CacheConfig, workspace: Path) -> None:
        self._config = config
        self._workspace = Path(workspace)
        self._store = self._resolve(str(config.store_path))

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def key(self, *, os_name: str | None = None) -> str:
        return compute_cache_key(self._workspace, self._config, os_name=os_name)

    def safe_key(self) -> tuple[str, str]:
        """``(key, "")``, or ``("", error)`` when the lockfiles cannot be read.

        An empty key means the run proceeds uncached.
        """
        try:
            return self.key(), ""
        except OSError as exc:
            logger.warning("Cannot derive cache key, running uncached: %s", exc)
            return "", str(exc)

    def archive_path(self, key: str) -> Path:
        return self._store / f"{key}.tar.gz"

    def _resolve(self, raw: str) -> Path:
        path = Path(os.path.expanduser(raw))
        return path if path.is_absolute() else self._workspace / path

    @property
    def paths(self) -> list[Path]:
        return [self._resolve(raw) for raw in self._config.paths]

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, key: str) -> CacheOutcome:
        """Restore the archive for *key*.  A miss is not an error."""
        archive = self.archive_path(key)
        if not archive.exists():
            logger.info("Cache miss for %s", key)
            return CacheOutcome(key=key, hit=False)

        try:
            with tempfile.TemporaryDirectory(prefix="keelson-cache-") as tmp:
                with tarfile.open(archive, "r:gz") as tar:
                    tar.extractall(tmp, filter="data")
                for index, target in enumerate(self.paths):
                    source = Path(tmp) / str(index)
                    if source.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        shutil.copytree(source, target, dirs_exist_ok=True, symlinks=True)
                    elif source.is_file():
                        target.parent.mkdir(parents=True, exist_ok=True)
                        shutil.copy2(source, target)
        except (OSError, tarfile.TarError) as exc:
            logger.warning("Cache restore for %s failed, continuing cold: %s", key, exc)
            return CacheOutcome(key=key, hit=False, error=str(exc))

        logger.info("Cache hit for %s", key)
        return CacheOutcome(key=key, hit=True)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, key: str) -> CacheOutcome:
        """Archive the cache paths under *key*.

        Existing entries are immutable: saving an existing key is a no-op.
        The archive is written to a temporary file and renamed into place.
        """
        archive = self.archive_path(key)
        if archive.exists():
            return CacheOutcome(key=key, hit=True, saved=False)

        existing = [(i, p) for i, p in enumerate(self.paths) if p.exists()]
        if not existing:
            logger.info("Nothing to cache for %s", key)
            return CacheOutcome(key=key, saved=False)

        tmp_name = ""
        try:
            self._store.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=self._store, prefix=".partial-", suffix=".tar.gz", delete=False
            ) as handle:
                tmp_name = handle.name
            with tarfile.open(tmp_name, "w:gz") as tar:
                for index, path in existing:
                    tar.add(path, arcname=str(index))
            os.replace(tmp_name, archive)
        except (OSError, tarfile.TarError) as exc:
            logger.warning("Cache save for %s failed: %s", key, exc)
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
            return CacheOutcome(key=key, saved=False, error=str(exc))

        logger.info("Saved cache %s (%d paths)", key, len(existing))
        return CacheOutcome(key=key, saved=True)
