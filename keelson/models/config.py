"""Pipeline and run configuration models.

The defaults reproduce the stock workflow for a Rust crate: rustfmt and
clippy gates, a cargo dependency cache keyed on ``Cargo.lock``, git-cliff
changelogs and a GitHub release carrying the release binary.
"""

from __future__ import annotations

import tomllib
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_FILENAME = "keelson.toml"


class ConfigError(RuntimeError):
    """Raised when the pipeline configuration cannot be loaded."""


class CheckKind(str, Enum):
    """The three checks of the verification gate."""

    FORMAT = "format"
    LINT = "lint"
    TEST = "test"


class CheckSpec(BaseModel):
    """One verification check and the command that performs it."""

    model_config = ConfigDict(frozen=True)

    kind: CheckKind
    command: list[str]


class ProvisionConfig(BaseModel):
    """Toolchain provisioning: commands to run, tools that must then exist."""

    model_config = ConfigDict(frozen=True)

    commands: list[list[str]] = [
        [
            "rustup", "toolchain", "install", "stable",
            "--profile", "minimal", "--component", "clippy,rustfmt",
        ],
    ]
    required_tools: list[str] = ["cargo", "rustfmt", "cargo-clippy"]


class CacheConfig(BaseModel):
    """Dependency cache location and key derivation."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    store_path: Path = Path(".keelson/cache")
    key_prefix: str = "cargo"
    lockfile_glob: str = "**/Cargo.lock"
    paths: list[str] = ["~/.cargo/registry", "~/.cargo/git", "target"]


class ChangelogConfig(BaseModel):
    """git-cliff invocation and the changelog commit identity."""

    model_config = ConfigDict(frozen=True)

    command: list[str] = ["git-cliff"]
    config_path: Path = Path(".github/cliff.toml")
    output_path: Path = Path("CHANGELOG.md")
    release_output_path: Path = Path("CHANGES.md")
    commit_message: str = "docs: update changelog"
    bot_name: str = "github-actions[bot]"
    bot_email: str = "41898282+github-actions[bot]@users.noreply.github.com"
    remote: str = "origin"


class BuildConfig(BaseModel):
    """Release build command and the fixed artifact path it produces."""

    model_config = ConfigDict(frozen=True)

    command: list[str] = ["cargo", "build", "--release"]
    artifact_path: Path = Path("target/release/pirate_api")


class ReleaseConfig(BaseModel):
    """Where and how release records are published."""

    model_config = ConfigDict(frozen=True)

    backend: str = "github"  # "github" or "local"
    repository: str = ""  # owner/name, required by the github backend
    api_url: str = "https://api.github.com"
    token_env: str = "GITHUB_TOKEN"
    local_path: Path = Path(".keelson/releases")
    draft: bool = False
    prerelease: bool = False
    timeout_seconds: int = 60


def _default_checks() -> list[CheckSpec]:
    return [
        CheckSpec(kind=CheckKind.FORMAT, command=["cargo", "fmt", "--", "--check"]),
        CheckSpec(kind=CheckKind.LINT, command=["cargo", "clippy", "--", "-D", "warnings"]),
        CheckSpec(kind=CheckKind.TEST, command=["cargo", "test"]),
    ]


class PipelineConfig(BaseModel):
    """Project-level configuration for the Keelson pipelines.

    Loaded from keelson.toml or pyproject.toml [tool.keelson].
    """

    model_config = ConfigDict(frozen=True)

    main_branch: str = "main"
    tag_pattern: str = "v*"
    skip_marker: str = "[skip ci]"
    ledger_db_path: Path = Path(".keelson/ledger.db")
    provision: ProvisionConfig = ProvisionConfig()
    checks: list[CheckSpec] = Field(default_factory=_default_checks)
    cache: CacheConfig = CacheConfig()
    changelog: ChangelogConfig = ChangelogConfig()
    build: BuildConfig = BuildConfig()
    release: ReleaseConfig = ReleaseConfig()

    def check_for(self, kind: CheckKind) -> CheckSpec | None:
        """Return the configured check of the given kind, if any."""
        for check in self.checks:
            if check.kind == kind:
                return check
        return None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_pipeline_config(path: Path | None = None, *, workspace: Path = Path(".")) -> PipelineConfig:
    """Load the pipeline configuration.

    Resolution order: the explicit *path* (a ``keelson.toml`` or a
    ``pyproject.toml``), then ``keelson.toml`` in *workspace*, then
    ``[tool.keelson]`` in ``pyproject.toml``, then built-in defaults.
    """
    candidates = [path] if path else [workspace / CONFIG_FILENAME, workspace / "pyproject.toml"]
    for candidate in candidates:
        if candidate is None or not candidate.exists():
            if path is not None:
                raise ConfigError(f"Config file not found: {path}")
            continue
        data = _read_toml(candidate)
        if candidate.name == "pyproject.toml":
            data = data.get("tool", {}).get("keelson")
            if data is None:
                if path is not None:
                    raise ConfigError(f"No [tool.keelson] table in {path}")
                continue
        return _validate(data, candidate)
    return PipelineConfig()


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc


def _validate(data: dict[str, Any], source: Path) -> PipelineConfig:
    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid pipeline configuration in {source}:\n{exc}") from exc
