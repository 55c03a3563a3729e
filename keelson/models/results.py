"""Stage output models — what each job hands to its dependents."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from keelson.models.config import CheckKind


class CommandResult(BaseModel):
    """Outcome of one external tool invocation."""

    model_config = ConfigDict(frozen=True)

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def display(self) -> str:
        return " ".join(self.command)


class CheckOutcome(BaseModel):
    """Result of a single verification check."""

    model_config = ConfigDict(frozen=True)

    kind: CheckKind
    passed: bool
    returncode: int
    duration_seconds: float = 0.0
    output_tail: str = ""


class VerificationResult(BaseModel):
    """Format, lint and test outcome of the verification gate.

    Checks never reached because an earlier one failed are ``False`` and
    have no entry in ``checks``.
    """

    model_config = ConfigDict(frozen=True)

    format_ok: bool = False
    lint_ok: bool = False
    tests_ok: bool = False
    checks: list[CheckOutcome] = []

    @property
    def passed(self) -> bool:
        return self.format_ok and self.lint_ok and self.tests_ok

    @property
    def first_failure(self) -> CheckOutcome | None:
        for outcome in self.checks:
            if not outcome.passed:
                return outcome
        return None


class CacheOutcome(BaseModel):
    """What a cache restore or save did.  Errors are reported, never raised."""

    model_config = ConfigDict(frozen=True)

    key: str
    hit: bool = False
    saved: bool = False
    error: str = ""


class ChangelogMode(str, Enum):
    """Continuous: whole history, committed.  Release: latest tag, ephemeral."""

    CONTINUOUS = "continuous"
    RELEASE = "release"


class ChangelogDocument(BaseModel):
    """A generated changelog document."""

    model_config = ConfigDict(frozen=True)

    mode: ChangelogMode
    path: Path
    content: str
    content_hash: str


class ChangelogPublishOutcome(BaseModel):
    """Result of committing the changelog back to the main branch."""

    model_config = ConfigDict(frozen=True)

    committed: bool
    commit_message: str = ""
    commit_sha: str = ""
    branch: str = ""


class BuildArtifact(BaseModel):
    """The single binary produced by the release build."""

    model_config = ConfigDict(frozen=True)

    path: Path
    size_bytes: int
    sha256: str


class ReleaseRecord(BaseModel):
    """A published release.  Created once per tag; never updated."""

    model_config = ConfigDict(frozen=True)

    tag: str
    body: str
    artifact_path: Path
    artifact_sha256: str
    release_id: str = ""
    url: str = ""
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
