"""Run Trigger model — the immutable event that starts pipeline instances."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "refs/heads/"
TAG_PREFIX = "refs/tags/"


class EventKind(str, Enum):
    """Version-control events that can start a pipeline."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG_PUSH = "tag_push"


class RunTrigger(BaseModel):
    """An immutable description of the event that started a run.

    ``ref`` is a fully qualified git ref (``refs/heads/main``,
    ``refs/tags/v1.2.0``, ``refs/pull/7/merge``).  For pull requests
    ``base_ref`` carries the target branch name.
    """

    model_config = ConfigDict(frozen=True)

    event: EventKind
    ref: str
    sha: str
    base_ref: str | None = None
    actor: str = ""
    head_commit_message: str = ""

    @model_validator(mode="after")
    def _check_ref_matches_event(self) -> RunTrigger:
        if self.event == EventKind.TAG_PUSH and not self.ref.startswith(TAG_PREFIX):
            raise ValueError(f"tag_push trigger needs a {TAG_PREFIX}* ref, got {self.ref!r}")
        if self.event == EventKind.PUSH and self.ref.startswith(TAG_PREFIX):
            raise ValueError("push of a tag ref must use event=tag_push")
        return self

    @property
    def ref_name(self) -> str:
        """Branch or tag name without the ``refs/heads/`` / ``refs/tags/`` prefix."""
        for prefix in (BRANCH_PREFIX, TAG_PREFIX):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref

    @property
    def short_sha(self) -> str:
        return self.sha[:8]

    # ------------------------------------------------------------------
    # Construction from the hosting environment
    # ------------------------------------------------------------------

    @classmethod
    def from_github_env(cls, environ: Mapping[str, str] | None = None) -> RunTrigger:
        """Build a trigger from GitHub Actions environment variables.

        A ``push`` whose ref is a tag is classified as ``tag_push``.  The head
        commit message and pull-request base are read from the event payload
        at ``GITHUB_EVENT_PATH`` when available.
        """
        env = os.environ if environ is None else environ
        event_name = env.get("GITHUB_EVENT_NAME", "")
        ref = env.get("GITHUB_REF", "")
        sha = env.get("GITHUB_SHA", "")
        if not event_name or not ref:
            raise ValueError("GITHUB_EVENT_NAME and GITHUB_REF must be set")

        payload = _read_event_payload(env.get("GITHUB_EVENT_PATH"))

        if event_name == "push":
            event = EventKind.TAG_PUSH if ref.startswith(TAG_PREFIX) else EventKind.PUSH
        elif event_name in ("pull_request", "pull_request_target"):
            event = EventKind.PULL_REQUEST
        else:
            raise ValueError(f"Unsupported event {event_name!r}")

        head_commit = payload.get("head_commit") or {}
        return cls(
            event=event,
            ref=ref,
            sha=sha,
            base_ref=env.get("GITHUB_BASE_REF") or None,
            actor=env.get("GITHUB_ACTOR", ""),
            head_commit_message=head_commit.get("message", ""),
        )


def _read_event_payload(path: str | None) -> dict[str, Any]:
    if not path:
        return {}
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read event payload %s: %s", path, exc)
        return {}
