"""Trigger matching — pure predicates over a RunTrigger.

Nothing in this module touches the filesystem, the network or a tool, so
which pipelines and stages a trigger starts can be decided (and tested)
without running anything.

Event table:

=======================  ========  ===================================
Event                    Pipeline  Condition
=======================  ========  ===================================
push to main             test      head commit carries no skip marker
pull_request to main     test      head commit carries no skip marker
push of tag ``v*``       release   always
=======================  ========  ===================================
"""

from __future__ import annotations

from collections.abc import Callable
from fnmatch import fnmatchcase

from keelson.models.config import PipelineConfig
from keelson.models.pipelines import PipelineKind
from keelson.models.trigger import BRANCH_PREFIX, EventKind, RunTrigger

Condition = Callable[[RunTrigger, PipelineConfig], bool]


def is_push_to_main(trigger: RunTrigger, config: PipelineConfig) -> bool:
    """A direct push to the main branch (never a pull request)."""
    return (
        trigger.event == EventKind.PUSH
        and trigger.ref == f"{BRANCH_PREFIX}{config.main_branch}"
    )


def is_pull_request_to_main(trigger: RunTrigger, config: PipelineConfig) -> bool:
    return (
        trigger.event == EventKind.PULL_REQUEST
        and trigger.base_ref == config.main_branch
    )


def matches_version_tag(trigger: RunTrigger, config: PipelineConfig) -> bool:
    """A tag push whose tag name matches the version pattern (``v*``)."""
    return trigger.event == EventKind.TAG_PUSH and fnmatchcase(
        trigger.ref_name, config.tag_pattern
    )


def has_skip_marker(trigger: RunTrigger, config: PipelineConfig) -> bool:
    return bool(config.skip_marker) and config.skip_marker in trigger.head_commit_message


def is_changelog_commit(trigger: RunTrigger, config: PipelineConfig) -> bool:
    """The head commit is the changelog publisher's own commit.

    Recognised by the fixed commit message or the bot actor; this is what
    keeps the publisher's push to main from regenerating the changelog again.
    """
    changelog = config.changelog
    message = trigger.head_commit_message.strip()
    if message and message.splitlines()[0] == changelog.commit_message:
        return True
    return bool(trigger.actor) and trigger.actor == changelog.bot_name


def should_publish_changelog(trigger: RunTrigger, config: PipelineConfig) -> bool:
    return is_push_to_main(trigger, config) and not is_changelog_commit(trigger, config)


def select_pipelines(trigger: RunTrigger, config: PipelineConfig) -> list[PipelineKind]:
    """Return the pipelines a trigger starts, in a stable order."""
    if matches_version_tag(trigger, config):
        return [PipelineKind.RELEASE]
    if has_skip_marker(trigger, config):
        return []
    if is_push_to_main(trigger, config) or is_pull_request_to_main(trigger, config):
        return [PipelineKind.TEST]
    return []


# Stage conditions referenced by StageDefinition.condition.
CONDITIONS: dict[str, Condition] = {
    "push_to_main": should_publish_changelog,
}


class UnknownConditionError(KeyError):
    """Raised when a stage names a condition that is not registered."""


def evaluate_condition(name: str, trigger: RunTrigger, config: PipelineConfig) -> bool:
    try:
        predicate = CONDITIONS[name]
    except KeyError:
        raise UnknownConditionError(
            f"Unknown stage condition {name!r}. Registered: {sorted(CONDITIONS)}"
        ) from None
    return predicate(trigger, config)
