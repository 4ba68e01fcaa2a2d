# trigger.py
from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Tuple

from .model import PULL_REQUEST, PUSH, Config, Event, JobSpec


def branch_matches(branch: str | None, patterns) -> bool:
    if not branch:
        return False
    return any(fnmatchcase(branch, p) for p in patterns)


def is_applicable(config: Config, event: Event) -> bool:
    """
    Decide whether an event launches a run.

    Unrecognized event kinds are never applicable: no run is launched
    rather than guessing.
    """
    triggers = config.triggers
    if event.kind == PULL_REQUEST:
        return triggers.pull_request
    if event.kind == PUSH:
        return triggers.push and branch_matches(event.branch, triggers.push_branches)
    return False


def applicable_jobs(config: Config, event: Event) -> Tuple[JobSpec, ...]:
    """Return the job specs an event should run (the full table or nothing)."""
    if not is_applicable(config, event):
        return ()
    return config.jobs
