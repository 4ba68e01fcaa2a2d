# src/verifyci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .model import CapabilityInvocation, CommandInvocation, Config, JobSpec, Policy, Step, Triggers


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> CommandInvocation:
    """Create a shell step."""
    return CommandInvocation(run=cmd, name=name, cwd=cwd)


def uses(capability: str, params: Optional[Mapping[str, Any]] = None, *, name: str = "", **kwargs: Any) -> CapabilityInvocation:
    """
    Create a capability step.

    Dashed parameter names go in `params`:
        uses("setup-rust", {"rust-version": "stable"}, components="clippy")
    """
    merged: Dict[str, Any] = dict(params or {})
    merged.update(kwargs)
    return CapabilityInvocation(capability=capability, params=merged, name=name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    One matrix axis.

    Example:
        job("build", ..., runs_on="${{ matrix.os }}",
            matrix=matrix("os", ["ubuntu-latest", "windows-latest"]))
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def axes(self) -> List[Tuple[str, Tuple[Any, ...]]]:
        return [(self.key, tuple(self.values))]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


MatrixArg = Union[Matrix, Sequence[Matrix], Mapping[str, Iterable[Any]], None]


def _axes(value: MatrixArg) -> List[Tuple[str, Tuple[Any, ...]]]:
    if value is None:
        return []
    if isinstance(value, Matrix):
        return value.axes()
    if isinstance(value, Mapping):
        return [(k, tuple(v)) for k, v in value.items()]
    out: List[Tuple[str, Tuple[Any, ...]]] = []
    for m in value:
        out.extend(m.axes())
    return out


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), uses(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    runs_on: str = "ubuntu-latest",
    matrix: MatrixArg = None,
    requires: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to shell steps missing cwd
) -> JobSpec:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [
            replace(s, cwd=cwd) if isinstance(s, CommandInvocation) and s.cwd is None else s
            for s in steps_final
        ]

    axes = _axes(matrix)
    keys = [k for k, _ in axes]
    if len(set(keys)) != len(keys):
        raise ValueError(f"job({name!r}) declares a matrix axis twice: {keys}")

    return JobSpec(
        name=name,
        steps=tuple(steps_final),
        runs_on=runs_on,
        matrix=tuple(axes),
        requires=tuple(requires or ()),
        env=env or {},
    )


# ---------------------------------------------------------------------
# Workflow helpers (single-file story)
# ---------------------------------------------------------------------

def on(push: Optional[Sequence[str]] = ("main",), pull_request: bool = True) -> Triggers:
    """
    Trigger rules. `push` lists branch names or globs; None disables push.
    """
    if push is None:
        return Triggers(push_branches=(), pull_request=pull_request, push=False)
    if isinstance(push, str):
        push = [push]
    return Triggers(push_branches=tuple(push), pull_request=pull_request, push=True)


def wf(
    *jobs: JobSpec,
    name: str = "workflow",
    triggers: Optional[Triggers] = None,
    fail_fast: bool = False,
    cancel_superseded: bool = True,
    max_workers: int | None = None,
) -> Config:
    """
    Workflow definition helper.

    Users can write:
        from verifyci import wf, on, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
                name="Build",
                triggers=on(push=["master"]),
            )
    """
    return Config(
        name=name,
        jobs=tuple(jobs),
        triggers=triggers or Triggers(),
        policy=Policy(fail_fast=fail_fast, cancel_superseded=cancel_superseded, max_workers=max_workers),
    )
