# model.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple, Union

if TYPE_CHECKING:
    from .environment import Environment


# ---------------------------------------------------------------------
# Statuses / event kinds
# ---------------------------------------------------------------------

SUCCESS = "success"
FAILURE = "failure"
CANCELLED = "cancelled"

PUSH = "push"
PULL_REQUEST = "pull_request"
EVENT_KINDS = (PUSH, PULL_REQUEST)


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


# ---------------------------------------------------------------------
# Event
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """A trigger occurrence coming from the version-control host."""
    kind: str
    branch: str | None = None
    number: int | None = None
    sha: str | None = None

    @property
    def group(self) -> str:
        """Runs sharing a group supersede each other."""
        if self.kind == PULL_REQUEST:
            # unnumbered pull requests fall back to the commit, then the base branch
            ident = self.number if self.number is not None else (self.sha or self.branch or "")
            return f"{self.kind}:{ident}"
        return f"{self.kind}:{self.branch or ''}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Event:
        """Build an event from GitHub-style runner variables."""
        environ = os.environ if environ is None else environ
        kind = environ.get("GITHUB_EVENT_NAME", "")
        if kind == PULL_REQUEST:
            branch = environ.get("GITHUB_BASE_REF") or None
        else:
            branch = environ.get("GITHUB_REF_NAME") or None

        number = None
        ref = environ.get("GITHUB_REF", "")
        # refs/pull/<n>/merge
        parts = ref.split("/")
        if len(parts) >= 3 and parts[1] == "pull" and parts[2].isdigit():
            number = int(parts[2])

        return cls(kind=kind, branch=branch, number=number, sha=environ.get("GITHUB_SHA") or None)


# ---------------------------------------------------------------------
# Steps (tagged variant)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    name: str
    status: str
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


@dataclass(frozen=True)
class CommandInvocation:
    """Run a literal shell command."""
    run: str
    name: str = ""
    cwd: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.run

    def execute(self, environment: Environment) -> StepResult:
        return environment.run_command(self)


@dataclass(frozen=True)
class CapabilityInvocation:
    """Invoke a named external capability with parameters."""
    capability: str
    params: Mapping[str, Any] = field(default_factory=dict, hash=False)
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", _frozen(self.params))

    @property
    def label(self) -> str:
        return self.name or f"Use {self.capability}"

    def execute(self, environment: Environment) -> StepResult:
        return environment.invoke(self)


Step = Union[CommandInvocation, CapabilityInvocation]


# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class JobSpec:
    """
    A named verification task template.

    `matrix` maps axis names to their declared values; an empty matrix is a
    non-matrix job. `runs_on` may reference matrix values (`${{ matrix.os }}`).
    """
    name: str
    steps: Tuple[Step, ...]
    runs_on: str = "ubuntu-latest"
    matrix: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    requires: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "requires", tuple(self.requires))
        axes = self.matrix.items() if isinstance(self.matrix, Mapping) else self.matrix
        object.__setattr__(self, "matrix", tuple((k, tuple(v)) for k, v in axes))
        object.__setattr__(self, "env", _frozen({k: str(v) for k, v in dict(self.env).items()}))


@dataclass(frozen=True)
class Triggers:
    push_branches: Tuple[str, ...] = ("main",)
    pull_request: bool = True
    push: bool = True


@dataclass(frozen=True)
class Policy:
    fail_fast: bool = False
    cancel_superseded: bool = True
    max_workers: int | None = None


@dataclass(frozen=True)
class Config:
    """Immutable workflow configuration, loaded once per run."""
    name: str
    jobs: Tuple[JobSpec, ...]
    triggers: Triggers = field(default_factory=Triggers)
    policy: Policy = field(default_factory=Policy)

    def __post_init__(self) -> None:
        object.__setattr__(self, "jobs", tuple(self.jobs))
        names = [j.name for j in self.jobs]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate job names found: {dupes}")

    def job(self, name: str) -> JobSpec:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Run time
# ---------------------------------------------------------------------

_OS_FAMILIES = (
    ("windows", "Windows"),
    ("macos", "macOS"),
    ("mac", "macOS"),
    ("osx", "macOS"),
    ("ubuntu", "Linux"),
    ("linux", "Linux"),
)


def os_family(label: str) -> str:
    """Map a runner label such as `windows-latest` to `Windows`."""
    low = label.lower()
    for prefix, family in _OS_FAMILIES:
        if low.startswith(prefix):
            return family
    return label


@dataclass(frozen=True)
class EnvironmentDescriptor:
    runs_on: str
    matrix: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "matrix", _frozen(self.matrix))

    @property
    def os(self) -> str:
        return os_family(self.runs_on)


@dataclass(frozen=True)
class JobInstance:
    """One concrete execution of a JobSpec against one matrix combination."""
    job: JobSpec
    descriptor: EnvironmentDescriptor
    index: int = 0

    @property
    def name(self) -> str:
        if not self.descriptor.matrix:
            return self.job.name
        values = ", ".join(str(v) for v in self.descriptor.matrix.values())
        return f"{self.job.name} ({values})"

    @property
    def id(self) -> str:
        if not self.descriptor.matrix:
            return self.job.name
        values = "-".join(str(v) for v in self.descriptor.matrix.values())
        return f"{self.job.name}-{values}"

    @property
    def steps(self) -> Tuple[Step, ...]:
        return self.job.steps

    @property
    def cache_key(self) -> str:
        return f"{self.job.name}-{self.descriptor.os}"


@dataclass(frozen=True)
class JobResult:
    instance: JobInstance
    status: str
    steps: Tuple[StepResult, ...] = ()
    failed_step: str | None = None
    duration: float = 0.0

    @property
    def logs(self) -> str:
        chunks = []
        for s in self.steps:
            chunks.append(f"--- {s.name} (exit={s.exit_code}, {s.status})")
            if s.output:
                chunks.append(s.output.rstrip("\n"))
        return "\n".join(chunks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.instance.job.name,
            "instance": self.instance.name,
            "runs_on": self.instance.descriptor.runs_on,
            "status": self.status,
            "failed_step": self.failed_step,
            "duration": round(self.duration, 3),
            "steps": [
                {"name": s.name, "status": s.status, "exit_code": s.exit_code}
                for s in self.steps
            ],
        }


def aggregate(statuses) -> str:
    """Reduce instance statuses to one run status."""
    statuses = list(statuses)
    if FAILURE in statuses:
        return FAILURE
    if CANCELLED in statuses:
        return CANCELLED
    return SUCCESS


@dataclass(frozen=True)
class RunOutcome:
    event: Event
    status: str
    results: Tuple[JobResult, ...]
    started_at: float = 0.0
    finished_at: float = 0.0

    @classmethod
    def from_results(cls, event: Event, results, started_at: float, finished_at: float) -> RunOutcome:
        ordered = tuple(sorted(results, key=lambda r: r.instance.index))
        return cls(
            event=event,
            status=aggregate(r.status for r in ordered),
            results=ordered,
            started_at=started_at,
            finished_at=finished_at,
        )

    @property
    def duration(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": {
                "kind": self.event.kind,
                "branch": self.event.branch,
                "number": self.event.number,
                "sha": self.event.sha,
            },
            "status": self.status,
            "duration": round(self.duration, 3),
            "jobs": [r.to_dict() for r in self.results],
        }
