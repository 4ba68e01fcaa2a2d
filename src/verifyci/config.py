# config.py
from __future__ import annotations

import json
import runpy
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError
from .model import CapabilityInvocation, CommandInvocation, Config, JobSpec, Policy, Triggers

# ----------------------------------------------------------------------
# Declarative document schema (JSON / TOML)
# ----------------------------------------------------------------------


class _Doc(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class StepDoc(_Doc):
    name: str = ""
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    run: Optional[str] = None
    cwd: Optional[str] = Field(default=None, alias="working-directory")

    @model_validator(mode="after")
    def _one_kind(self) -> StepDoc:
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step needs exactly one of 'uses' or 'run'")
        if self.run is not None and self.with_:
            raise ValueError("'with' only applies to 'uses' steps")
        if self.uses is not None and self.cwd is not None:
            raise ValueError("'working-directory' only applies to 'run' steps")
        return self

    def to_step(self) -> Union[CapabilityInvocation, CommandInvocation]:
        if self.uses is not None:
            return CapabilityInvocation(capability=self.uses, params=self.with_, name=self.name)
        return CommandInvocation(run=self.run, name=self.name, cwd=self.cwd)


class StrategyDoc(_Doc):
    matrix: Dict[str, List[Any]] = Field(default_factory=dict)


class JobDoc(_Doc):
    runs_on: str = Field(default="ubuntu-latest", alias="runs-on")
    matrix: Dict[str, List[Any]] = Field(default_factory=dict)
    strategy: Optional[StrategyDoc] = None
    steps: List[StepDoc] = Field(min_length=1)
    requires: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)

    def to_spec(self, name: str) -> JobSpec:
        axes = dict(self.strategy.matrix) if self.strategy else {}
        axes.update(self.matrix)
        for key, values in axes.items():
            if not values:
                raise ConfigError(f"Job '{name}' matrix axis '{key}' has no values")
        return JobSpec(
            name=name,
            steps=tuple(s.to_step() for s in self.steps),
            runs_on=self.runs_on,
            matrix=tuple((k, tuple(v)) for k, v in axes.items()),
            requires=tuple(self.requires),
            env=self.env,
        )


class PushDoc(_Doc):
    branches: List[str] = Field(default_factory=lambda: ["*"])


class OnDoc(_Doc):
    push: Optional[PushDoc] = None
    pull_request: Union[bool, Dict[str, Any], None] = None

    def to_triggers(self) -> Triggers:
        # a bare key (`pull_request:` / `"push": null`) subscribes with defaults
        declared = self.model_fields_set
        push = "push" in declared
        return Triggers(
            push_branches=tuple((self.push or PushDoc()).branches) if push else (),
            push=push,
            pull_request="pull_request" in declared and self.pull_request is not False,
        )


class PolicyDoc(_Doc):
    fail_fast: bool = Field(default=False, alias="fail-fast")
    cancel_superseded: bool = Field(default=True, alias="cancel-superseded")
    max_workers: Optional[int] = Field(default=None, alias="max-workers", ge=1)


class WorkflowDoc(_Doc):
    name: str = "workflow"
    on: Optional[OnDoc] = None
    jobs: Dict[str, JobDoc] = Field(min_length=1)
    policy: PolicyDoc = Field(default_factory=PolicyDoc)


def config_from_dict(data: Dict[str, Any]) -> Config:
    """
    Build an immutable Config from a declarative document.

    Raises:
        ConfigError: the document does not validate
    """
    try:
        doc = WorkflowDoc.model_validate(data)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ConfigError("Invalid workflow document", errors=errors) from e

    try:
        return Config(
            name=doc.name,
            jobs=tuple(j.to_spec(name) for name, j in doc.jobs.items()),
            triggers=doc.on.to_triggers() if doc.on else Triggers(),
            policy=Policy(
                fail_fast=doc.policy.fail_fast,
                cancel_superseded=doc.policy.cancel_superseded,
                max_workers=doc.policy.max_workers,
            ),
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def _load_python(wf_path: Path) -> Config:
    module_name = f"verifyci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    loaded: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            loaded = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise ConfigError(
                    "Your workflow() is being called with arguments (name collision with a helper). "
                    "Define `def workflow(): return wf(job(...), ...)` without parameters."
                ) from e
            raise
    elif "WORKFLOW" in globals_dict:
        loaded = globals_dict["WORKFLOW"]

    if isinstance(loaded, dict):
        return config_from_dict(loaded)
    if isinstance(loaded, list) and loaded and all(isinstance(j, JobSpec) for j in loaded):
        return Config(name=wf_path.stem, jobs=tuple(loaded))
    if not isinstance(loaded, Config):
        raise ConfigError(
            "Workflow must return/define a Config. "
            "Define workflow() -> wf(...) or WORKFLOW = wf(...).",
            path=str(wf_path),
        )
    return loaded


def load_config(path: str | Path) -> Config:
    """
    Load a workflow configuration once per run.

    Supported:
      - *.py:   workflow() -> Config (or WORKFLOW = Config / a document dict)
      - *.json: declarative document
      - *.toml: declarative document
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    suffix = wf_path.suffix.lower()
    if suffix == ".py":
        return _load_python(wf_path)

    try:
        if suffix == ".json":
            data = json.loads(wf_path.read_text(encoding="utf-8"))
        elif suffix == ".toml":
            data = tomllib.loads(wf_path.read_text(encoding="utf-8"))
        else:
            raise ConfigError(f"Unsupported workflow file type: {wf_path.name}", supported=".py, .json, .toml")
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Could not parse {wf_path.name}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{wf_path.name} must contain a mapping at the top level")
    return config_from_dict(data)
