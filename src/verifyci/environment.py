# environment.py
from __future__ import annotations

import os
import platform
import shutil
import signal
import subprocess
import threading
import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from . import settings
from .cache import CacheStore
from .errors import CacheError, CapabilityError, ConfigError, ProvisioningError, StepFailure
from .expressions import render
from .model import (
    CANCELLED,
    FAILURE,
    SUCCESS,
    CapabilityInvocation,
    CommandInvocation,
    Event,
    JobInstance,
    StepResult,
)
from .ui.console import Console, get_console

_POLL_SECONDS = 0.1
_TERMINATE_GRACE = 5.0

# A capability returns the text it wants recorded as step output, or raises.
Capability = Callable[["Environment", Dict[str, Any], CapabilityInvocation], Optional[str]]
PostHook = Callable[["Environment"], None]


class CancelToken:
    """Cooperative cancellation flag shared by every instance of one run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


def _tail(text: str | None, limit: int = settings.OUTPUT_TAIL) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[-limit:]


def _terminate(proc: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
    else:
        proc.terminate()


def _kill(proc: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
    else:
        proc.kill()


@dataclass
class Environment:
    """
    Isolated execution context owned by exactly one JobInstance.
    Steps execute against it via `run_command` / `invoke`.
    """
    instance: JobInstance
    workdir: Path
    repo_root: Path
    cancel: CancelToken
    capabilities: Mapping[str, Capability]
    cache: Optional[CacheStore] = None
    event: Optional[Event] = None
    console: Console = field(default_factory=get_console)
    isolated: bool = False
    run_id: str = ""
    # held while writing into a work directory other instances also use
    tree_lock: Optional[threading.Lock] = None
    env: Dict[str, str] = field(default_factory=dict)
    post_hooks: List[Tuple[str, PostHook]] = field(default_factory=list)

    @property
    def context(self) -> Dict[str, Any]:
        d = self.instance.descriptor
        event = self.event or Event(kind="")
        return {
            "matrix": dict(d.matrix),
            "runner": {"os": d.os, "label": d.runs_on},
            "job": {"name": self.instance.job.name, "id": self.instance.id, "cache_key": self.instance.cache_key},
            "event": {"kind": event.kind, "branch": event.branch or "", "sha": event.sha or ""},
        }

    def add_post_hook(self, name: str, hook: PostHook) -> None:
        self.post_hooks.append((name, hook))

    def exclusive_tree(self):
        """Serialize bulk writes (cache restores) into a shared work directory."""
        return self.tree_lock if self.tree_lock is not None else nullcontext()

    def process_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.instance.job.env)
        env.update(self.env)
        return env

    # -----------------------------------------------------------------
    # Step execution
    # -----------------------------------------------------------------

    def run_command(self, step: CommandInvocation) -> StepResult:
        name = step.label
        try:
            cmd = render(step.run, self.context)
        except ConfigError as e:
            return StepResult(name=name, status=FAILURE, exit_code=1, output=str(e))
        cwd = (self.workdir / (step.cwd or ".")).resolve()
        if not cwd.is_dir():
            return StepResult(name=name, status=FAILURE, exit_code=1, output=f"cwd not found: {cwd}")

        return self.run_process(name, cmd, cwd=cwd, shell=True)

    def run_process(self, name: str, cmd, *, cwd: Optional[Path] = None, shell: bool = False) -> StepResult:
        """Run a process to completion, or until the run is cancelled."""
        try:
            proc = subprocess.Popen(
                cmd,
                shell=shell,
                cwd=str(cwd or self.workdir),
                env=self.process_env(),
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            return StepResult(name=name, status=FAILURE, exit_code=127, output=str(e))

        while True:
            try:
                out, _ = proc.communicate(timeout=_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if not self.cancel.cancelled:
                    continue
                _terminate(proc)
                try:
                    out, _ = proc.communicate(timeout=_TERMINATE_GRACE)
                except subprocess.TimeoutExpired:
                    _kill(proc)
                    out, _ = proc.communicate()
                return StepResult(name=name, status=CANCELLED, exit_code=proc.returncode, output=_tail(out))

        status = SUCCESS if proc.returncode == 0 else FAILURE
        return StepResult(name=name, status=status, exit_code=proc.returncode, output=_tail(out))

    def invoke(self, step: CapabilityInvocation) -> StepResult:
        name = step.label
        # `owner/action@v1.2.3` resolves like `owner/action`
        capability = self.capabilities.get(step.capability) or self.capabilities.get(step.capability.split("@", 1)[0])
        if capability is None:
            known = ", ".join(sorted(self.capabilities)) or "none"
            return StepResult(
                name=name,
                status=FAILURE,
                exit_code=1,
                output=f"unknown capability '{step.capability}' (known: {known})",
            )

        try:
            params = render(dict(step.params), self.context)
            output = capability(self, params, step)
        except StepFailure as e:
            return StepResult(name=name, status=FAILURE, exit_code=e.exit_code or 1, output=str(e))
        except (CapabilityError, CacheError, ConfigError) as e:
            return StepResult(name=name, status=FAILURE, exit_code=1, output=str(e))

        if self.cancel.cancelled:
            return StepResult(name=name, status=CANCELLED, exit_code=1, output=output or "")
        return StepResult(name=name, status=SUCCESS, exit_code=0, output=output or "")


# ---------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------

_HOST_FAMILIES = {"Linux": "Linux", "Darwin": "macOS", "Windows": "Windows"}


def host_os() -> str:
    system = platform.system()
    return _HOST_FAMILIES.get(system, system)


class LocalProvisioner:
    """
    Prepares environments on the local machine.

    - isolate=False: every instance works directly in repo_root; cache
      restores into that shared tree are serialized.
    - isolate=True: each instance gets its own directory under
      work_root/<run id>, populated by the `checkout` capability and removed
      on release.
    - strict=True: refuse instances whose runner OS differs from the host;
      otherwise the runner label only shapes RUNNER_OS and cache keys.
    """

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        work_root: str | Path = settings.WORK_DIR,
        isolate: bool = False,
        strict: bool = False,
        keep_workdirs: bool = False,
        capabilities: Optional[Mapping[str, Capability]] = None,
        cache: Optional[CacheStore] = None,
        console: Optional[Console] = None,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.work_root = Path(work_root)
        if not self.work_root.is_absolute():
            self.work_root = self.repo_root / self.work_root
        self.isolate = isolate
        self.strict = strict
        self.keep_workdirs = keep_workdirs
        if capabilities is None:
            from .capabilities import default_capabilities

            capabilities = default_capabilities()
        self.capabilities = dict(capabilities)
        self.cache = cache
        self.console = console
        # in-place instances all write into repo_root
        self._tree_lock = threading.Lock()

    def provision(
        self,
        instance: JobInstance,
        cancel: CancelToken,
        event: Optional[Event] = None,
        run_id: Optional[str] = None,
    ) -> Environment:
        """
        Isolated work directories live under work_root/<run_id>/<instance id>;
        without a run id a fresh one is drawn.

        Raises:
            ProvisioningError: the environment cannot be prepared
        """
        descriptor = instance.descriptor
        if self.strict and descriptor.os != host_os():
            raise ProvisioningError(
                f"runner '{descriptor.runs_on}' needs {descriptor.os}, host is {host_os()}",
                job=instance.name,
            )

        run_id = run_id or uuid.uuid4().hex[:12]
        tree_lock = None
        if self.isolate:
            # work_root/<run>/<instance>: overlapping runs never share a directory
            workdir = self.work_root / run_id / instance.id
            try:
                if workdir.exists():
                    shutil.rmtree(workdir)
                workdir.mkdir(parents=True)
            except OSError as e:
                raise ProvisioningError(f"cannot prepare work directory: {e}", job=instance.name) from e
        else:
            workdir = self.repo_root
            if not workdir.is_dir():
                raise ProvisioningError(f"repository root not found: {workdir}", job=instance.name)
            tree_lock = self._tree_lock

        return Environment(
            instance=instance,
            workdir=workdir,
            repo_root=self.repo_root,
            cancel=cancel,
            capabilities=self.capabilities,
            cache=self.cache,
            event=event,
            console=self.console or get_console(),
            isolated=self.isolate,
            run_id=run_id,
            tree_lock=tree_lock,
            env={
                "CI": "true",
                "RUNNER_OS": descriptor.os,
                "VERIFYCI_JOB": instance.job.name,
                "VERIFYCI_INSTANCE": instance.name,
                "VERIFYCI_RUNS_ON": descriptor.runs_on,
                "VERIFYCI_RUN_ID": run_id,
            },
        )

    def release(self, environment: Environment) -> None:
        if not environment.isolated or self.keep_workdirs:
            return
        shutil.rmtree(environment.workdir, ignore_errors=True)
        try:
            environment.workdir.parent.rmdir()
        except OSError:
            pass  # sibling instances of the run are still working
