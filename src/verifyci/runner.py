# runner.py
from __future__ import annotations

import time
from typing import List, Optional, Protocol

from .environment import CancelToken, Environment
from .errors import ProvisioningError
from .model import CANCELLED, FAILURE, SUCCESS, Event, JobInstance, JobResult, StepResult
from .ui.console import Console, get_console

SETUP_STEP = "Set up job"


class Provisioner(Protocol):
    def provision(
        self,
        instance: JobInstance,
        cancel: CancelToken,
        event: Optional[Event] = None,
        run_id: Optional[str] = None,
    ) -> Environment:
        ...

    def release(self, environment: Environment) -> None:
        ...


class JobRunner:
    """
    Executes one JobInstance's steps, strictly in order.

    The first step that does not succeed halts the instance; there are no
    retries at this layer. Failures never escape as exceptions: they are
    recorded in the returned JobResult.
    """

    def __init__(self, provisioner: Provisioner, console: Optional[Console] = None):
        self.provisioner = provisioner
        self.console = console

    def run(
        self,
        instance: JobInstance,
        cancel: CancelToken,
        event: Optional[Event] = None,
        run_id: Optional[str] = None,
    ) -> JobResult:
        console = self.console or get_console()
        started = time.monotonic()

        def done(status: str, steps: List[StepResult], failed: str | None = None) -> JobResult:
            return JobResult(
                instance=instance,
                status=status,
                steps=tuple(steps),
                failed_step=failed,
                duration=time.monotonic() - started,
            )

        # queued instances of a cancelled run never start
        if cancel.cancelled:
            console.print_cancelled(instance.name)
            return done(CANCELLED, [])

        console.print_job_start(instance.name, instance.descriptor.runs_on)

        try:
            env = self.provisioner.provision(instance, cancel, event, run_id)
        except ProvisioningError as e:
            setup = StepResult(name=SETUP_STEP, status=FAILURE, exit_code=1, output=str(e))
            console.print_failure(SETUP_STEP, e.message, exit_code=1, is_job=False)
            return done(FAILURE, [setup], SETUP_STEP)

        results: List[StepResult] = []
        try:
            status, failed = self._run_steps(env, results, console)
            if status == SUCCESS:
                self._run_post_hooks(env, console)
        finally:
            self.provisioner.release(env)

        result = done(status, results, failed)
        if status == SUCCESS:
            console.print_success(instance.name, result.duration)
        elif status == CANCELLED:
            console.print_cancelled(instance.name)
        else:
            console.print_failure(instance.name, f"step '{failed}' failed", is_job=True)
        return result

    def _run_steps(self, env: Environment, results: List[StepResult], console: Console):
        name = env.instance.name
        for step in env.instance.steps:
            if env.cancel.cancelled:
                return CANCELLED, None

            console.print_step(name, step.label)
            try:
                result = step.execute(env)
            except Exception as e:
                result = StepResult(name=step.label, status=FAILURE, exit_code=1, output=f"{type(e).__name__}: {e}")
            results.append(result)

            if result.status == CANCELLED:
                return CANCELLED, None
            if not result.ok:
                console.print_failure(result.name, result.output, exit_code=result.exit_code)
                return FAILURE, result.name
            console.print_debug(f"[{name}] {result.name}: exit={result.exit_code}")

        return SUCCESS, None

    def _run_post_hooks(self, env: Environment, console: Console) -> None:
        # Post-job work (cache saves) is advisory and cannot change the result.
        for hook_name, hook in env.post_hooks:
            console.print_step(env.instance.name, hook_name)
            try:
                hook(env)
            except Exception as e:
                console.print_warning(f"[{env.instance.name}] {hook_name} failed: {e}")
