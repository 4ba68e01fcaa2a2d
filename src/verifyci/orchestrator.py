# orchestrator.py
from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from .environment import CancelToken
from .matrix import expand_all
from .model import FAILURE, PULL_REQUEST, Config, Event, JobInstance, JobResult, RunOutcome, StepResult
from .reporting import ConsoleReporter, Reporter
from .runner import JobRunner, Provisioner
from .trigger import applicable_jobs
from .ui.console import Console, get_console


class Run:
    """Handle on one in-flight run: cancel it, or wait for its outcome."""

    def __init__(self, event: Event, instances: List[JobInstance]):
        self.id = uuid.uuid4().hex[:12]
        self.event = event
        self.instances = instances
        self.token = CancelToken()
        self.outcome: Optional[RunOutcome] = None
        self.error: Optional[Exception] = None
        self._done = threading.Event()

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> Optional[RunOutcome]:
        """
        Block until every instance reached a terminal state.

        Raises:
            TimeoutError: the run did not finish within `timeout`
            ReportError: the outcome could not be reported
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"run for {self.event.group} still in progress")
        if self.error is not None:
            raise self.error
        return self.outcome


class RunRegistry:
    """In-flight runs by event group; a newer run supersedes an older one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, Run] = {}

    def register(self, run: Run) -> Optional[Run]:
        with self._lock:
            previous = self._runs.get(run.event.group)
            self._runs[run.event.group] = run
        if previous is not None and not previous.done:
            return previous
        return None

    def release(self, run: Run) -> None:
        with self._lock:
            if self._runs.get(run.event.group) is run:
                del self._runs[run.event.group]

    def active(self) -> List[Run]:
        with self._lock:
            return list(self._runs.values())


class Orchestrator:
    """
    Top-level coordinator for one workflow configuration.

    - Trigger evaluation -> matrix expansion -> concurrent instances.
    - Every launched instance is awaited before aggregation (barrier).
    - The reporter is called exactly once per launched run.
    - No fail-fast unless the policy asks for it.
    """

    def __init__(
        self,
        config: Config,
        provisioner: Provisioner,
        *,
        reporter: Optional[Reporter] = None,
        console: Optional[Console] = None,
    ):
        self.config = config
        self.console = console
        self.runner = JobRunner(provisioner, console=console)
        self.reporter = reporter or ConsoleReporter(console)
        self.registry = RunRegistry()

    def _console(self) -> Console:
        return self.console or get_console()

    def plan(self, event: Event) -> List[JobInstance]:
        """The instances an event would launch, in reporting order."""
        return expand_all(applicable_jobs(self.config, event))

    def submit(self, event: Event) -> Optional[Run]:
        """
        Launch a run for `event` in the background.
        Returns None when the event does not trigger this workflow.
        """
        console = self._console()
        instances = self.plan(event)
        if not instances:
            console.print_run_skipped(self.config.name, _describe(event))
            return None

        run = Run(event, instances)
        previous = self.registry.register(run)
        if previous is not None and self.config.policy.cancel_superseded:
            console.print_run_superseded(event.group)
            previous.cancel()

        console.print_run_started(
            workflow=self.config.name,
            event=_describe(event),
            job_count=len({i.job.name for i in instances}),
            instance_count=len(instances),
        )
        thread = threading.Thread(target=self._execute, args=(run,), name=f"verifyci-run-{event.group}")
        thread.start()
        return run

    def handle(self, event: Event) -> Optional[RunOutcome]:
        """Run `event` to completion and return its outcome."""
        run = self.submit(event)
        if run is None:
            return None
        return run.wait()

    def _execute(self, run: Run) -> None:
        console = self._console()
        policy = self.config.policy
        started = time.time()
        results: List[JobResult] = []

        try:
            max_workers = policy.max_workers or len(run.instances)
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="verifyci-job") as pool:
                futures = {
                    pool.submit(self.runner.run, instance, run.token, run.event, run.id): instance
                    for instance in run.instances
                }
                for future in as_completed(futures):
                    instance = futures[future]
                    try:
                        result = future.result()
                    except Exception as e:
                        result = _crashed(instance, e)
                    results.append(result)

                    if result.status == FAILURE and policy.fail_fast and not run.token.cancelled:
                        console.print_info(f"fail-fast: cancelling remaining jobs after {instance.name}")
                        run.token.cancel()

            run.outcome = RunOutcome.from_results(run.event, results, started, time.time())
            self.reporter.report(run.outcome)
        except Exception as e:
            run.error = e
        finally:
            self.registry.release(run)
            run._done.set()


def _crashed(instance: JobInstance, exc: Exception) -> JobResult:
    step = StepResult(name="internal error", status=FAILURE, exit_code=1, output=f"{type(exc).__name__}: {exc}")
    return JobResult(instance=instance, status=FAILURE, steps=(step,), failed_step=step.name)


def _describe(event: Event) -> str:
    if event.kind == PULL_REQUEST and event.number is not None:
        return f"pull_request #{event.number} -> {event.branch or '?'}"
    if event.branch:
        return f"{event.kind} {event.branch}"
    return event.kind or "<unknown>"
