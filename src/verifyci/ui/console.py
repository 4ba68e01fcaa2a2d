"""Console output formatting utilities for verifyci."""

from __future__ import annotations

import sys
import threading
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..model import RunOutcome


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Output stream (defaults to sys.stdout at write time)
            err_stream: Error stream (defaults to sys.stderr at write time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        # Instances report from worker threads; keep lines whole.
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event: str,
        job_count: int,
        instance_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Event: {event}",
            f"Jobs: {job_count} ({instance_count} instances)",
            "",
        )

    def print_run_skipped(self, workflow: str, event: str) -> None:
        self._out(f"\nRUN SKIPPED: {workflow} does not trigger on {event}")

    def print_run_superseded(self, group: str) -> None:
        self._out(f"RUN SUPERSEDED: cancelling in-flight run for {group}")

    def print_job_start(self, name: str, runs_on: str) -> None:
        """Print job start message."""
        self._out(f"JOB STARTED: {name} [{runs_on}]")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_success(self, name: str, duration: Optional[float] = None) -> None:
        """Print success message."""
        suffix = f" in {duration:.1f}s" if duration is not None else ""
        self._out(f"[{name}] STATUS: success{suffix}")

    def print_cancelled(self, name: str) -> None:
        self._out(f"[{name}] STATUS: cancelled")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # Show first line of error for non-debug mode
            error_line = reason.split('\n')[0] if reason else "Unknown error"
            if error_line:
                lines.append(f"Error: {error_line}")
        self._out(*lines)

    def print_cache_hit(self, job: str, key: str) -> None:
        """Print cache hit message."""
        self._out(f"[{job}] CACHE: hit ({key})")

    def print_cache_miss(self, job: str, reason: str) -> None:
        """Print cache miss message."""
        self._out(f"[{job}] CACHE: miss ({reason})")

    def print_cache_saved(self, job: str, key: str) -> None:
        """Print cache save message."""
        short_key = key[:40] + "..." if len(key) > 40 else key
        self._out(f"[{job}] CACHE: saved ({short_key})")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        self._out(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        self._out(f"  {name} (skipped: {reason})")

    def print_results(self, outcome: RunOutcome) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for result in outcome.results:
            line = f"  {result.instance.name}: {result.status.upper()}"
            if result.failed_step:
                line += f" (step: {result.failed_step})"
            lines.append(line)
        lines.append("-" * 40)
        lines.append(f"  RUN: {outcome.status.upper()} in {outcome.duration:.1f}s")
        self._out(*lines)

    def print_logs(self, name: str, logs: str) -> None:
        self._out(f"\nLogs for {name}:", "=" * 60, logs, "=" * 60)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__, file=self._err_stream or sys.stderr)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
