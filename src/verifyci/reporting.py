# reporting.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Dict, Optional, Protocol

from .errors import ReportError
from .model import FAILURE, SUCCESS, RunOutcome
from .ui.console import Console, get_console


class Reporter(Protocol):
    """Output port: receives the aggregate outcome exactly once per run."""

    def report(self, outcome: RunOutcome) -> None:
        ...


class ConsoleReporter:
    def __init__(self, console: Optional[Console] = None, show_logs: bool = True):
        self.console = console
        self.show_logs = show_logs

    def report(self, outcome: RunOutcome) -> None:
        console = self.console or get_console()
        if self.show_logs:
            for result in outcome.results:
                if result.status == FAILURE and result.steps:
                    console.print_logs(result.instance.name, result.logs)
        console.print_results(outcome)


class JsonFileReporter:
    """Write the outcome, including per-step logs, as a JSON document."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def report(self, outcome: RunOutcome) -> None:
        data = outcome.to_dict()
        for job, result in zip(data["jobs"], outcome.results):
            job["logs"] = result.logs
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise ReportError(f"could not write report: {e}", path=str(self.path)) from e


# commit-status vocabulary used by hosted version-control APIs
_STATE = {SUCCESS: "success", FAILURE: "failure"}


class HttpStatusReporter:
    """POST the outcome to a status endpoint (e.g. a commit-status API)."""

    def __init__(self, url: str, *, token: Optional[str] = None, context: str = "verifyci", timeout: float = 30.0):
        self.url = url
        self.token = token
        self.context = context
        self.timeout = timeout

    def payload(self, outcome: RunOutcome) -> Dict:
        failed = [r.instance.name for r in outcome.results if r.status == FAILURE]
        if outcome.status == SUCCESS:
            description = f"{len(outcome.results)} job(s) passed"
        elif outcome.status == FAILURE:
            description = f"failed: {', '.join(failed)}"
        else:
            description = "run cancelled"
        return {
            "state": _STATE.get(outcome.status, "error"),
            "context": self.context,
            "description": description[:140],
            "outcome": outcome.to_dict(),
        }

    def report(self, outcome: RunOutcome) -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        data = json.dumps(self.payload(outcome)).encode("utf-8")
        req = urllib.request.Request(self.url, data=data, headers=headers, method="POST")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response.read()
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise ReportError(f"status request failed: {e.code} {e.reason}. {error_body}", url=self.url)
        except urllib.error.URLError as e:
            raise ReportError(f"Network error: {e.reason}", url=self.url)


class MultiReporter:
    """Fan one outcome out to several sinks; every sink is attempted."""

    def __init__(self, *reporters: Reporter):
        self.reporters = list(reporters)

    def report(self, outcome: RunOutcome) -> None:
        errors = []
        for reporter in self.reporters:
            try:
                reporter.report(outcome)
            except ReportError as e:
                errors.append(e)
        if errors:
            raise errors[0]
