# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class VerifyError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - per-job diagnostics in the run report
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: Dict[str, object] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(VerifyError):
    def __init__(self, message: str, **details):
        super().__init__(kind="config", message=message, details=details)


class ProvisioningError(VerifyError):
    def __init__(self, message: str, *, job: str | None = None, **details):
        super().__init__(kind="provisioning", message=message, job=job, details=details)


class CapabilityError(VerifyError):
    """A capability was misused or could not do its work."""

    def __init__(self, message: str, *, step: str | None = None, hint: str | None = None, **details):
        if hint:
            details["hint"] = hint
        super().__init__(kind="capability", message=message, step=step, details=details)


class CacheError(VerifyError):
    def __init__(self, message: str, **details):
        super().__init__(kind="cache", message=message, details=details)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class ReportError(VerifyError):
    """The run outcome could not be delivered to a reporting sink."""

    def __init__(self, message: str, **details):
        super().__init__(kind="report", message=message, details=details)
