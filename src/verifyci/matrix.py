# matrix.py
from __future__ import annotations

from itertools import product
from typing import Iterable, List

from .errors import ConfigError
from .expressions import render
from .model import EnvironmentDescriptor, JobInstance, JobSpec


def combinations(job: JobSpec) -> List[dict]:
    """
    Cross product of the job's matrix axes, in declaration order.

    The first axis varies slowest, so a single axis yields its values
    exactly as declared. A job without a matrix has one empty combination.
    """
    if not job.matrix:
        return [{}]

    keys = [k for k, _ in job.matrix]
    for key, values in job.matrix:
        if not values:
            raise ConfigError(f"Job '{job.name}' matrix axis '{key}' has no values")

    return [dict(zip(keys, combo)) for combo in product(*(values for _, values in job.matrix))]


def expand(job: JobSpec, start: int = 0) -> List[JobInstance]:
    """Produce one JobInstance per matrix combination; steps are shared as-is."""
    instances: List[JobInstance] = []
    for offset, values in enumerate(combinations(job)):
        runs_on = str(render(job.runs_on, {"matrix": values}))
        descriptor = EnvironmentDescriptor(runs_on=runs_on, matrix=values)
        instances.append(JobInstance(job=job, descriptor=descriptor, index=start + offset))
    return instances


def expand_all(jobs: Iterable[JobSpec]) -> List[JobInstance]:
    out: List[JobInstance] = []
    for job in jobs:
        out.extend(expand(job, start=len(out)))
    return out
