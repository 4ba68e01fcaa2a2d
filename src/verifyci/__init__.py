from .dsl import job, sh, uses, matrix, on, wf
from .config import load_config, config_from_dict
from .model import Config, Event, JobSpec, RunOutcome
from .orchestrator import Orchestrator

__all__ = [
    "job", "sh", "uses", "matrix", "on", "wf",
    "load_config", "config_from_dict",
    "Config", "Event", "JobSpec", "RunOutcome", "Orchestrator",
]
