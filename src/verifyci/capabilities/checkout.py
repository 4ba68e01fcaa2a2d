# capabilities/checkout.py
from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING, Any, Dict

from ..errors import CapabilityError, StepFailure
from ..git_facts import git

if TYPE_CHECKING:
    from ..environment import Environment
    from ..model import CapabilityInvocation


def checkout(env: Environment, params: Dict[str, Any], step: CapabilityInvocation) -> str:
    """
    Populate the instance work directory with the repository.

    Isolated environments get a fresh clone at `ref` (default: the event sha,
    then HEAD). Non-isolated environments already sit in the working tree, so
    this only checks that it is a git checkout. Clones see committed content
    only.
    """
    if not env.isolated:
        if not git.is_repo(env.workdir):
            raise CapabilityError(
                f"{env.workdir} is not a git checkout",
                step=step.label,
                hint="Run inside a git repository or use --isolate with a committed tree.",
            )
        return f"using working tree at {env.workdir}"

    ref = params.get("ref") or (env.event.sha if env.event else None)
    try:
        if git.is_dirty(env.repo_root):
            env.console.print_warning(f"[{env.instance.name}] uncommitted changes are not part of the clone")
        git.clone(env.repo_root, env.workdir, ref=ref)
    except FileNotFoundError:
        raise CapabilityError("git command not found", step=step.label, hint="Install Git or fix PATH.")
    except subprocess.CalledProcessError as e:
        raise StepFailure(
            job=env.instance.name,
            step=step.label,
            cmd=" ".join(str(a) for a in e.cmd),
            exit_code=e.returncode,
        ) from e

    return f"checked out {ref or 'HEAD'} into {env.workdir}"
