# cli.py
from __future__ import annotations

import subprocess
import sys
from dataclasses import replace
from pathlib import Path

import click

from . import settings
from .cache import CacheStore
from .config import load_config
from .environment import LocalProvisioner
from .errors import VerifyError
from .git_facts.git import get_current_ref, head_sha
from .model import CANCELLED, EVENT_KINDS, FAILURE, Config, Event
from .orchestrator import Orchestrator
from .reporting import ConsoleReporter, HttpStatusReporter, JsonFileReporter, MultiReporter
from .ui.console import Console, get_console, set_console

EXIT_FAILURE = 1
EXIT_CANCELLED = 2
EXIT_INTERRUPTED = 130


def find_workflow_files(directory: Path = Path(".")) -> list[Path]:
    """
    Find all workflow files in a directory.

    Returns:
        List of Path objects for workflow files
    """
    found = []
    for pattern in ("verifyci_workflow.py", "*_workflow.py", "verifyci.json", "verifyci.toml"):
        for path in sorted(directory.glob(pattern)):
            if path not in found:
                found.append(path)
    return found


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and not workflow_path.suffix:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  verifyci run --workflow my_workflow.py",
            )
            sys.exit(EXIT_FAILURE)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  verifyci_workflow.py",
                "  *_workflow.py",
                "  verifyci.json / verifyci.toml",
            ],
            suggestion="Create a workflow file:\n  verifyci_workflow.py\n\nOr specify a workflow explicitly:\n  verifyci run --workflow my_workflow.py",
        )
        sys.exit(EXIT_FAILURE)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  verifyci run --workflow verifyci_workflow.py",
        )
        sys.exit(EXIT_FAILURE)

    return workflow_files[0]


def build_event(kind: str, branch: str | None, number: int | None, sha: str | None) -> Event:
    """Event from CLI flags; `env` reads the hosted-runner variables."""
    if kind == "env":
        return Event.from_env()

    # pull requests take the current ref too, so unnumbered ones keep distinct groups
    if branch is None:
        try:
            branch = get_current_ref()
        except (subprocess.CalledProcessError, FileNotFoundError):
            branch = None
    if sha is None:
        try:
            sha = head_sha()
        except (subprocess.CalledProcessError, FileNotFoundError):
            sha = None
    return Event(kind=kind, branch=branch, number=number, sha=sha)


def _load(ctx, workflow: str | None) -> tuple[Path, Config]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_config(workflow_path)
    except (VerifyError, FileNotFoundError, TypeError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(EXIT_FAILURE)


event_options = [
    click.option(
        "--event",
        "event_kind",
        type=click.Choice([*EVENT_KINDS, "env"]),
        default="push",
        show_default=True,
        help="Event to simulate ('env' reads GITHUB_* variables)",
    ),
    click.option("--branch", default=None, help="Target branch (defaults to the current git branch for push)"),
    click.option("--pr-number", default=None, type=int, help="Pull request number"),
    click.option("--sha", default=None, help="Commit the event refers to (defaults to HEAD)"),
]


def with_event_options(fn):
    for option in reversed(event_options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """verifyci: event-triggered, matrix-aware build verification."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to verifyci_workflow.py if present)")
@with_event_options
@click.pass_context
def plan(ctx, workflow, event_kind, branch, pr_number, sha):
    """Show which job instances an event would launch."""
    console = get_console()
    workflow_path, config = _load(ctx, workflow)
    event = build_event(event_kind, branch, pr_number, sha)

    orchestrator = Orchestrator(config, LocalProvisioner("."), console=console)
    instances = orchestrator.plan(event)

    console.print_header(f"{config.name} ({workflow_path.name})")
    if not instances:
        for j in config.jobs:
            console.print_plan_job_skipped(j.name, f"not triggered by {event.kind} {event.branch or ''}".rstrip())
        return
    for instance in instances:
        console.print_plan_job(instance.name, f"runs-on {instance.descriptor.runs_on}, cache key {instance.cache_key}")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to verifyci_workflow.py if present)")
@with_event_options
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Maximum parallel job instances")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--cache/--no-cache", "use_cache", default=True, help="Enable the local cache layer")
@click.option("--work-dir", default=settings.WORK_DIR, show_default=True, help="Root for isolated job directories")
@click.option("--isolate/--no-isolate", default=False, help="Give every instance its own clone of the repository")
@click.option("--strict-os", is_flag=True, default=False, help="Fail instances whose runner OS differs from the host")
@click.option("--fail-fast/--no-fail-fast", default=None, help="Cancel remaining instances after the first failure")
@click.option("--report-json", default=None, type=click.Path(dir_okay=False), help="Write the run outcome as JSON")
@click.option("--report-url", default=None, help="POST the run outcome to this status endpoint")
@click.option("--report-token", default=None, envvar="VERIFYCI_REPORT_TOKEN", help="Bearer token for --report-url")
@click.pass_context
def run(
    ctx,
    workflow,
    event_kind,
    branch,
    pr_number,
    sha,
    workers,
    cache_dir,
    use_cache,
    work_dir,
    isolate,
    strict_os,
    fail_fast,
    report_json,
    report_url,
    report_token,
):
    """Run a workflow for one event."""
    console = get_console()
    workflow_path, config = _load(ctx, workflow)

    policy = config.policy
    if fail_fast is not None:
        policy = replace(policy, fail_fast=fail_fast)
    if workers is not None:
        policy = replace(policy, max_workers=workers)
    config = replace(config, policy=policy)

    reporters = [ConsoleReporter(console)]
    if report_json:
        reporters.append(JsonFileReporter(report_json))
    if report_url:
        reporters.append(HttpStatusReporter(report_url, token=report_token, context=config.name))

    provisioner = LocalProvisioner(
        ".",
        work_root=work_dir,
        isolate=isolate,
        strict=strict_os,
        cache=CacheStore(cache_dir) if use_cache else None,
        console=console,
    )
    orchestrator = Orchestrator(config, provisioner, reporter=MultiReporter(*reporters), console=console)
    console.print_debug(f"Loaded {len(config.jobs)} job(s) from {workflow_path}")

    try:
        event = build_event(event_kind, branch, pr_number, sha)
        shared = len(orchestrator.plan(event))
        if not isolate and shared > 1:
            console.print_warning(
                f"{shared} job instances share the working tree {provisioner.repo_root}; "
                "use --isolate to give each its own clone"
            )
        outcome = orchestrator.handle(event)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user, cancelling running jobs")
        for active in orchestrator.registry.active():
            active.cancel()
        sys.exit(EXIT_INTERRUPTED)
    except VerifyError as e:
        console.print_error(e.kind.capitalize() + " error", e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(EXIT_FAILURE)

    if outcome is None:
        return
    if outcome.status == FAILURE:
        sys.exit(EXIT_FAILURE)
    if outcome.status == CANCELLED:
        sys.exit(EXIT_CANCELLED)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
