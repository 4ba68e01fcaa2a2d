# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def is_repo(path: str | Path) -> bool:
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return False


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Return the full SHA hash of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if the working tree has modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def get_current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Return the current branch name, or the HEAD SHA when detached.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if branch == "HEAD":
        return head_sha(cwd)
    return branch


def clone(source: str | Path, dest: str | Path, ref: Optional[str] = None) -> Path:
    """
    Clone `source` into `dest` and check out `ref` (default: source HEAD).

    Local sources are cloned with hardlinks, so isolating a job costs little.
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    _git(["clone", "--quiet", "--no-checkout", str(source), str(dest)])
    _git(["checkout", "--quiet", "--force", ref or "HEAD"], cwd=dest)
    return dest
