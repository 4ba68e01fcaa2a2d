# verifyci_workflow.py
# Build verification for the Rust CLI: compile on three operating systems,
# check formatting and run clippy, on every push to master and every PR.
from __future__ import annotations

from verifyci.dsl import job, matrix, on, sh, uses, wf


def workflow():
    return wf(
        # cargo check on every target OS
        job(
            "build",
            uses("actions/checkout@v4.2.2"),
            uses("hecrj/setup-rust-action@v2.0.1"),
            uses("Swatinem/rust-cache@v2.8.0", key="${{ runner.os }}"),
            sh("cargo check", "cargo check"),
            runs_on="${{ matrix.os }}",
            matrix=matrix("os", ["ubuntu-latest", "windows-latest", "macos-latest"]),
        ),

        # formatting
        job(
            "check-format",
            uses("actions/checkout@v4.2.2"),
            uses("hecrj/setup-rust-action@v2.0.1", {"rust-version": "stable"}, components="rustfmt"),
            sh("cargo fmt", "cargo fmt -- --check"),
            runs_on="ubuntu-latest",
        ),

        # lint, with its own cache namespace so it never collides with build
        job(
            "lint",
            uses("actions/checkout@v4.2.2"),
            uses("hecrj/setup-rust-action@v2.0.1", {"rust-version": "stable"}, components="clippy"),
            uses("Swatinem/rust-cache@v2.8.0", key="lint"),
            sh("cargo clippy", "cargo clippy"),
            runs_on="ubuntu-latest",
        ),
        name="Build",
        triggers=on(push=["master"], pull_request=True),
    )
