import json

import pytest
from click.testing import CliRunner
from conftest import py

from verifyci.cli import cli, find_workflow_files

OK = py("print('compiled')")
FAIL = py("import sys; print('boom'); sys.exit(4)")


def _write_workflow(path, build_cmd=OK):
    document = {
        "name": "Build",
        "on": {"push": {"branches": ["master"]}, "pull_request": True},
        "jobs": {
            "build": {
                "runs-on": "${{ matrix.os }}",
                "matrix": {"os": ["ubuntu-latest", "windows-latest"]},
                "steps": [{"name": "cargo check", "run": build_cmd}],
            },
            "lint": {"steps": [{"name": "cargo clippy", "run": OK}]},
        },
    }
    path.write_text(json.dumps(document))


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _invoke(*args):
    return CliRunner().invoke(cli, list(args), obj={})


def test_run_success_exits_zero(workspace):
    _write_workflow(workspace / "verifyci.json")

    result = _invoke("run", "--branch", "master", "--sha", "abc")

    assert result.exit_code == 0, result.output
    assert "build (windows-latest): SUCCESS" in result.output
    assert "RUN: SUCCESS" in result.output


def test_run_failure_exits_one_and_shows_logs(workspace):
    _write_workflow(workspace / "verifyci.json", build_cmd=FAIL)

    result = _invoke("run", "--branch", "master", "--sha", "abc")

    assert result.exit_code == 1
    assert "boom" in result.output
    assert "lint: SUCCESS" in result.output
    assert "RUN: FAILURE" in result.output


def test_run_on_untriggered_branch_is_skipped(workspace):
    _write_workflow(workspace / "verifyci.json")

    result = _invoke("run", "--branch", "feature", "--sha", "abc")

    assert result.exit_code == 0
    assert "RUN SKIPPED" in result.output
    assert "RESULTS" not in result.output


def test_pull_request_event(workspace):
    _write_workflow(workspace / "verifyci.json")

    result = _invoke("run", "--event", "pull_request", "--pr-number", "12", "--branch", "master", "--sha", "abc")

    assert result.exit_code == 0, result.output
    assert "pull_request #12" in result.output


def test_event_from_runner_environment(workspace, monkeypatch):
    _write_workflow(workspace / "verifyci.json")
    monkeypatch.setenv("GITHUB_EVENT_NAME", "push")
    monkeypatch.setenv("GITHUB_REF_NAME", "develop")

    result = _invoke("run", "--event", "env")

    assert result.exit_code == 0
    assert "RUN SKIPPED" in result.output


def test_report_json(workspace):
    _write_workflow(workspace / "verifyci.json", build_cmd=FAIL)
    report = workspace / "out" / "report.json"

    result = _invoke("run", "--branch", "master", "--sha", "abc", "--report-json", str(report))

    data = json.loads(report.read_text())
    assert result.exit_code == 1
    assert data["status"] == "failure"
    assert data["event"] == {"kind": "push", "branch": "master", "number": None, "sha": "abc"}
    assert [j["instance"] for j in data["jobs"]] == ["build (ubuntu-latest)", "build (windows-latest)", "lint"]
    assert "boom" in data["jobs"][0]["logs"]


def test_plan_lists_instances(workspace):
    _write_workflow(workspace / "verifyci.json")

    result = _invoke("plan", "--branch", "master", "--sha", "abc")

    assert result.exit_code == 0
    assert "build (ubuntu-latest) (runs-on ubuntu-latest, cache key build-Linux)" in result.output
    assert "build (windows-latest) (runs-on windows-latest, cache key build-Windows)" in result.output
    assert "lint (runs-on ubuntu-latest" in result.output


def test_plan_for_untriggered_event(workspace):
    _write_workflow(workspace / "verifyci.json")

    result = _invoke("plan", "--branch", "feature", "--sha", "abc")

    assert result.exit_code == 0
    assert "build (skipped: not triggered by push feature)" in result.output


def test_missing_workflow_exits_one(workspace):
    result = _invoke("run", "--branch", "master", "--sha", "abc")

    assert result.exit_code == 1
    assert "No workflow file found" in result.output


def test_invalid_workflow_exits_one(workspace):
    (workspace / "verifyci.json").write_text(json.dumps({"jobs": {"build": {"steps": [{"name": "x"}]}}}))

    result = _invoke("run", "--branch", "master", "--sha", "abc")

    assert result.exit_code == 1
    assert "Failed to load workflow" in result.output


def test_find_workflow_files(tmp_path):
    (tmp_path / "verifyci_workflow.py").write_text("")
    (tmp_path / "nightly_workflow.py").write_text("")
    (tmp_path / "verifyci.toml").write_text("")

    names = [p.name for p in find_workflow_files(tmp_path)]

    assert names == ["verifyci_workflow.py", "nightly_workflow.py", "verifyci.toml"]


def test_shared_working_tree_is_warned_about(workspace):
    _write_workflow(workspace / "verifyci.json")

    shared = _invoke("run", "--branch", "master", "--sha", "abc")
    isolated = _invoke("run", "--branch", "master", "--sha", "abc", "--isolate")

    assert "WARNING: 3 job instances share the working tree" in shared.output
    assert "share the working tree" not in isolated.output


def test_unnumbered_pull_requests_take_the_current_ref(monkeypatch):
    import verifyci.cli as cli_module

    monkeypatch.setattr(cli_module, "get_current_ref", lambda: "feature/x")
    monkeypatch.setattr(cli_module, "head_sha", lambda: "abc123")

    event = cli_module.build_event("pull_request", None, None, None)

    assert event.branch == "feature/x"
    assert event.group == "pull_request:abc123"
