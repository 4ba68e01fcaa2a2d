import dataclasses
import json
from pathlib import Path

import pytest

from verifyci.config import config_from_dict, load_config
from verifyci.errors import ConfigError
from verifyci.matrix import expand_all
from verifyci.model import CapabilityInvocation, CommandInvocation

ROOT = Path(__file__).resolve().parents[1]


def test_load_python_workflow():
    config = load_config(ROOT / "verifyci_workflow.py")

    assert config.name == "Build"
    assert [j.name for j in config.jobs] == ["build", "check-format", "lint"]
    assert config.triggers.push_branches == ("master",)
    assert config.triggers.pull_request

    build = config.job("build")
    assert dict(build.matrix) == {"os": ("ubuntu-latest", "windows-latest", "macos-latest")}
    assert isinstance(build.steps[0], CapabilityInvocation)
    assert isinstance(build.steps[-1], CommandInvocation)
    assert len(expand_all(config.jobs)) == 5


def test_toml_document_matches_python_workflow():
    from_py = load_config(ROOT / "verifyci_workflow.py")
    from_toml = load_config(ROOT / "examples" / "build.toml")

    assert from_toml.name == from_py.name
    assert from_toml.triggers == from_py.triggers
    assert from_toml.jobs == from_py.jobs


def test_json_document(tmp_path):
    path = tmp_path / "verifyci.json"
    path.write_text(
        json.dumps(
            {
                "name": "ci",
                "on": {"push": {"branches": ["release/*"]}},
                "policy": {"fail-fast": True, "max-workers": 2},
                "jobs": {
                    "test": {
                        "runs-on": "${{ matrix.os }}",
                        "matrix": {"os": ["ubuntu-latest", "macos-latest"]},
                        "steps": [{"run": "make test", "working-directory": "app"}],
                    }
                },
            }
        )
    )

    config = load_config(path)

    assert config.triggers.push_branches == ("release/*",)
    assert not config.triggers.pull_request
    assert config.policy.fail_fast
    assert config.policy.max_workers == 2
    assert config.jobs[0].steps[0] == CommandInvocation(run="make test", cwd="app")


@pytest.mark.parametrize(
    "step",
    [
        {"name": "nothing"},
        {"uses": "checkout", "run": "echo both"},
        {"run": "echo hi", "with": {"x": 1}},
        {"run": "echo hi", "shell": "bash"},
    ],
)
def test_invalid_steps_are_rejected(step):
    with pytest.raises(ConfigError) as info:
        config_from_dict({"jobs": {"build": {"steps": [step]}}})

    assert info.value.details["errors"]


@pytest.mark.parametrize(
    "document",
    [
        {},
        {"jobs": {}},
        {"jobs": {"build": {"steps": []}}},
        {"jobs": {"build": {"matrix": {"os": []}, "steps": [{"run": "true"}]}}},
        {"jobs": {"build": {"steps": [{"run": "true"}]}}, "policy": {"max-workers": 0}},
    ],
)
def test_invalid_documents_are_rejected(document):
    with pytest.raises(ConfigError):
        config_from_dict(document)


def test_unsupported_and_missing_files(tmp_path):
    yaml = tmp_path / "build.yml"
    yaml.write_text("name: Build\n")

    with pytest.raises(ConfigError, match="Unsupported"):
        load_config(yaml)
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.toml")


def test_unparsable_toml(tmp_path):
    path = tmp_path / "verifyci.toml"
    path.write_text("[jobs\n")

    with pytest.raises(ConfigError, match="Could not parse"):
        load_config(path)


def test_python_workflow_may_return_job_list(tmp_path):
    path = tmp_path / "list_workflow.py"
    path.write_text(
        "from verifyci.dsl import job, sh\n"
        "def workflow():\n"
        "    return [job('a', sh('a', 'true')), job('b', sh('b', 'true'))]\n"
    )

    config = load_config(path)

    assert config.name == "list_workflow"
    assert [j.name for j in config.jobs] == ["a", "b"]


def test_python_workflow_must_produce_a_config(tmp_path):
    path = tmp_path / "bad_workflow.py"
    path.write_text("WORKFLOW = 42\n")

    with pytest.raises(ConfigError, match="Workflow must"):
        load_config(path)


def test_duplicate_job_names_are_rejected():
    from verifyci.dsl import job, sh, wf

    with pytest.raises(ValueError, match="Duplicate"):
        wf(job("a", sh("x", "true")), job("a", sh("y", "true")))


def test_config_is_immutable():
    config = load_config(ROOT / "verifyci_workflow.py")

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.name = "other"
    with pytest.raises(TypeError):
        config.jobs[0].steps[2].params["key"] = "other"


def test_bare_trigger_keys_subscribe_with_defaults():
    from verifyci.model import Event
    from verifyci.trigger import applicable_jobs

    config = config_from_dict(
        {
            "on": {"push": None, "pull_request": None},
            "jobs": {"build": {"steps": [{"run": "cargo check"}]}, "lint": {"steps": [{"run": "cargo clippy"}]}},
        }
    )

    assert config.triggers.pull_request
    assert config.triggers.push
    assert config.triggers.push_branches == ("*",)
    assert applicable_jobs(config, Event(kind="pull_request", branch="x")) == config.jobs
    assert applicable_jobs(config, Event(kind="push", branch="feature/y")) == config.jobs


def test_explicitly_disabled_pull_requests_and_omitted_push():
    config = config_from_dict({"on": {"pull_request": False}, "jobs": {"build": {"steps": [{"run": "make"}]}}})

    assert not config.triggers.pull_request
    assert not config.triggers.push
