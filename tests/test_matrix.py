import pytest

from verifyci.dsl import job, matrix, sh
from verifyci.errors import ConfigError
from verifyci.matrix import combinations, expand, expand_all

OSES = ["ubuntu-latest", "windows-latest", "macos-latest"]


def _build():
    return job(
        "build",
        sh("check", "cargo check"),
        runs_on="${{ matrix.os }}",
        matrix=matrix("os", OSES),
    )


def test_axis_of_n_values_yields_n_instances_in_order():
    instances = expand(_build())

    assert [i.descriptor.runs_on for i in instances] == OSES
    assert [i.descriptor.matrix["os"] for i in instances] == OSES
    assert len({i.id for i in instances}) == 3
    assert [i.index for i in instances] == [0, 1, 2]


def test_instances_share_the_declared_steps():
    spec = _build()
    for instance in expand(spec):
        assert instance.steps is spec.steps


def test_instance_names_and_cache_keys():
    instances = expand(_build())

    assert [i.name for i in instances] == [
        "build (ubuntu-latest)",
        "build (windows-latest)",
        "build (macos-latest)",
    ]
    assert [i.cache_key for i in instances] == ["build-Linux", "build-Windows", "build-macOS"]


def test_non_matrix_job_yields_one_instance():
    spec = job("lint", sh("clippy", "cargo clippy"), runs_on="ubuntu-latest")
    instances = expand(spec)

    assert len(instances) == 1
    assert instances[0].name == "lint"
    assert instances[0].descriptor.runs_on == "ubuntu-latest"
    assert instances[0].descriptor.os == "Linux"


def test_two_axes_cross_product_first_axis_slowest():
    spec = job(
        "test",
        sh("t", "cargo test"),
        runs_on="${{ matrix.os }}",
        matrix=[matrix("os", ["ubuntu-latest", "macos-latest"]), matrix("rust", ["stable", "nightly"])],
    )

    assert combinations(spec) == [
        {"os": "ubuntu-latest", "rust": "stable"},
        {"os": "ubuntu-latest", "rust": "nightly"},
        {"os": "macos-latest", "rust": "stable"},
        {"os": "macos-latest", "rust": "nightly"},
    ]


def test_empty_axis_is_a_config_error():
    spec = job("build", sh("check", "cargo check"), matrix={"os": []})

    with pytest.raises(ConfigError, match="no values"):
        expand(spec)


def test_expand_all_keeps_job_order_and_global_indices():
    lint = job("lint", sh("clippy", "cargo clippy"))
    instances = expand_all([_build(), lint])

    assert [i.index for i in instances] == [0, 1, 2, 3]
    assert instances[-1].job.name == "lint"
