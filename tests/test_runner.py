import threading
import time

from conftest import py

from verifyci.dsl import job, sh, uses
from verifyci.environment import CancelToken, LocalProvisioner
from verifyci.errors import CapabilityError, ProvisioningError
from verifyci.matrix import expand
from verifyci.model import CANCELLED, FAILURE, SUCCESS
from verifyci.runner import SETUP_STEP, JobRunner


def _instance(spec):
    return expand(spec)[0]


def _touch(name: str) -> str:
    return py(f"open('{name}', 'w').write('x')")


def test_first_failing_step_halts_the_instance(tmp_path, provisioner, console):
    spec = job(
        "build",
        sh("A", _touch("a.txt")),
        sh("B", py("import sys; sys.exit(3)")),
        sh("C", _touch("c.txt")),
    )

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == FAILURE
    assert result.failed_step == "B"
    assert [s.name for s in result.steps] == ["A", "B"]
    assert result.steps[1].exit_code == 3
    assert (tmp_path / "a.txt").exists()
    assert not (tmp_path / "c.txt").exists()


def test_all_steps_succeed(tmp_path, provisioner, console):
    spec = job("build", sh("A", py("print('hello')")), sh("B", _touch("b.txt")))

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == SUCCESS
    assert result.failed_step is None
    assert "hello" in result.steps[0].output
    assert (tmp_path / "b.txt").exists()


def test_job_env_and_runner_os_reach_commands(provisioner, console):
    spec = job(
        "build",
        sh("env", py("import os; print(os.environ['GREETING'], os.environ['RUNNER_OS'])")),
        runs_on="windows-latest",
        env={"GREETING": "hi"},
    )

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == SUCCESS
    assert "hi Windows" in result.steps[0].output


class _BrokenProvisioner(LocalProvisioner):
    def provision(self, instance, cancel, event=None, run_id=None):
        raise ProvisioningError("image not available", job=instance.name)


def test_provisioning_error_fails_only_that_instance(tmp_path, console):
    spec = job("build", sh("A", _touch("a.txt")))

    result = JobRunner(_BrokenProvisioner(tmp_path, console=console), console).run(_instance(spec), CancelToken())

    assert result.status == FAILURE
    assert result.failed_step == SETUP_STEP
    assert "image not available" in result.steps[0].output
    assert not (tmp_path / "a.txt").exists()


def test_strict_provisioner_rejects_foreign_os(tmp_path, console):
    from verifyci.environment import host_os

    foreign = "windows-latest" if host_os() != "Windows" else "ubuntu-latest"
    spec = job("build", sh("A", py("print(1)")), runs_on=foreign)
    provisioner = LocalProvisioner(tmp_path, strict=True, console=console)

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == FAILURE
    assert result.failed_step == SETUP_STEP


def test_unknown_capability_is_a_step_failure(provisioner, console):
    spec = job("build", uses("no-such-action@v1", name="mystery"), sh("after", py("print(1)")))

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == FAILURE
    assert result.failed_step == "mystery"
    assert "unknown capability" in result.steps[0].output
    assert len(result.steps) == 1


def test_capability_errors_become_step_failures(tmp_path, console):
    def explode(env, params, step):
        raise CapabilityError("toolchain missing", step=step.label, hint="install it")

    provisioner = LocalProvisioner(tmp_path, capabilities={"explode": explode}, console=console)
    spec = job("build", uses("explode"))

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == FAILURE
    assert "toolchain missing" in result.steps[0].output
    assert "install it" in result.steps[0].output


def test_capabilities_receive_rendered_params(tmp_path, console):
    seen = {}

    def record(env, params, step):
        seen.update(params)
        return "recorded"

    provisioner = LocalProvisioner(tmp_path, capabilities={"record": record}, console=console)
    spec = job("build", uses("record", key="${{ runner.os }}-${{ matrix.os }}"), runs_on="${{ matrix.os }}", matrix={"os": ["macos-14"]})

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == SUCCESS
    assert seen == {"key": "macOS-macos-14"}
    assert result.steps[0].output == "recorded"


def test_cancelled_before_start_runs_nothing(tmp_path, provisioner, console):
    token = CancelToken()
    token.cancel()

    result = JobRunner(provisioner, console).run(_instance(job("build", sh("A", _touch("a.txt")))), token)

    assert result.status == CANCELLED
    assert result.steps == ()
    assert not (tmp_path / "a.txt").exists()


def test_cancel_terminates_a_running_command(tmp_path, provisioner, console):
    spec = job("build", sh("slow", py("import time; time.sleep(30)")), sh("after", _touch("after.txt")))
    token = CancelToken()
    threading.Timer(0.5, token.cancel).start()

    started = time.monotonic()
    result = JobRunner(provisioner, console).run(_instance(spec), token)

    assert result.status == CANCELLED
    assert time.monotonic() - started < 15
    assert [s.name for s in result.steps] == ["slow"]
    assert not (tmp_path / "after.txt").exists()


def test_post_hooks_only_run_after_success(tmp_path, console):
    calls = []

    def register(env, params, step):
        env.add_post_hook("post", lambda e: calls.append(e.instance.name))

    def broken_hook(env, params, step):
        def hook(e):
            raise RuntimeError("disk full")
        env.add_post_hook("broken post", hook)

    caps = {"register": register, "broken": broken_hook}
    provisioner = LocalProvisioner(tmp_path, capabilities=caps, console=console)
    runner = JobRunner(provisioner, console)

    ok = runner.run(_instance(job("ok", uses("register"), uses("broken"))), CancelToken())
    failed = runner.run(_instance(job("bad", uses("register"), sh("fail", py("import sys; sys.exit(1)")))), CancelToken())

    assert ok.status == SUCCESS
    assert failed.status == FAILURE
    assert calls == ["ok"]


def test_missing_step_cwd_fails_the_step(provisioner, console):
    spec = job("build", sh("A", py("print(1)"), cwd="does-not-exist"))

    result = JobRunner(provisioner, console).run(_instance(spec), CancelToken())

    assert result.status == FAILURE
    assert "cwd not found" in result.steps[0].output


def test_isolated_work_directories_are_scoped_by_run(tmp_path, console):
    provisioner = LocalProvisioner(tmp_path, work_root=tmp_path / "work", isolate=True, console=console)
    instance = expand(job("build", sh("noop", "true")))[0]

    first = provisioner.provision(instance, CancelToken(), run_id="run-a")
    second = provisioner.provision(instance, CancelToken(), run_id="run-b")
    (first.workdir / "marker").write_text("a")

    assert first.workdir == tmp_path / "work" / "run-a" / "build"
    assert second.workdir == tmp_path / "work" / "run-b" / "build"
    assert second.env["VERIFYCI_RUN_ID"] == "run-b"

    provisioner.release(second)

    assert (first.workdir / "marker").read_text() == "a"
    assert not (tmp_path / "work" / "run-b").exists()
    assert first.tree_lock is None


def test_in_place_instances_share_one_tree_lock(tmp_path, provisioner):
    a, b = expand(job("build", sh("noop", "true"), runs_on="${{ matrix.os }}", matrix={"os": ["ubuntu-latest", "macos-latest"]}))

    env_a = provisioner.provision(a, CancelToken())
    env_b = provisioner.provision(b, CancelToken())

    assert env_a.workdir == env_b.workdir == tmp_path
    assert env_a.tree_lock is not None
    assert env_a.tree_lock is env_b.tree_lock
    with env_a.exclusive_tree():
        assert not env_b.tree_lock.acquire(blocking=False)
