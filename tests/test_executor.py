"""Tests for the Terraform process executor.

The executor runs a shell script standing in for Terraform, so these tests
exercise real subprocesses, log files and failure markers.
"""

import io
import threading
import time

import pytest

from conftest import write_terraform
from kforge.errors import BinaryNotFoundError, ExecutionError, OperationCancelled, VersionMismatchError
from kforge.terraform.executor import (
    ExecutionStatus,
    ExecutionStep,
    Executor,
    ExecutorConfig,
    find_binary,
    tail_lines,
)
from kforge.terraform.signals import CancellationToken


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def binary(tmp_path):
    return write_terraform(tmp_path / "bin")


@pytest.fixture
def working_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def executor(binary, working_dir, stream):
    config = ExecutorConfig(working_dir=working_dir, quiet=True, binary_path=binary)
    return Executor(config, stream=stream)


def log_files(working_dir, suffix):
    return sorted((working_dir / "logs").glob(f"*{suffix}"))


# =============================================================================
# CONSTRUCTION
# =============================================================================


class TestConstruction:
    def test_creates_logs_directory(self, executor, working_dir):
        assert (working_dir / "logs").is_dir()

    def test_reads_version(self, executor):
        assert str(executor.version) == "0.13.7"

    def test_rejects_unsupported_version(self, tmp_path, working_dir):
        binary = write_terraform(tmp_path / "old", version="0.12.29")
        config = ExecutorConfig(working_dir=working_dir, binary_path=binary)

        with pytest.raises(VersionMismatchError, match="0.12.29"):
            Executor(config)

    def test_custom_version_range(self, tmp_path, working_dir):
        binary = write_terraform(tmp_path / "new", version="1.5.0")
        config = ExecutorConfig(working_dir=working_dir, binary_path=binary, required_version=">=1.0")

        assert str(Executor(config).version) == "1.5.0"

    def test_missing_binary(self, tmp_path, working_dir):
        config = ExecutorConfig(working_dir=working_dir, binary_path=tmp_path / "missing")

        with pytest.raises(BinaryNotFoundError):
            Executor(config)

    def test_environment_keys_are_upper_cased(self, binary, working_dir):
        config = ExecutorConfig(working_dir=working_dir, binary_path=binary, env={"tf_var_name": "demo"})

        env = Executor(config)._environment()

        assert env["TF_VAR_NAME"] == "demo"


class TestFindBinary:
    def test_finds_binary_in_cwd(self, tmp_path, monkeypatch):
        write_terraform(tmp_path)
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("PATH", "")

        assert find_binary() == tmp_path / "terraform"

    def test_finds_binary_in_path(self, tmp_path, monkeypatch):
        write_terraform(tmp_path / "bin")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("PATH", str(tmp_path / "bin"))

        assert find_binary() == (tmp_path / "bin" / "terraform").resolve()

    def test_not_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("PATH", "")

        with pytest.raises(BinaryNotFoundError, match="cwd nor PATH"):
            find_binary("terraform-that-does-not-exist")


# =============================================================================
# RUNNING
# =============================================================================


class TestRun:
    def test_success_writes_log(self, executor, working_dir):
        executor.run("apply", "-auto-approve")

        logs = log_files(working_dir, ".log")
        assert len(logs) == 1
        assert "ran apply -auto-approve" in logs[0].read_text()
        assert log_files(working_dir, ".fail") == []

    def test_quiet_run_points_to_log(self, executor, working_dir, stream):
        executor.run("init")

        log = log_files(working_dir, ".log")[0]
        assert f"You can find the logs in {log}" in stream.getvalue()
        assert "ran init" not in stream.getvalue()

    def test_verbose_run_streams_output(self, binary, working_dir, stream):
        executor = Executor(ExecutorConfig(working_dir=working_dir, binary_path=binary), stream=stream)

        executor.run("init")

        assert "ran init" in stream.getvalue()

    def test_failure_raises_and_marks(self, executor, working_dir, stream):
        with pytest.raises(ExecutionError) as exc_info:
            executor.run("fail")

        error = exc_info.value
        fail_files = log_files(working_dir, ".fail")
        assert len(fail_files) == 1
        assert "exit status 3" in fail_files[0].read_text()
        assert error.log_path == log_files(working_dir, ".log")[0]
        assert error.command_args == ["fail"]
        assert "boom" in stream.getvalue()

    def test_failure_status(self, executor):
        invocation = executor.execute_async("fail")
        invocation.done.wait(10)

        assert executor.status(invocation.pid) is ExecutionStatus.FAILURE

    def test_success_status(self, executor):
        invocation = executor.execute_async("plan")
        invocation.done.wait(10)

        assert executor.status(invocation.pid) is ExecutionStatus.SUCCESS

    def test_unknown_pid_reports_success(self, executor):
        assert executor.status(2 ** 30) is ExecutionStatus.SUCCESS

    def test_cancelled_token_prevents_start(self, binary, working_dir):
        token = CancellationToken()
        executor = Executor(ExecutorConfig(working_dir=working_dir, binary_path=binary), cancellation=token)
        token.cancel()

        with pytest.raises(OperationCancelled):
            executor.run("apply")
        assert log_files(working_dir, ".log") == []

    def test_cancel_interrupts_running_terraform(self, binary, working_dir):
        token = CancellationToken()
        executor = Executor(
            ExecutorConfig(working_dir=working_dir, quiet=True, binary_path=binary),
            cancellation=token,
            stream=io.StringIO(),
        )
        timer = threading.Timer(0.5, token.cancel)
        timer.start()

        started = time.monotonic()
        try:
            with pytest.raises(OperationCancelled, match="was interrupted"):
                executor.run("sleepy", "30")
        finally:
            timer.cancel()

        assert time.monotonic() - started < 10
        assert "started" in log_files(working_dir, ".log")[0].read_text()

    def test_runs_in_one_working_dir_do_not_overlap(self, executor, working_dir):
        errors = []

        def run():
            try:
                executor.run("stamp")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert errors == []
        spans = sorted(
            tuple(int(stamp) for stamp in log.read_text().split())
            for log in log_files(working_dir, ".log")
        )
        assert len(spans) == 2
        assert spans[0][1] <= spans[1][0]


class TestExecute:
    def test_steps_run_in_order(self, executor, working_dir):
        executor.execute(ExecutionStep("first", ["init"]), ExecutionStep("second", ["plan"]))

        contents = {log.read_text().strip() for log in log_files(working_dir, ".log")}
        assert contents == {"ran init", "ran plan"}

    def test_stops_at_first_failure(self, executor, working_dir):
        with pytest.raises(ExecutionError):
            executor.execute(ExecutionStep("broken", ["fail"]), ExecutionStep("never", ["plan"]))

        assert len(log_files(working_dir, ".log")) == 1

    def test_hook_runs_before_step(self, executor, working_dir):
        seen = []

        def hook(ex):
            seen.append(len(log_files(working_dir, ".log")))

        executor.execute(ExecutionStep("first", ["init"]), ExecutionStep("second", ["plan"], hook))

        assert seen == [1]

    def test_failing_hook_aborts(self, executor, working_dir):
        def hook(ex):
            raise ExecutionError("DNS check failed")

        with pytest.raises(ExecutionError, match="DNS check failed"):
            executor.execute(ExecutionStep("guarded", ["apply"], hook))

        assert log_files(working_dir, ".log") == []

    def test_taint_runs_one_step_per_resource(self, executor, working_dir):
        executor.taint(["a.b", "c.d"])

        contents = sorted(log.read_text().strip() for log in log_files(working_dir, ".log"))
        assert contents == ["ran taint a.b", "ran taint c.d"]


class TestOutput:
    def test_all_outputs(self, executor):
        outputs = executor.output()
        assert outputs["kubeconfig"]["value"] == "config"

    def test_single_output(self, executor):
        assert executor.output("kubeconfig") == "value-of-kubeconfig"

    def test_failing_command(self, executor):
        with pytest.raises(ExecutionError, match="boom|exit status 3"):
            executor.execute_sync("fail")


class TestTailLines:
    def test_last_lines(self, tmp_path):
        path = tmp_path / "log"
        path.write_text("\n".join(str(i) for i in range(30)))

        assert tail_lines(path, 3) == ["27", "28", "29"]

    def test_missing_file(self, tmp_path):
        assert tail_lines(tmp_path / "missing") == []
