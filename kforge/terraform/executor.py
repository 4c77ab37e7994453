"""
Terraform process executor.

Runs the Terraform binary as a supervised subprocess inside a working
directory. Every invocation gets its own log file under ``logs/<pid>.log``;
a non-zero exit additionally leaves ``logs/<pid>.fail`` behind with the exit
reason. Both files are kept after the run for later inspection, and the
status of any past invocation is derived from them.
"""

import json
import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, IO, List, Optional, Sequence

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from kforge.errors import (
    BinaryNotFoundError,
    ExecutionError,
    OperationCancelled,
    VersionMismatchError,
)
from kforge.terraform.signals import CancellationToken

logger = logging.getLogger(__name__)

LOGS_DIR = "logs"
LOG_SUFFIX = ".log"
FAIL_SUFFIX = ".fail"
BINARY_NAME = "terraform.exe" if sys.platform == "win32" else "terraform"
DEFAULT_REQUIRED_VERSION = ">=0.13,<0.14"
LINES_ON_ERROR = 20
FOLLOW_INTERVAL = 0.1

_dir_locks: Dict[str, threading.Lock] = {}
_dir_locks_guard = threading.Lock()


def working_dir_lock(working_dir: Path) -> threading.Lock:
    """Return the process-wide lock serializing invocations in working_dir."""
    key = str(Path(working_dir).resolve())
    with _dir_locks_guard:
        lock = _dir_locks.get(key)
        if lock is None:
            lock = _dir_locks[key] = threading.Lock()
        return lock


class ExecutionStatus(Enum):
    UNKNOWN = "Unknown"
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILURE = "Failure"


@dataclass
class ExecutionStep:
    """One named Terraform invocation within a multi-step run."""

    description: str
    args: List[str]
    # Runs before the step; raising aborts the whole sequence.
    pre_execution_hook: Optional[Callable[["Executor"], None]] = None


@dataclass(frozen=True)
class Invocation:
    pid: int
    args: List[str]
    working_dir: Path
    log_path: Path
    fail_path: Path
    done: threading.Event = field(repr=False, compare=False)


@dataclass
class ExecutorConfig:
    working_dir: Path
    quiet: bool = False
    binary_path: Optional[Path] = None
    required_version: str = DEFAULT_REQUIRED_VERSION
    env: Dict[str, str] = field(default_factory=dict)


def find_binary(name: str = BINARY_NAME) -> Path:
    """
    Locate the Terraform binary.

    Searched in the folder of the running program, then the current working
    directory, then PATH. The first match wins.

    Raises:
        BinaryNotFoundError: If no candidate exists
    """
    candidates = [
        Path(sys.argv[0]).resolve().parent / name,
        Path.cwd() / name,
    ]
    for candidate in candidates:
        if candidate.is_file():
            return candidate

    found = shutil.which(name)
    if found:
        return Path(found).resolve()

    raise BinaryNotFoundError("Terraform not in executable's folder, cwd nor PATH")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user.
        return True
    except OverflowError:
        return False
    return True


def tail_lines(path: Path, count: int = LINES_ON_ERROR) -> List[str]:
    """Return the last count lines of a text file."""
    try:
        with open(path, "r", errors="replace") as f:
            lines = f.read().splitlines()
    except OSError as e:
        logger.warning(f"Unable to read {path}: {e}")
        return []
    return lines[-count:]


class Executor:
    """
    Drives Terraform in a single working directory.

    Construction fails fast if the binary cannot be found or its version is
    outside the configured range. Invocations in the same working directory
    are serialized by an in-process lock held for the lifetime of the
    subprocess.
    """

    def __init__(
        self,
        config: ExecutorConfig,
        cancellation: Optional[CancellationToken] = None,
        stream: Optional[IO[str]] = None,
    ):
        self.config = config
        self.working_dir = Path(config.working_dir)
        self.quiet = config.quiet
        self.cancellation = cancellation or CancellationToken()
        self._stream = stream

        self.logs_dir.mkdir(parents=True, exist_ok=True)

        self.binary_path = Path(config.binary_path) if config.binary_path else find_binary()
        if not self.binary_path.is_file():
            raise BinaryNotFoundError(f"Terraform binary not found at {self.binary_path}")

        self.version = self.check_version(config.required_version)

    @property
    def stream(self) -> IO[str]:
        return self._stream if self._stream is not None else sys.stdout

    @property
    def logs_dir(self) -> Path:
        return self.working_dir / LOGS_DIR

    def log_path(self, pid: int) -> Path:
        return self.logs_dir / f"{pid}{LOG_SUFFIX}"

    def fail_path(self, pid: int) -> Path:
        return self.logs_dir / f"{pid}{FAIL_SUFFIX}"

    def check_version(self, required: str) -> Optional[Version]:
        """
        Verify the binary's version against a PEP 440 specifier set.

        Raises:
            VersionMismatchError: If the version is unparsable or out of range
        """
        raw = self.execute_sync("version", "-json")
        try:
            reported = json.loads(raw)["terraform_version"]
            version = Version(reported)
        except (ValueError, KeyError, TypeError, InvalidVersion) as e:
            raise VersionMismatchError(f"Unable to determine Terraform version: {e}") from e

        if not required:
            return version

        try:
            specifier = SpecifierSet(required)
        except InvalidSpecifier as e:
            raise VersionMismatchError(f"Invalid required Terraform version '{required}': {e}") from e

        if version not in specifier:
            raise VersionMismatchError(
                f"Terraform version {version} is not supported; required: {required}"
            )

        logger.debug(f"Using Terraform {version} from {self.binary_path}")
        return version

    def _environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        for key, value in self.config.env.items():
            env[key.upper()] = str(value)
        return env

    def execute_async(self, *args: str) -> Invocation:
        """
        Start Terraform without waiting for it.

        Output is copied into ``logs/<pid>.log``. A background thread waits
        for exit, writes ``logs/<pid>.fail`` on a non-zero exit and then sets
        the invocation's ``done`` event.
        """
        self.cancellation.raise_if_cancelled()

        lock = working_dir_lock(self.working_dir)
        lock.acquire()
        try:
            process = subprocess.Popen(
                [str(self.binary_path), *args],
                cwd=str(self.working_dir),
                env=self._environment(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            lock.release()
            raise ExecutionError(
                f"Starting Terraform failed: {e}", args=args, working_dir=self.working_dir
            ) from e

        invocation = Invocation(
            pid=process.pid,
            args=list(args),
            working_dir=self.working_dir,
            log_path=self.log_path(process.pid),
            fail_path=self.fail_path(process.pid),
            done=threading.Event(),
        )
        try:
            log_file = open(invocation.log_path, "wb")
        except OSError as e:
            process.kill()
            process.wait()
            lock.release()
            raise ExecutionError(
                f"Creating log file failed: {e}", args=args, working_dir=self.working_dir
            ) from e

        def interrupt() -> None:
            if process.poll() is None:
                logger.warning(f"Interrupting Terraform (pid {process.pid})")
                os.killpg(process.pid, signal.SIGINT)

        remove_callback = self.cancellation.add_callback(interrupt)

        def copy_output() -> None:
            for chunk in iter(lambda: process.stdout.readline(), b""):
                log_file.write(chunk)
                log_file.flush()

        copier = threading.Thread(target=copy_output, daemon=True)
        copier.start()

        def wait_for_exit() -> None:
            try:
                returncode = process.wait()
                copier.join()
                process.stdout.close()
                log_file.close()
                if returncode != 0:
                    invocation.fail_path.write_text(f"exit status {returncode}")
            finally:
                remove_callback()
                lock.release()
                invocation.done.set()

        threading.Thread(target=wait_for_exit, daemon=True).start()

        logger.debug(f"Started Terraform {' '.join(args)} with pid {process.pid}")
        return invocation

    def _follow(self, invocation: Invocation) -> None:
        """Stream the growing log file until the invocation finishes."""
        while not invocation.log_path.exists():
            if invocation.done.wait(FOLLOW_INTERVAL):
                break

        try:
            f = open(invocation.log_path, "r", errors="replace")
        except OSError as e:
            self.stream.write(f"Unable to print logs from {invocation.log_path}: {e}\n")
            return

        with f:
            while True:
                line = f.readline()
                if line:
                    self.stream.write(line)
                    self.stream.flush()
                elif invocation.done.is_set():
                    rest = f.read()
                    if rest:
                        self.stream.write(rest)
                        self.stream.flush()
                    break
                else:
                    time.sleep(FOLLOW_INTERVAL)

    def run(self, *args: str, quiet: Optional[bool] = None) -> None:
        """
        Run one Terraform command to completion.

        Raises:
            ExecutionError: If the command did not succeed
            OperationCancelled: If the run was interrupted
        """
        quiet = self.quiet if quiet is None else quiet
        invocation = self.execute_async(*args)

        follower = None
        if not quiet:
            follower = threading.Thread(target=self._follow, args=(invocation,), daemon=True)
            follower.start()

        invocation.done.wait()
        if follower is not None:
            follower.join()

        if quiet:
            self.stream.write(f"\nYou can find the logs in {invocation.log_path}\n")

        status = self.status(invocation.pid)
        if status is ExecutionStatus.SUCCESS:
            return

        if self.cancellation.cancelled:
            raise OperationCancelled(
                f"Terraform {' '.join(args)} was interrupted, check {invocation.log_path} for details"
            )

        if quiet:
            self.stream.write(f"Last {LINES_ON_ERROR} lines of the log:\n")
            for line in tail_lines(invocation.log_path):
                self.stream.write(f"{line}\n")

        raise ExecutionError(
            "executing Terraform failed",
            log_path=invocation.log_path,
            args=args,
            working_dir=self.working_dir,
        )

    def execute(self, *steps: ExecutionStep) -> None:
        """Run steps strictly in order, aborting on the first failure."""
        for step in steps:
            self.cancellation.raise_if_cancelled()

            if step.pre_execution_hook is not None:
                logger.info(f"Running pre-execution hook for step '{step.description}'")
                step.pre_execution_hook(self)

            logger.info(f"Executing step '{step.description}'")
            self.run(*step.args)

    def execute_sync(self, *args: str) -> bytes:
        """
        Run Terraform and return its captured stdout.

        Raises:
            ExecutionError: If the command exits non-zero
        """
        self.cancellation.raise_if_cancelled()

        with working_dir_lock(self.working_dir):
            result = subprocess.run(
                [str(self.binary_path), *args],
                cwd=str(self.working_dir),
                env=self._environment(),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                check=False,
            )

        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace").strip()
            raise ExecutionError(
                f"executing with arguments '{', '.join(args)}' failed: {stderr or f'exit status {result.returncode}'}",
                args=args,
                working_dir=self.working_dir,
            )

        return result.stdout

    def output(self, key: str = "") -> Any:
        """
        Fetch Terraform outputs as decoded JSON.

        An empty key returns the full output map.
        """
        args = ["output", "-json"]
        if key:
            args.append(key)

        try:
            raw = self.execute_sync(*args)
        except ExecutionError as e:
            raise ExecutionError(
                f"failed getting Terraform output for key '{key}': {e}",
                working_dir=self.working_dir,
            ) from e

        try:
            return json.loads(raw or b"null")
        except ValueError as e:
            raise ExecutionError(
                f"Terraform output for key '{key}' is not valid JSON: {e}",
                working_dir=self.working_dir,
            ) from e

    def status(self, pid: int) -> ExecutionStatus:
        """
        Status of a past or running invocation.

        A pid absent from the process table with no failure marker is
        reported as SUCCESS, including pids this executor never started.
        """
        if _pid_alive(pid):
            return ExecutionStatus.RUNNING
        if self.fail_path(pid).exists():
            return ExecutionStatus.FAILURE
        return ExecutionStatus.SUCCESS

    def init(self) -> None:
        self.execute(ExecutionStep("initialize Terraform", ["init"]))

    def apply(self, extra_args: Sequence[str] = ("-parallelism=100",)) -> None:
        self.execute(ExecutionStep("create infrastructure", ["apply", "-auto-approve", *extra_args]))

    def destroy(self) -> None:
        self.execute(ExecutionStep("destroy infrastructure", ["destroy", "-auto-approve"]))

    def plan(self) -> None:
        """Refresh state, then always show the plan."""
        logger.info("Generating Terraform execution plan")
        self.execute(ExecutionStep("refresh Terraform state", ["refresh"]))
        self.run("plan", "-refresh=false", quiet=False)

    def taint(self, resources: Sequence[str]) -> None:
        steps = [
            ExecutionStep(f"taint {resource}", ["taint", resource])
            for resource in resources
        ]
        self.execute(*steps)

    def __repr__(self) -> str:
        return f"Executor(working_dir={self.working_dir}, binary={self.binary_path})"
