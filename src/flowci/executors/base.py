"""Executor interface plus the process plumbing shared by every backend."""

from __future__ import annotations

import os
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from ..model import Action, ExecutorSpec
from ..settings import Settings
from ..state import WorkflowRunState, kill_process_group
from ..ui.console import Console, get_console

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127
JOB_ENV_FILE = ".job-env"
PID_FILE = ".flowci-action.pid"
# engine bookkeeping inside a job workspace, never part of an artifact
SANDBOX_FILES = (JOB_ENV_FILE, PID_FILE)


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    duration: float
    timed_out: bool = False


@dataclass(frozen=True)
class SandboxHandle:
    """
    A provisioned sandbox.

    local:     root is a host directory
    container: root is the workspace path inside `container_id`
    """
    spec: ExecutorSpec
    root: str
    container_id: str | None = None


@dataclass(frozen=True)
class JobWorkspace:
    handle: SandboxHandle
    job: str
    path: str          # jobs/<name> under the sandbox root
    env_file: str      # $JOB_ENV, wiped when the workspace is prepared


class Executor(ABC):
    """
    Owns sandbox/workspace lifecycle and launches action executables.

    Jobs see identical behaviour whichever backend runs them: exit code 0 is
    success, output is forwarded line by line to the console, timeouts kill
    the attempt and report exit code 124.
    """

    name = "executor"

    def __init__(
        self,
        settings: Settings,
        run_id: str,
        *,
        console: Optional[Console] = None,
        state: Optional[WorkflowRunState] = None,
    ):
        self.settings = settings
        self.run_id = run_id
        self.console = console or get_console()
        self.state = state

    # ---- sandbox lifecycle ----

    @abstractmethod
    def provision(self, spec: ExecutorSpec) -> SandboxHandle: ...

    @abstractmethod
    def prepare_job_workspace(self, handle: SandboxHandle, job_name: str) -> JobWorkspace: ...

    @abstractmethod
    def teardown(self, handle: SandboxHandle) -> None: ...

    # ---- execution ----

    @abstractmethod
    def run(
        self,
        workspace: JobWorkspace,
        action: Action,
        env: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> ExecResult: ...

    @abstractmethod
    def shell(self, workspace: JobWorkspace, expr: str, env: Mapping[str, str]) -> int:
        """Evaluate a boolean shell expression inside the sandbox."""

    @abstractmethod
    def read_job_env(self, workspace: JobWorkspace) -> str: ...

    # ---- artifact copy primitives ----

    @abstractmethod
    def exists(self, workspace: JobWorkspace, rel_path: str) -> bool: ...

    @abstractmethod
    def copy_out(self, workspace: JobWorkspace, rel_path: str, host_dest: Path) -> None:
        """Copy <workspace>/<rel_path> (file or dir) to exactly `host_dest`."""

    @abstractmethod
    def copy_in(self, host_src: Path, workspace: JobWorkspace, rel_path: str) -> None:
        """Copy `host_src` (file or dir) to exactly <workspace>/<rel_path>, merging dirs."""

    # ------------------------------------------------------------------
    # Shared process plumbing
    # ------------------------------------------------------------------

    def run_process(
        self,
        cmd: List[str],
        *,
        env: Mapping[str, str],
        cwd: str | None,
        timeout: Optional[float],
        job: str,
        action: str,
        on_kill: Optional[Callable[[], None]] = None,
    ) -> ExecResult:
        """
        Spawn `cmd` in its own process group, forward merged stdout/stderr to
        the console, enforce `timeout`. Launch errors map to exit code 127.
        """
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            self.console.event(f"Could not launch: {e}", job=job, action=action, event="✗")
            return ExecResult(NOT_FOUND_EXIT_CODE, time.monotonic() - start)

        if self.state is not None:
            self.state.track(proc)

        pump = threading.Thread(target=self._pump, args=(proc, job, action), daemon=True)
        pump.start()
        timed_out = False
        try:
            try:
                exit_code = proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                self.console.event(
                    "Timeout reached", job=job, action=action, event="✗",
                    timeout=f"{timeout:g}s", elapsed=f"{time.monotonic() - start:.1f}s",
                )
                if on_kill is not None:
                    on_kill()
                kill_process_group(proc)
                proc.wait()
                exit_code = TIMEOUT_EXIT_CODE
        finally:
            if self.state is not None:
                self.state.untrack(proc)
            pump.join(timeout=5)

        return ExecResult(exit_code, time.monotonic() - start, timed_out)

    def _pump(self, proc: subprocess.Popen, job: str, action: str) -> None:
        assert proc.stdout is not None
        with proc.stdout:
            for line in proc.stdout:
                self.console.print_action_output(job, action, line.rstrip("\n"))


def host_env(overlay: Mapping[str, str]) -> dict:
    env = dict(os.environ)
    env.update(overlay)
    return env
