# executors/local.py
from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Optional

from ..model import Action, ExecutorSpec
from .base import JOB_ENV_FILE, SANDBOX_FILES, ExecResult, Executor, JobWorkspace, SandboxHandle, host_env


def resolve_executable(run: str) -> str:
    """
    Absolute paths and bare names (PATH lookup) pass through; relative paths
    are anchored to the control process cwd, not the job workspace.
    """
    p = Path(run).expanduser()
    if p.is_absolute():
        return str(p)
    if os.sep not in run:
        return run
    return str(p.resolve())


class LocalExecutor(Executor):
    """
    Bare process sandbox:
      <workspace_root>/<run_id>/jobs/<job>/
    """

    name = "local"

    def provision(self, spec: ExecutorSpec) -> SandboxHandle:
        root = Path(self.settings.workspace_root) / self.run_id
        root.mkdir(parents=True, exist_ok=True)
        self.console.event("Workspace created", event="→", executor=self.name, workspace=str(root))
        return SandboxHandle(spec=spec, root=str(root))

    def prepare_job_workspace(self, handle: SandboxHandle, job_name: str) -> JobWorkspace:
        job_dir = Path(handle.root) / "jobs" / job_name
        job_dir.mkdir(parents=True, exist_ok=True)
        env_file = job_dir / JOB_ENV_FILE
        env_file.write_text("", encoding="utf-8")
        return JobWorkspace(handle=handle, job=job_name, path=str(job_dir), env_file=str(env_file))

    def teardown(self, handle: SandboxHandle) -> None:
        if self.settings.keep_workspace:
            self.console.event("Workspace preserved", event="→", executor=self.name, workspace=handle.root)
            return
        self.console.event("Cleaning up workspace", event="→", executor=self.name, workspace=handle.root)
        shutil.rmtree(handle.root, ignore_errors=True)

    # ---- execution ----

    def run(
        self,
        workspace: JobWorkspace,
        action: Action,
        env: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> ExecResult:
        return self.run_process(
            [resolve_executable(action.run)],
            env=host_env(env),
            cwd=workspace.path,
            timeout=timeout,
            job=workspace.job,
            action=action.name,
        )

    def shell(self, workspace: JobWorkspace, expr: str, env: Mapping[str, str]) -> int:
        proc = subprocess.run(
            ["sh", "-c", expr],
            cwd=workspace.path,
            env=host_env(env),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )
        if proc.returncode != 0 and proc.stderr:
            self.console.print_debug(proc.stderr.strip())
        return proc.returncode

    def read_job_env(self, workspace: JobWorkspace) -> str:
        p = Path(workspace.env_file)
        if not p.exists():
            return ""
        return p.read_text(encoding="utf-8", errors="replace")

    # ---- copies ----

    def exists(self, workspace: JobWorkspace, rel_path: str) -> bool:
        return (Path(workspace.path) / rel_path).exists()

    def copy_out(self, workspace: JobWorkspace, rel_path: str, host_dest: Path) -> None:
        _copy(Path(workspace.path) / rel_path, Path(host_dest), ignore=shutil.ignore_patterns(*SANDBOX_FILES))

    def copy_in(self, host_src: Path, workspace: JobWorkspace, rel_path: str) -> None:
        _copy(Path(host_src), Path(workspace.path) / rel_path)


def _copy(src: Path, dest: Path, ignore=None) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if src.is_dir():
        shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True, ignore=ignore)
    else:
        shutil.copy2(src, dest)
