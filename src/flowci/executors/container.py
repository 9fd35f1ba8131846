# executors/container.py
from __future__ import annotations

import posixpath
import shlex
import subprocess
from pathlib import Path
from typing import List, Mapping, Optional

from ..errors import SandboxError
from ..model import Action, ExecutorSpec
from ..settings import CONTAINER_WORKSPACE
from .base import (
    JOB_ENV_FILE,
    PID_FILE,
    SANDBOX_FILES,
    ExecResult,
    Executor,
    JobWorkspace,
    SandboxHandle,
    host_env,
)

# Records the in-container pid so a timed-out action can be killed inside the
# container; killing the exec client alone leaves it running.
_PID_WRAPPER = 'echo $$ > "$0"; exec "$@"'


# ---------------------------------------------------------------------
# Container runtime helpers
# ---------------------------------------------------------------------

def check_runtime_available(runtime: str) -> None:
    """Check the container runtime CLI is usable, raise a helpful error if not."""
    try:
        subprocess.run(
            [runtime, "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise SandboxError(
            kind="runtime_unavailable",
            message=f"{runtime} is not available",
            details={"hint": f"Install {runtime} and ensure the daemon is running."},
        )


class ContainerExecutor(Executor):
    """
    Long-lived container per distinct image, actions run with `exec`.

    Mount mode: the host action store is bind-mounted read-only, so action
    executables resolve to the same paths inside the container.
    """

    name = "container"
    mode = "mount"

    @property
    def runtime(self) -> str:
        return self.settings.container_runtime

    def _rt(self, *args: str, check: bool = True, capture: bool = True) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.runtime, *args],
            check=check,
            text=True,
            capture_output=capture,
        )

    # ---- sandbox lifecycle ----

    def create_args(self, spec: ExecutorSpec) -> List[str]:
        store = self.settings.action_store
        return ["create", "-v", f"{store}:{store}:ro", spec.image, "sleep", "infinity"]

    def before_create(self, spec: ExecutorSpec) -> None:
        pass

    def provision(self, spec: ExecutorSpec) -> SandboxHandle:
        check_runtime_available(self.runtime)
        try:
            self.before_create(spec)
            container_id = self._rt(*self.create_args(spec)).stdout.strip()
            self._rt("start", container_id)
            self._rt("exec", container_id, "mkdir", "-p", CONTAINER_WORKSPACE)
        except subprocess.CalledProcessError as e:
            raise SandboxError(
                kind="provision",
                message=f"could not provision container from {spec.image} ({self.mode})",
                details={"cmd": " ".join(e.cmd), "stderr": (e.stderr or "").strip()},
            ) from e

        self.console.event(
            "Container workspace created", event="→", executor=f"{self.name}-{self.mode}",
            container=container_id[:12], workspace=CONTAINER_WORKSPACE,
        )
        return SandboxHandle(spec=spec, root=CONTAINER_WORKSPACE, container_id=container_id)

    def prepare_job_workspace(self, handle: SandboxHandle, job_name: str) -> JobWorkspace:
        job_dir = posixpath.join(handle.root, "jobs", job_name)
        env_file = posixpath.join(job_dir, JOB_ENV_FILE)
        try:
            self._rt("exec", handle.container_id, "mkdir", "-p", job_dir)
            self._rt("exec", handle.container_id, "sh", "-c", ': > "$0"', env_file)
        except subprocess.CalledProcessError as e:
            raise SandboxError(
                kind="workspace",
                message=f"could not prepare job workspace {job_dir}",
                job=job_name,
                details={"stderr": (e.stderr or "").strip()},
            ) from e
        return JobWorkspace(handle=handle, job=job_name, path=job_dir, env_file=env_file)

    def teardown(self, handle: SandboxHandle) -> None:
        executor = f"{self.name}-{self.mode}"
        if self.settings.keep_workspace:
            self.console.event("Container preserved", event="→", executor=executor, container=handle.container_id)
            return
        self.console.event("Stopping and removing container", event="→", executor=executor,
                           container=handle.container_id)
        self._rt("rm", "-f", handle.container_id, check=False)

    # ---- execution ----

    def exec_args(self, workspace: JobWorkspace, env: Mapping[str, str]) -> List[str]:
        # `-e KEY` takes the value from the client env: values stay out of argv
        args = ["exec", "-w", workspace.path]
        for key in sorted(env):
            args.extend(["-e", key])
        args.append(workspace.handle.container_id)
        return args

    def run(
        self,
        workspace: JobWorkspace,
        action: Action,
        env: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> ExecResult:
        pid_file = posixpath.join(workspace.path, PID_FILE)
        cmd = [self.runtime, *self.exec_args(workspace, env), "sh", "-c", _PID_WRAPPER, pid_file, action.run]
        return self.run_process(
            cmd,
            env=host_env(env),
            cwd=None,
            timeout=timeout,
            job=workspace.job,
            action=action.name,
            on_kill=lambda: self._kill_in_container(workspace, pid_file),
        )

    def _kill_in_container(self, workspace: JobWorkspace, pid_file: str) -> None:
        script = f'kill -9 "$(cat {shlex.quote(pid_file)})" 2>/dev/null || true'
        self._rt("exec", workspace.handle.container_id, "sh", "-c", script, check=False)

    def shell(self, workspace: JobWorkspace, expr: str, env: Mapping[str, str]) -> int:
        proc = subprocess.run(
            [self.runtime, *self.exec_args(workspace, env), "sh", "-c", expr],
            env=host_env(env),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )
        if proc.returncode != 0 and proc.stderr:
            self.console.print_debug(proc.stderr.strip())
        return proc.returncode

    def read_job_env(self, workspace: JobWorkspace) -> str:
        proc = self._rt("exec", workspace.handle.container_id, "cat", workspace.env_file, check=False)
        return proc.stdout if proc.returncode == 0 else ""

    # ---- copies ----

    def _in_container(self, workspace: JobWorkspace, rel_path: str) -> str:
        return posixpath.normpath(posixpath.join(workspace.path, rel_path))

    def exists(self, workspace: JobWorkspace, rel_path: str) -> bool:
        path = self._in_container(workspace, rel_path)
        return self._rt("exec", workspace.handle.container_id, "test", "-e", path, check=False).returncode == 0

    def _is_dir(self, workspace: JobWorkspace, path: str) -> bool:
        return self._rt("exec", workspace.handle.container_id, "test", "-d", path, check=False).returncode == 0

    def copy_out(self, workspace: JobWorkspace, rel_path: str, host_dest: Path) -> None:
        cid = workspace.handle.container_id
        src = self._in_container(workspace, rel_path)
        host_dest = Path(host_dest)
        try:
            if self._is_dir(workspace, src):
                # "<dir>/." copies the directory's contents into host_dest
                host_dest.mkdir(parents=True, exist_ok=True)
                self._rt("cp", f"{cid}:{src}/.", str(host_dest))
                for name in SANDBOX_FILES:
                    (host_dest / name).unlink(missing_ok=True)
            else:
                host_dest.parent.mkdir(parents=True, exist_ok=True)
                self._rt("cp", f"{cid}:{src}", str(host_dest))
        except subprocess.CalledProcessError as e:
            raise SandboxError(
                kind="copy",
                message=f"could not copy {src} out of container",
                job=workspace.job,
                details={"stderr": (e.stderr or "").strip()},
            ) from e

    def copy_in(self, host_src: Path, workspace: JobWorkspace, rel_path: str) -> None:
        cid = workspace.handle.container_id
        dest = self._in_container(workspace, rel_path)
        host_src = Path(host_src)
        try:
            if host_src.is_dir():
                self._rt("exec", cid, "mkdir", "-p", dest)
                self._rt("cp", f"{host_src}/.", f"{cid}:{dest}")
            else:
                self._rt("exec", cid, "mkdir", "-p", posixpath.dirname(dest))
                self._rt("cp", str(host_src), f"{cid}:{dest}")
        except subprocess.CalledProcessError as e:
            raise SandboxError(
                kind="copy",
                message=f"could not copy {host_src} into container",
                job=workspace.job,
                details={"stderr": (e.stderr or "").strip()},
            ) from e


class BuildContainerExecutor(ContainerExecutor):
    """
    Build mode: the image already contains every action executable, so no
    bind mount. An optional image archive is loaded once before create.
    """

    mode = "build"

    def before_create(self, spec: ExecutorSpec) -> None:
        if spec.archive:
            self.console.event("Loading image with actions (this may take a while)", event="→",
                               archive=spec.archive)
            self._rt("load", "-i", spec.archive)

    def create_args(self, spec: ExecutorSpec) -> List[str]:
        return ["create", spec.image, "sleep", "infinity"]
