# state.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
from typing import Dict, Iterable, List

from .model import JobStatus


class Interrupted(Exception):
    """Raised out of interruptible waits once the run has been interrupted."""


class WorkflowRunState:
    """
    The only state shared between concurrently running jobs.

    - job_status:  name -> JobStatus
    - failed_jobs: ordered, append-only
    - cancelled:   cooperative flag (cancelled() conditions become eligible)
    - interrupted: hard stop; in-flight processes are killed

    Every mutation goes through the lock. Readers get snapshots.
    """

    def __init__(self, job_names: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._status: Dict[str, JobStatus] = {n: JobStatus.PENDING for n in job_names}
        self._failed: List[str] = []
        self._cancelled = False
        self._interrupt = threading.Event()
        self._procs: set[subprocess.Popen] = set()

    # ---- status ----

    def set_status(self, job: str, status: JobStatus) -> None:
        with self._lock:
            self._status[job] = status
            if status is JobStatus.FAILURE and job not in self._failed:
                self._failed.append(job)

    def status(self, job: str) -> JobStatus:
        with self._lock:
            return self._status.get(job, JobStatus.PENDING)

    @property
    def job_status(self) -> Dict[str, JobStatus]:
        with self._lock:
            return dict(self._status)

    @property
    def failed_jobs(self) -> List[str]:
        with self._lock:
            return list(self._failed)

    @property
    def has_failures(self) -> bool:
        with self._lock:
            return bool(self._failed)

    # ---- cancellation ----

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def interrupted(self) -> bool:
        return self._interrupt.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    def interrupt(self) -> None:
        """
        Cancel and kill every in-flight process group.

        Interrupt is sticky: `track` kills any process started afterwards,
        cleanup actions under always() or cancelled() included. Use `cancel`
        when those should still run.
        """
        with self._lock:
            self._cancelled = True
            procs = list(self._procs)
        self._interrupt.set()
        for proc in procs:
            kill_process_group(proc)

    def sleep(self, seconds: float) -> None:
        """Interruptible sleep used for retry backoff."""
        if self._interrupt.wait(timeout=max(0.0, seconds)):
            raise Interrupted()

    # ---- in-flight process registry ----

    def track(self, proc: subprocess.Popen) -> None:
        """Register a started child; after `interrupt` it is killed at once."""
        with self._lock:
            self._procs.add(proc)
            interrupted = self._interrupt.is_set()
        if interrupted:
            kill_process_group(proc)

    def untrack(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)


def kill_process_group(proc: subprocess.Popen) -> None:
    """Kill a child started with start_new_session=True (and its children)."""
    if proc.poll() is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass
