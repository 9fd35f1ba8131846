# executors/pool.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..model import ExecutorSpec
from ..settings import Settings
from ..state import WorkflowRunState
from ..ui.console import Console, get_console
from .base import Executor, SandboxHandle
from .container import BuildContainerExecutor, ContainerExecutor
from .local import LocalExecutor


def executor_for(
    spec: ExecutorSpec,
    settings: Settings,
    run_id: str,
    *,
    console: Optional[Console] = None,
    state: Optional[WorkflowRunState] = None,
) -> Executor:
    if spec.kind == "local":
        cls = LocalExecutor
    elif spec.mode == "build":
        cls = BuildContainerExecutor
    else:
        cls = ContainerExecutor
    return cls(settings, run_id, console=console, state=state)


@dataclass
class _Entry:
    executor: Executor
    lock: threading.Lock = field(default_factory=threading.Lock)
    handle: SandboxHandle | None = None
    error: Exception | None = None


class SandboxPool:
    """
    One sandbox per distinct ExecutorSpec key, created on first use.

    Concurrent jobs asking for the same key block on that key's lock; the
    first one provisions, the rest reuse the handle. A failed provision is
    remembered and re-raised for every later job needing that sandbox.
    """

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
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _entry(self, spec: ExecutorSpec) -> _Entry:
        with self._lock:
            entry = self._entries.get(spec.key)
            if entry is None:
                executor = executor_for(spec, self.settings, self.run_id, console=self.console, state=self.state)
                entry = _Entry(executor=executor)
                self._entries[spec.key] = entry
            return entry

    def acquire(self, spec: ExecutorSpec) -> tuple[Executor, SandboxHandle]:
        entry = self._entry(spec)
        with entry.lock:
            if entry.error is not None:
                raise entry.error
            if entry.handle is None:
                try:
                    entry.handle = entry.executor.provision(spec)
                except Exception as e:
                    entry.error = e
                    raise
            return entry.executor, entry.handle

    @property
    def keys(self) -> List[str]:
        with self._lock:
            return [k for k, e in self._entries.items() if e.handle is not None]

    def teardown_all(self) -> None:
        """Tear down every provisioned sandbox. Failures are logged, not raised."""
        with self._lock:
            entries = list(self._entries.items())
        for key, entry in entries:
            if entry.handle is None:
                continue
            try:
                entry.executor.teardown(entry.handle)
            except Exception as e:
                self.console.event(f"Teardown failed: {e}", event="✗", sandbox=key)
            entry.handle = None
