from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path

from .errors import ConfigurationError

LOG_FORMATS = ("structured", "simple", "json")

DEFAULT_RUN_ROOT = Path("~/.cache/flowci").expanduser()
DEFAULT_WORKSPACE_ROOT = Path(tempfile.gettempdir()) / "flowci"
DEFAULT_CONTAINER_RUNTIME = "docker"
DEFAULT_ACTION_STORE = "/nix/store"
CONTAINER_WORKSPACE = "/workspace"


@dataclass(frozen=True)
class Settings:
    log_format: str = "structured"
    keep_workspace: bool = False
    run_root: Path = DEFAULT_RUN_ROOT
    workspace_root: Path = DEFAULT_WORKSPACE_ROOT
    container_runtime: str = DEFAULT_CONTAINER_RUNTIME
    action_store: str = DEFAULT_ACTION_STORE
    max_workers: int | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        log_format = env.get("FLOWCI_LOG_FORMAT") or "structured"
        if log_format not in LOG_FORMATS:
            raise ConfigurationError(
                kind="config",
                message=f"FLOWCI_LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}, got {log_format!r}",
            )
        workers = env.get("FLOWCI_MAX_WORKERS")
        if workers and not (workers.isdigit() and int(workers) > 0):
            raise ConfigurationError(
                kind="config",
                message=f"FLOWCI_MAX_WORKERS must be a positive integer, got {workers!r}",
            )
        return cls(
            log_format=log_format,
            keep_workspace=env.get("FLOWCI_KEEP_WORKSPACE", "") == "1",
            run_root=Path(env.get("FLOWCI_RUN_ROOT", str(DEFAULT_RUN_ROOT))).expanduser(),
            workspace_root=Path(env.get("FLOWCI_WORKSPACE_ROOT", str(DEFAULT_WORKSPACE_ROOT))).expanduser(),
            container_runtime=env.get("FLOWCI_CONTAINER_RUNTIME", DEFAULT_CONTAINER_RUNTIME),
            action_store=env.get("FLOWCI_ACTION_STORE", DEFAULT_ACTION_STORE),
            max_workers=int(workers) if workers else None,
        )

    def override(self, **changes) -> "Settings":
        """Apply non-None overrides (e.g. CLI flags) on top of env settings."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
