# artifacts.py
from __future__ import annotations

import json
import posixpath
import shutil
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, Optional

from .errors import ArtifactError
from .executors.base import Executor, JobWorkspace
from .model import valid_artifact_name
from .ui.console import Console, get_console

# ---------------------------------------------------------------------
# Layout (one store per run):
#   <run_root>/artifacts/
#     <name>/<path>                 mirrored copy of the job's <path>
#     .manifests/<name>.json        who saved it, from where, when
#
# Save goes through a staging dir and is swapped in once the copy
# completed, so a half-written entry is never visible under <name>/.
# Restore copies the entry's contents; consumers never move it, so any
# number of later jobs can restore the same artifact.
# ---------------------------------------------------------------------

MANIFEST_DIR = ".manifests"
STAGING_DIR = ".staging"


def _json_dumps_pretty(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


def ensure_clean_dir(path: str | Path) -> None:
    p = Path(path)
    if p.exists():
        shutil.rmtree(p)
    p.mkdir(parents=True, exist_ok=True)


def normalize_artifact_path(path: str) -> str:
    """
    Workspace-relative POSIX path. Absolute paths and anything escaping the
    workspace via '..' are rejected.
    """
    raw = (path or ".").replace("\\", "/")
    if raw.startswith("/"):
        raise ArtifactError(kind="artifact", message=f"artifact path must be relative: {path}")
    norm = posixpath.normpath(raw)
    if norm == ".." or norm.startswith("../"):
        raise ArtifactError(kind="artifact", message=f"artifact path escapes the job workspace: {path}")
    return norm


def _check_name(name: str) -> None:
    if not valid_artifact_name(name):
        raise ArtifactError(kind="artifact", message=f"invalid artifact name: {name!r}")


def _tree_size(p: Path) -> int:
    if p.is_file():
        return p.stat().st_size
    total = 0
    for f in p.rglob("*"):
        if f.is_file() and not f.is_symlink():
            total += f.stat().st_size
    return total


def format_size(num: float) -> str:
    """du -h style: 512B, 1.5K, 3.0M ..."""
    for unit in ("B", "K", "M", "G"):
        if num < 1024 or unit == "G":
            return f"{num:.0f}{unit}" if unit == "B" else f"{num:.1f}{unit}"
        num /= 1024
    return f"{num:.1f}T"


class ArtifactStore:
    """Host-side named artifact store for one run."""

    def __init__(self, run_root: str | Path, *, console: Optional[Console] = None):
        self.root = Path(run_root) / "artifacts"
        self.root.mkdir(parents=True, exist_ok=True)
        self.console = console or get_console()
        self._lock = threading.Lock()

    def entry_path(self, name: str) -> Path:
        _check_name(name)
        return self.root / name

    def manifest_path(self, name: str) -> Path:
        _check_name(name)
        return self.root / MANIFEST_DIR / f"{name}.json"

    def manifest(self, name: str) -> Dict | None:
        p = self.manifest_path(name)
        if not p.exists():
            return None
        return json.loads(p.read_text(encoding="utf-8"))

    def names(self) -> Iterable[str]:
        return sorted(p.name for p in self.root.iterdir() if p.is_dir() and not p.name.startswith("."))

    def _write_manifest(self, name: str, manifest: Dict) -> None:
        p = self.manifest_path(name)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".json.tmp")
        tmp.write_text(_json_dumps_pretty(manifest), encoding="utf-8")
        tmp.replace(p)

    # ------------------------------------------------------------------
    # save / restore
    # ------------------------------------------------------------------

    def save(self, name: str, executor: Executor, workspace: JobWorkspace, path: str) -> Path:
        """
        Copy <job workspace>/<path> to <root>/<name>/<path>, replacing any
        earlier entry of the same name. Raises ArtifactError when the source
        path does not exist.
        """
        rel = normalize_artifact_path(path)
        job = workspace.job
        self.console.event("Saving artifact", job=job, event="→", artifact=name, path=rel)

        manifest = {
            "name": name,
            "job": job,
            "path": rel,
            "missing": False,
            "saved_at_unix": int(time.time()),
        }

        if not executor.exists(workspace, rel):
            manifest["missing"] = True
            with self._lock:
                shutil.rmtree(self.entry_path(name), ignore_errors=True)
                self._write_manifest(name, manifest)
            self.console.event("Path not found", job=job, event="✗", artifact=name, path=rel)
            raise ArtifactError(
                kind="artifact",
                message=f"output path not found: {rel}",
                job=job,
                details={"artifact": name},
            )

        staging = self.root / STAGING_DIR / f"{name}-{threading.get_ident()}"
        ensure_clean_dir(staging)
        try:
            dest = staging if rel == "." else staging / rel
            executor.copy_out(workspace, rel, dest)

            entry = self.entry_path(name)
            with self._lock:
                if entry.exists():
                    shutil.rmtree(entry)
                staging.replace(entry)
                manifest["size_bytes"] = _tree_size(entry)
                self._write_manifest(name, manifest)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        self.console.event(
            "Saved", job=job, event="✓", artifact=name, path=rel,
            size=format_size(manifest["size_bytes"]),
        )
        return entry

    def restore(self, name: str, executor: Executor, workspace: JobWorkspace, path: str = ".") -> None:
        """
        Copy the contents of entry <name> into <job workspace>/<path>.
        Raises ArtifactError when the artifact was never saved or its
        producer's output path was missing.
        """
        rel = normalize_artifact_path(path)
        job = workspace.job
        entry = self.entry_path(name)
        manifest = self.manifest(name)

        if not entry.exists() or manifest is None or manifest.get("missing"):
            self.console.event("Artifact not found", job=job, event="✗", artifact=name)
            raise ArtifactError(
                kind="artifact",
                message=f"artifact '{name}' was not saved by any earlier job",
                job=job,
                details={"artifact": name, "store": str(self.root)},
            )

        self.console.event("Restoring artifact", job=job, event="→", artifact=name, path=rel)
        executor.copy_in(entry, workspace, rel)
        self.console.event("Restored", job=job, event="✓", artifact=name, path=rel)
