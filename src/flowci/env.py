# env.py
from __future__ import annotations

import os
import re
import shlex
import subprocess
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from .errors import ProviderError
from .model import Action, Job
from .ui.console import Console, get_console

# ---------------------------------------------------------------------
# Layering, highest wins:
#   1. runtime environment captured at run start
#   2. action.env
#   3. job.env
#   4. provider output (later providers override earlier ones)
#   5. workflow env
# The job context (values actions append to $JOB_ENV) sits above 2..5
# but below the runtime environment.
# ---------------------------------------------------------------------

_EXPORT_RE = re.compile(r"^\s*(export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")

# an executable path, or an argv list for built-in providers
ProviderCmd = Union[str, Sequence[str]]


def provider_name(provider: ProviderCmd) -> str:
    if isinstance(provider, str):
        return Path(provider).name
    argv = list(provider)
    if len(argv) >= 3 and argv[1:3] == ["-m", "flowci"]:
        return " ".join(argv[3:5])
    return Path(argv[0]).name if argv else "<empty>"


def _unquote(raw: str) -> str:
    raw = raw.strip()
    if not raw:
        return ""
    try:
        return " ".join(shlex.split(raw))
    except ValueError:
        return raw


def parse_env_lines(text: str, *, require_export: bool = False) -> Dict[str, str]:
    """
    Parse `export KEY=value` / `KEY=value` lines. Values may be shell-quoted.
    Later lines win. Comments and anything else are ignored.
    """
    out: Dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        m = _EXPORT_RE.match(line)
        if not m:
            continue
        if require_export and not m.group(1):
            continue
        out[m.group(2)] = _unquote(m.group(3))
    return out


class JobContext:
    """
    Job-local key-value side channel.

    Actions append KEY=value lines to $JOB_ENV; before each action the file
    is re-read through the executor and merged into the action environment.
    Other jobs never see it.
    """

    def __init__(self, job: str):
        self.job = job
        self._values: Dict[str, str] = {}

    def load(self, text: str) -> None:
        self._values.update(parse_env_lines(text))

    def set(self, key: str, value: str) -> None:
        self._values[key] = str(value)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


class EnvResolver:
    """Produces one flat environment per job/action."""

    def __init__(
        self,
        workflow_env: Optional[Mapping[str, str]] = None,
        providers: Iterable[ProviderCmd] = (),
        *,
        runtime: Optional[Mapping[str, str]] = None,
        console: Optional[Console] = None,
    ):
        self.runtime: Dict[str, str] = dict(os.environ if runtime is None else runtime)
        self.workflow_env: Dict[str, str] = {k: str(v) for k, v in (workflow_env or {}).items()}
        self.providers = list(providers)
        self.provider_env: Dict[str, str] = {}
        self.console = console or get_console()
        self._loaded = False

    # ---- providers ----

    def load_providers(self) -> Dict[str, str]:
        """
        Run every provider once, in order. A provider that fails aborts the run.
        Returns the merged provider environment.
        """
        if self._loaded:
            return dict(self.provider_env)

        if self.providers:
            self.console.event("Loading environment from providers", event="→")
        for provider in self.providers:
            self._run_provider(provider)
        if self.providers:
            self.console.event("Environment loaded", event="✓")

        self._loaded = True
        return dict(self.provider_env)

    def _run_provider(self, provider: ProviderCmd) -> None:
        argv = [provider] if isinstance(provider, str) else [str(a) for a in provider]
        name = provider_name(provider)
        self.console.event("Loading environment", event="→", provider=name)

        # providers see the runtime env plus whatever earlier providers set
        env = {**self.provider_env, **self.runtime}
        try:
            proc = subprocess.run(
                argv,
                env=env,
                text=True,
                capture_output=True,
            )
        except OSError as e:
            raise ProviderError(
                kind="provider",
                message=f"could not launch environment provider: {name}",
                details={"error": str(e)},
            ) from e

        if proc.returncode != 0:
            self.console.event(f"Provider failed (exit {proc.returncode})", event="✗", provider=name)
            raise ProviderError(
                kind="provider",
                message=f"environment provider failed: {name}",
                details={"exit_code": proc.returncode, "stderr": (proc.stderr or "").strip()[-2000:]},
            )

        vars_set, vars_from_runtime = self.apply_provider_output(proc.stdout or "")
        if vars_set:
            self.console.event("Variables loaded", event="✓", provider=name, vars_set=vars_set)
        if vars_from_runtime:
            self.console.event("Variables skipped (runtime override)", event="⊘",
                               provider=name, vars_from_runtime=vars_from_runtime)

    def apply_provider_output(self, output: str) -> Tuple[int, int]:
        """Apply `export KEY=value` lines; runtime keys are never overridden."""
        vars_set = 0
        vars_from_runtime = 0
        for key, value in parse_env_lines(output, require_export=True).items():
            if key in self.runtime:
                vars_from_runtime += 1
                continue
            self.provider_env[key] = value
            vars_set += 1
        return vars_set, vars_from_runtime

    # ---- resolution ----

    def resolve(
        self,
        job: Optional[Job] = None,
        action: Optional[Action] = None,
        context: Optional[JobContext] = None,
    ) -> Dict[str, str]:
        """
        Return the overlay: every key declared by a non-runtime layer, with the
        runtime value substituted wherever the runtime defines the same key.
        """
        merged: Dict[str, str] = {}
        merged.update(self.workflow_env)
        merged.update(self.provider_env)
        if job is not None:
            merged.update({k: str(v) for k, v in job.env.items()})
        if action is not None:
            merged.update({k: str(v) for k, v in action.env.items()})
        if context is not None:
            merged.update(context.as_dict())

        for key in merged:
            if key in self.runtime:
                merged[key] = self.runtime[key]
        return merged

    def full(self, overlay: Mapping[str, str]) -> Dict[str, str]:
        """Runtime environment plus overlay, as a local child process sees it."""
        env = dict(self.runtime)
        env.update(overlay)
        return env
