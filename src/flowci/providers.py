"""
Built-in environment providers.

A provider is any executable that prints `export KEY=value` lines and exits
0. The helpers below return argv lists for plan files
(`Plan.providers=[static_provider(LEVEL="1")]`); the argv calls back into
`flowci provide ...`, which uses the render/read functions here.
"""

from __future__ import annotations

import re
import shlex
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple

from .errors import ProviderError

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_LINE_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def _flowci(*args: str) -> List[str]:
    return [sys.executable, "-m", "flowci", "provide", *args]


def static_provider(**env) -> List[str]:
    return _flowci("static", *(f"{k}={v}" for k, v in env.items()))


def file_provider(path: str | Path, *, required: bool = False) -> List[str]:
    args = ["file", str(path)]
    if required:
        args.append("--required")
    return _flowci(*args)


def required_provider(*names: str) -> List[str]:
    return _flowci("required", *names)


# ---------------------------------------------------------------------
# Provider bodies
# ---------------------------------------------------------------------

def render_exports(env: Mapping[str, str]) -> str:
    lines = []
    for key, value in env.items():
        if not _KEY_RE.match(key):
            raise ProviderError(
                kind="provider",
                message=f"Invalid environment variable name: {key} (must match [A-Za-z_][A-Za-z0-9_]*)",
            )
        lines.append(f"export {key}={shlex.quote(str(value))}")
    return "\n".join(lines) + ("\n" if lines else "")


def parse_assignments(pairs: Iterable[str]) -> Dict[str, str]:
    """KEY=VALUE command line arguments."""
    out: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ProviderError(kind="provider", message=f"expected KEY=VALUE, got: {pair}")
        out[key] = value
    return out


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def read_env_file(path: str | Path, *, required: bool = False) -> Dict[str, str]:
    """
    dotenv-style file: KEY=VALUE lines, surrounding quotes stripped,
    blank lines and # comments skipped. A missing file is empty unless
    `required`.
    """
    p = Path(path)
    if not p.is_file():
        if required:
            raise ProviderError(kind="provider", message=f"Required env file not found: {p}")
        return {}

    out: Dict[str, str] = {}
    for line in p.read_text(encoding="utf-8").splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if m:
            out[m.group(1)] = _strip_quotes(m.group(2).rstrip())
    return out


def check_required(names: Iterable[str], environ: Mapping[str, str]) -> Tuple[bool, List[str]]:
    """Returns (ok, missing). Set-but-empty counts as present."""
    missing = [n for n in names if n not in environ]
    return not missing, missing
