# conditions.py
from __future__ import annotations

import subprocess
from typing import Callable, Mapping, Optional

from .model import Condition, ConditionKind
from .ui.console import Console, get_console

# (expr, env) -> exit code
ShellFn = Callable[[str, Mapping[str, str]], int]


def host_shell(expr: str, env: Mapping[str, str]) -> int:
    """Evaluate `expr` with `sh -c` on the host. Stdout is discarded."""
    proc = subprocess.run(
        ["sh", "-c", expr],
        env=dict(env),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )
    return proc.returncode


class ConditionEvaluator:
    """
    Decides run/skip for a job or action.

      success()   -> run iff nothing failed in scope
      failure()   -> run iff something failed in scope
      always()    -> run
      cancelled() -> run iff the run was cancelled
      <shell>     -> run iff `sh -c <shell>` exits 0; errors mean skip

    Once a run is cancelled only always() and cancelled() stay eligible.
    Evaluation never changes the failure state it is given.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()

    def should_run(
        self,
        condition: Condition | str | None,
        *,
        failed: bool,
        cancelled: bool = False,
        env: Optional[Mapping[str, str]] = None,
        shell: Optional[ShellFn] = None,
    ) -> bool:
        cond = Condition.parse(condition)   # raises ConditionError on bad literals
        kind = cond.kind

        if kind is ConditionKind.ALWAYS:
            return True
        if kind is ConditionKind.CANCELLED:
            return cancelled
        if cancelled:
            return False
        if kind is ConditionKind.SUCCESS:
            return not failed
        if kind is ConditionKind.FAILURE:
            return failed
        return self._shell(cond.expr or "", env or {}, shell or host_shell)

    def _shell(self, expr: str, env: Mapping[str, str], shell: ShellFn) -> bool:
        try:
            code = shell(expr, env)
        except OSError as e:
            self.console.print_debug(f"condition {expr!r} could not be evaluated: {e}")
            return False
        if code != 0:
            self.console.print_debug(f"condition {expr!r} exited {code}")
        return code == 0
