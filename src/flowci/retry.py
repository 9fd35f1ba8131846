# retry.py
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .executors.base import ExecResult
from .model import RetrySpec
from .state import Interrupted
from .ui.console import Console, get_console

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smh]?)\s*$")
_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_timeout(value: str | int | float | None) -> Optional[float]:
    """
    "30s" -> 30, "5m" -> 300, "2h" -> 7200, 45 -> 45, None -> None.
    A bare number means seconds.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        m = _DURATION_RE.match(value)
        if not m:
            raise ValueError(f"invalid duration: {value!r}")
        seconds = float(m.group(1)) * _UNITS[m.group(2)]
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {value!r}")
    return seconds


def format_timeout(seconds: float) -> str:
    if seconds >= 3600:
        return f"{int(seconds // 3600)}h"
    if seconds >= 60:
        return f"{int(seconds // 60)}m"
    return f"{seconds:g}s"


def compute_backoff(attempt: int, spec: RetrySpec) -> float:
    """
    Delay after failed attempt number `attempt` (1-based).

      constant:    min_delay
      linear:      min_delay * attempt
      exponential: min_delay * 2^(attempt-1)

    Capped at max_delay, floored at min_delay.
    """
    if spec.backoff == "constant":
        raw = spec.min_delay
    elif spec.backoff == "linear":
        raw = spec.min_delay * attempt
    else:
        raw = spec.min_delay * (2 ** (attempt - 1))
    return max(spec.min_delay, min(raw, spec.max_delay))


@dataclass(frozen=True)
class Outcome:
    """Final attempt's result plus how many attempts it took."""
    result: ExecResult
    attempts: int


class RetryPolicy:
    """Wraps a single action invocation in bounded retry with backoff."""

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        console: Optional[Console] = None,
    ):
        self.sleep = sleep
        self.console = console or get_console()

    def execute(
        self,
        invoke: Callable[[], ExecResult],
        spec: Optional[RetrySpec] = None,
        *,
        job: str | None = None,
        action: str | None = None,
    ) -> Outcome:
        max_attempts = spec.max_attempts if spec is not None else 1

        attempt = 1
        while True:
            result = invoke()
            if result.exit_code == 0:
                if attempt > 1:
                    self.console.event("Succeeded after retry", job=job, action=action,
                                       event="retry", attempt=attempt, total_attempts=attempt)
                return Outcome(result, attempt)

            if attempt >= max_attempts:
                if max_attempts > 1:
                    self.console.event("Retries exhausted", job=job, action=action, event="retry",
                                       attempts=max_attempts, exit_code=result.exit_code)
                return Outcome(result, attempt)

            delay = compute_backoff(attempt, spec)
            self.console.event(
                "Waiting before retry", job=job, action=action, event="retry",
                attempt=f"{attempt}/{max_attempts}", next_attempt=attempt + 1,
                delay=f"{delay:g}s", backoff=spec.backoff, exit_code=result.exit_code,
            )
            try:
                self.sleep(delay)
            except Interrupted:
                return Outcome(result, attempt)
            attempt += 1
