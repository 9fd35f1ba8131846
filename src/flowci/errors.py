# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the per-job status table
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Configuration errors: fatal for the run, never retried
# ----------------------------------------------------------------------

class ConfigurationError(CIError):
    pass


class PlanError(ConfigurationError):
    pass


class ConditionError(ConfigurationError):
    pass


class ProviderError(ConfigurationError):
    pass


class ArtifactError(ConfigurationError):
    """Missing input/output artifact. Aborts the job, not the whole run."""


# ----------------------------------------------------------------------
# Sandbox errors: fatal for every job depending on that sandbox
# ----------------------------------------------------------------------

class SandboxError(CIError):
    pass


# ----------------------------------------------------------------------
# Action failures: recorded and retried, never raised out of a job
# ----------------------------------------------------------------------

@dataclass
class ActionFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    timed_out: bool = False

    def __str__(self) -> str:
        reason = "timed out" if self.timed_out else f"exit={self.exit_code}"
        return f"[{self.job}] action '{self.step}' failed ({reason}): {self.cmd}"
