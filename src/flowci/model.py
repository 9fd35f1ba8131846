# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from .errors import ConditionError


# ---------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------

class ConditionKind(str, enum.Enum):
    SUCCESS = "success()"
    FAILURE = "failure()"
    ALWAYS = "always()"
    CANCELLED = "cancelled()"
    SHELL = "shell"


@dataclass(frozen=True)
class Condition:
    """Predicate deciding whether a job or action runs."""
    kind: ConditionKind
    expr: str | None = None

    @classmethod
    def parse(cls, value: "Condition | str | None") -> "Condition":
        """
        Accepts "success()", "failure()", "always()", "cancelled()" or a
        shell expression. Any other `name()` literal is a configuration error.
        """
        if value is None:
            return SUCCESS
        if isinstance(value, Condition):
            return value

        text = str(value).strip()
        if not text:
            raise ConditionError(kind="condition", message="empty condition")

        for kind in (ConditionKind.SUCCESS, ConditionKind.FAILURE, ConditionKind.ALWAYS, ConditionKind.CANCELLED):
            if text == kind.value:
                return cls(kind)

        # looks like a builtin call but isn't one we know
        if text.endswith("()") and text[:-2].isidentifier():
            raise ConditionError(
                kind="condition",
                message=f"unknown condition: {text}",
                details={"known": "success(), failure(), always(), cancelled()"},
            )
        return cls(ConditionKind.SHELL, text)

    def __str__(self) -> str:
        if self.kind is ConditionKind.SHELL:
            return self.expr or ""
        return self.kind.value


SUCCESS = Condition(ConditionKind.SUCCESS)
FAILURE = Condition(ConditionKind.FAILURE)
ALWAYS = Condition(ConditionKind.ALWAYS)
CANCELLED = Condition(ConditionKind.CANCELLED)


# ---------------------------------------------------------------------
# Executors / retry / artifacts
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ExecutorSpec:
    """
    Where a job's actions execute.

    kind="local"      -> bare process sandbox on the host
    kind="container"  -> long-lived container; mode "mount" bind-mounts the
                         action store, mode "build" uses a pre-baked image
    """
    kind: str = "local"
    image: str | None = None
    mode: str = "mount"
    archive: str | None = None   # image tarball to load once (build mode)

    def __post_init__(self) -> None:
        if self.kind not in ("local", "container"):
            raise ValueError(f"unknown executor kind: {self.kind!r}")
        if self.kind == "container":
            if not self.image:
                raise ValueError("container executor needs an image")
            if self.mode not in ("mount", "build"):
                raise ValueError(f"container mode must be 'mount' or 'build', got: {self.mode!r}")

    @property
    def key(self) -> str:
        """Canonical string; jobs with the same key share one sandbox."""
        if self.kind == "local":
            return "local"
        return f"container:{self.image}:{self.mode}"


LOCAL = ExecutorSpec()


BACKOFF_KINDS = ("constant", "linear", "exponential")


@dataclass(frozen=True)
class RetrySpec:
    max_attempts: int = 1
    backoff: str = "exponential"
    min_delay: float = 1.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff not in BACKOFF_KINDS:
            raise ValueError(f"unknown backoff {self.backoff!r}, expected one of {BACKOFF_KINDS}")
        if self.min_delay < 0 or self.max_delay < self.min_delay:
            raise ValueError("retry delays must satisfy 0 <= min_delay <= max_delay")


def valid_artifact_name(name: str) -> bool:
    """Artifact names are single path components inside the store."""
    return bool(name) and "/" not in name and "\\" not in name and not name.startswith(".")


@dataclass(frozen=True)
class ArtifactRef:
    """`path` is relative to the job workspace (source on save, target on restore)."""
    name: str
    path: str = "."

    def __post_init__(self) -> None:
        if not valid_artifact_name(self.name):
            raise ValueError(f"invalid artifact name {self.name!r}: no path separators, no leading '.'")


# ---------------------------------------------------------------------
# Actions / jobs / plan
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Action:
    """A single executable invocation inside a job."""
    name: str
    run: str                                   # executable path, resolved by the build system
    condition: Condition = SUCCESS
    env: Dict[str, str] = field(default_factory=dict)
    retry: Optional[RetrySpec] = None
    timeout: Optional[float] = None            # seconds per attempt


@dataclass
class Job:
    """
    A CI job: ordered actions + executor + artifact edges.

    `needs` is only consulted when arranging loose jobs into levels.
    """
    name: str
    actions: list[Action]
    condition: Condition = SUCCESS
    continue_on_error: bool = False
    executor: ExecutorSpec = LOCAL
    env: Dict[str, str] = field(default_factory=dict)
    inputs: list[ArtifactRef] = field(default_factory=list)
    outputs: list[ArtifactRef] = field(default_factory=list)
    needs: list[str] = field(default_factory=list)


@dataclass
class Level:
    jobs: list[Job] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [j.name for j in self.jobs]


@dataclass
class Plan:
    """Immutable-for-a-run leveled plan."""
    name: str
    levels: list[Level]
    env: Dict[str, str] = field(default_factory=dict)      # workflow-level, lowest priority
    providers: list = field(default_factory=list)          # provider executables or argv lists

    def jobs(self) -> Iterator[Job]:
        for level in self.levels:
            yield from level.jobs


# ---------------------------------------------------------------------
# Run-time status / results
# ---------------------------------------------------------------------

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILURE, JobStatus.SKIPPED)


@dataclass(frozen=True)
class ActionResult:
    name: str
    status: str                 # "success" | "failure" | "skipped"
    exit_code: int | None = None
    duration: float = 0.0
    attempts: int = 0


@dataclass
class JobResult:
    name: str
    status: JobStatus
    actions: list[ActionResult] = field(default_factory=list)
    error: str | None = None

    @property
    def executed(self) -> List[str]:
        return [a.name for a in self.actions if a.status != "skipped"]


@dataclass
class RunResult:
    run_id: str
    job_status: Dict[str, JobStatus]
    failed_jobs: list[str]
    cancelled: bool = False
    jobs: Dict[str, JobResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed_jobs and not self.cancelled

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        return 1 if self.failed_jobs else 0
