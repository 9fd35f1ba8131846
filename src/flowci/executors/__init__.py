from .base import (
    JOB_ENV_FILE,
    NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    ExecResult,
    Executor,
    JobWorkspace,
    SandboxHandle,
)
from .container import BuildContainerExecutor, ContainerExecutor
from .local import LocalExecutor
from .pool import SandboxPool, executor_for

__all__ = [
    "JOB_ENV_FILE",
    "NOT_FOUND_EXIT_CODE",
    "TIMEOUT_EXIT_CODE",
    "ExecResult",
    "Executor",
    "JobWorkspace",
    "SandboxHandle",
    "LocalExecutor",
    "ContainerExecutor",
    "BuildContainerExecutor",
    "SandboxPool",
    "executor_for",
]
