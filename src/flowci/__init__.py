from .dsl import action, build, container, job, local, matrix, retry, wf, JobBuilder
from .dag import build_plan
from .runner import WorkflowRun, load_plan, run_plan
from .model import Action, ArtifactRef, Condition, ExecutorSpec, Job, Level, Plan, RetrySpec, RunResult
from .providers import file_provider, required_provider, static_provider
from .settings import Settings

__all__ = [
    "action", "build", "container", "job", "local", "matrix", "retry", "wf", "JobBuilder",
    "build_plan", "WorkflowRun", "load_plan", "run_plan",
    "Action", "ArtifactRef", "Condition", "ExecutorSpec", "Job", "Level", "Plan", "RetrySpec", "RunResult",
    "file_provider", "required_provider", "static_provider",
    "Settings",
]
