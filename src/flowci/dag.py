# dag.py
from __future__ import annotations

from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .errors import ConfigurationError, PlanError
from .model import Condition, Job, JobResult, JobStatus, Level, Plan
from .state import WorkflowRunState
from .ui.console import Console, get_console


# ---------------------------------------------------------------------
# Levels from needs / artifact edges
# ---------------------------------------------------------------------

def _producers(jobs: List[Job]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for job in jobs:
        for ref in job.outputs:
            if ref.name in out:
                raise PlanError(
                    kind="plan",
                    message=f"artifact '{ref.name}' is produced by both '{out[ref.name]}' and '{job.name}'",
                    job=job.name,
                )
            out[ref.name] = job.name
    return out


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Edges come from:
      - job.needs: names of jobs that must run BEFORE this job
      - job.inputs: the job producing an input artifact runs BEFORE its consumer
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise PlanError(kind="plan", message=f"Duplicate job names found: {dupes}")

    name_set = set(names)
    producers = _producers(jobs)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        before = list(job.needs)
        before += [producers[ref.name] for ref in job.inputs if ref.name in producers]
        for dep in before:
            if dep not in name_set:
                raise PlanError(
                    kind="plan",
                    message=f"Job '{job.name}' needs missing job '{dep}'. Known jobs: {sorted(name_set)}",
                    job=job.name,
                )
            if dep == job.name:
                raise PlanError(kind="plan", message=f"Job '{job.name}' depends on itself", job=job.name)
            # edge dep -> job.name (dep must run before job)
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological levels (Kahn layering).
    Each level can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise PlanError(kind="plan", message=f"DAG has a cycle. Stuck jobs: {remaining}")

    return levels


def build_plan(
    name: str,
    jobs: Iterable[Job],
    env: Optional[Mapping[str, str]] = None,
    providers: Iterable = (),
) -> Plan:
    """Arrange loose jobs into levels and validate the result."""
    jobs = list(jobs)
    job_map = {job.name: job for job in jobs}
    adj, indeg = build_dag(jobs)
    levels = [Level([job_map[n] for n in names]) for names in topo_levels(adj, indeg)]
    plan = Plan(name=name, levels=levels, env=dict(env or {}), providers=list(providers))
    validate_plan(plan)
    return plan


def validate_plan(plan: Plan) -> None:
    """
    Static checks before anything runs:
      - job names unique, every job has at least one action
      - every job and action condition parses
      - artifact names unique across outputs
      - every input is produced by a job in an earlier level
    """
    if not plan.name:
        raise PlanError(kind="plan", message="plan needs a name")

    seen: Set[str] = set()
    for job in plan.jobs():
        if job.name in seen:
            raise PlanError(kind="plan", message=f"duplicate job name: {job.name}", job=job.name)
        seen.add(job.name)
        if not job.actions:
            raise PlanError(kind="plan", message="job has no actions", job=job.name)
        # malformed condition literals abort here, before any job starts
        Condition.parse(job.condition)
        for action in job.actions:
            Condition.parse(action.condition)

    jobs = list(plan.jobs())
    producers = _producers(jobs)

    produced_before: Set[str] = set()
    for idx, level in enumerate(plan.levels):
        for job in level.jobs:
            for ref in job.inputs:
                if ref.name in produced_before:
                    continue
                where = (
                    f"produced by '{producers[ref.name]}' in the same or a later level"
                    if ref.name in producers else "not produced by any job"
                )
                raise PlanError(
                    kind="plan",
                    message=f"input artifact '{ref.name}' is {where}",
                    job=job.name,
                    details={"level": idx},
                )
        for job in level.jobs:
            produced_before.update(ref.name for ref in job.outputs)


# ---------------------------------------------------------------------
# Level execution
# ---------------------------------------------------------------------

@dataclass
class LevelOutcome:
    results: Dict[str, JobResult] = field(default_factory=dict)
    halt: bool = False
    blocking: List[str] = field(default_factory=list)


class LevelScheduler:
    """
    Runs every job of one level concurrently and joins them all.

    Never cancels siblings: a failing job does not stop jobs already
    running in the same level. The halt decision is made after the join.
    """

    def __init__(
        self,
        state: WorkflowRunState,
        *,
        max_workers: int | None = None,
        console: Optional[Console] = None,
    ):
        self.state = state
        self.max_workers = max_workers
        self.console = console or get_console()

    def run_level(self, index: int, level: Level, run_job: Callable[..., JobResult]) -> LevelOutcome:
        """
        `run_job(job, failed=...)` gets whether any earlier level failed;
        failures inside this level are only visible to later levels.
        """
        self.console.print_level_start(index, level.names)
        outcome = LevelOutcome()
        errors: List[BaseException] = []
        failed_before = self.state.has_failures

        workers = self.max_workers or max(1, len(level.jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"level{index}") as pool:
            futures = {pool.submit(run_job, job, failed=failed_before): job for job in level.jobs}
            wait(futures)

        for future, job in futures.items():
            try:
                outcome.results[job.name] = future.result()
            except ConfigurationError as e:
                errors.append(e)
            except Exception as e:
                # an unexpected crash still fails the job, and is re-raised below
                self.state.set_status(job.name, JobStatus.FAILURE)
                errors.append(e)

        if errors:
            raise errors[0]

        for job in level.jobs:
            if self.state.status(job.name) is JobStatus.FAILURE and not job.continue_on_error:
                outcome.blocking.append(job.name)
        outcome.halt = bool(outcome.blocking)
        return outcome
