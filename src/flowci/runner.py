# runner.py
from __future__ import annotations

import os
import runpy
import shutil
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from .artifacts import ArtifactStore
from .conditions import ConditionEvaluator, host_shell
from .dag import LevelScheduler, build_plan, validate_plan
from .env import EnvResolver, JobContext
from .errors import ActionFailure, ArtifactError, PlanError, SandboxError
from .executors.base import Executor, JobWorkspace
from .executors.pool import SandboxPool
from .model import Action, ActionResult, Job, JobResult, JobStatus, Plan, RunResult
from .retry import RetryPolicy
from .settings import Settings
from .state import WorkflowRunState
from .ui.console import Console, get_console

# ----------------------------------------------------------------------
# Plan loading
# ----------------------------------------------------------------------

def load_plan(path: str | Path) -> Plan:
    """
    Load a plan from a python file path.

    The file must define one of:
      - plan() -> Plan
      - PLAN = Plan(...)
      - workflow() -> List[Job]
      - JOBS = [Job, ...]

    Job lists are arranged into levels from their needs/artifact edges,
    and the plan is named after the file.
    """
    plan_path = Path(path).expanduser().resolve()
    if not plan_path.exists():
        raise FileNotFoundError(f"Plan file not found: {plan_path}")
    if plan_path.suffix != ".py":
        raise ValueError(f"Plan must be a .py file, got: {plan_path.name}")

    module_name = f"flowci_plan_{plan_path.stem}"
    globals_dict = runpy.run_path(str(plan_path), run_name=module_name)

    loaded = None
    for key in ("plan", "PLAN", "workflow", "JOBS"):
        if key not in globals_dict:
            continue
        value = globals_dict[key]
        if callable(value):
            value = value()
        if isinstance(value, (Plan, list)):
            loaded = value
            break

    if isinstance(loaded, Plan):
        validate_plan(loaded)
        return loaded
    if isinstance(loaded, list) and all(isinstance(j, Job) for j in loaded):
        name = plan_path.stem.removesuffix("_plan") or plan_path.stem
        return build_plan(name, loaded)

    raise PlanError(
        kind="plan",
        message=f"{plan_path.name} must define plan() -> Plan, PLAN, workflow() -> List[Job] or JOBS",
    )


# ----------------------------------------------------------------------
# One job
# ----------------------------------------------------------------------

class JobRunner:
    """
    Runs one job:
      condition -> sandbox -> workspace -> restore inputs -> actions -> save outputs

    Action failures never raise out of here; they end up in the job status.
    Configuration errors (bad condition literals) do.
    """

    def __init__(
        self,
        state: WorkflowRunState,
        pool: SandboxPool,
        store: ArtifactStore,
        resolver: EnvResolver,
        *,
        conditions: Optional[ConditionEvaluator] = None,
        retry: Optional[RetryPolicy] = None,
        console: Optional[Console] = None,
    ):
        self.state = state
        self.pool = pool
        self.store = store
        self.resolver = resolver
        self.console = console or get_console()
        self.conditions = conditions or ConditionEvaluator(self.console)
        self.retry = retry or RetryPolicy(sleep=state.sleep, console=self.console)

    def run(self, job: Job, *, failed: bool | None = None) -> JobResult:
        """
        `failed` is the failure state of earlier levels, captured before the
        level started; siblings finishing first never change it.
        """
        if failed is None:
            failed = self.state.has_failures
        job_env = self.resolver.full(self.resolver.resolve(job))
        if not self.conditions.should_run(
            job.condition,
            failed=failed,
            cancelled=self.state.cancelled,
            env=job_env,
            shell=host_shell,
        ):
            self.state.set_status(job.name, JobStatus.SKIPPED)
            self.console.print_job_skipped(job.name, str(job.condition))
            return JobResult(job.name, JobStatus.SKIPPED)

        self.state.set_status(job.name, JobStatus.RUNNING)
        result = JobResult(job.name, JobStatus.RUNNING)

        try:
            executor, handle = self.pool.acquire(job.executor)
            workspace = executor.prepare_job_workspace(handle, job.name)
        except SandboxError as e:
            return self._finish(job, result, error=self._report(job, e))

        self.console.print_job_start(job.name, job.executor.key, workspace.path)

        try:
            for ref in job.inputs:
                self.store.restore(ref.name, executor, workspace, ref.path)
        except (ArtifactError, SandboxError) as e:
            return self._finish(job, result, error=self._report(job, e))

        failures = self._run_actions(job, executor, workspace, result)
        error = "; ".join(str(f) for f in failures) or None

        # outputs are saved even after a failure, continue-on-error
        # consumers get whatever partial output exists
        for ref in job.outputs:
            try:
                self.store.save(ref.name, executor, workspace, ref.path)
            except (ArtifactError, SandboxError) as e:
                error = error or self._report(job, e)

        return self._finish(job, result, error=error)

    def _report(self, job: Job, exc: Exception) -> str:
        message = str(exc).splitlines()[0]
        self.console.event(message, job=job.name, event="✗")
        return message

    def _run_actions(
        self, job: Job, executor: Executor, workspace: JobWorkspace, result: JobResult
    ) -> List[ActionFailure]:
        # sticky: once an action fails, success() actions after it are skipped
        failures: List[ActionFailure] = []
        context = JobContext(job.name)

        for action in job.actions:
            context.load(executor.read_job_env(workspace))
            env = self.action_env(job, action, context, workspace)

            if not self.conditions.should_run(
                action.condition,
                failed=bool(failures),
                cancelled=self.state.cancelled,
                env=env,
                shell=lambda expr, e: executor.shell(workspace, expr, e),
            ):
                self.console.print_action_skipped(job.name, action.name, str(action.condition))
                result.actions.append(ActionResult(action.name, "skipped"))
                continue

            self.console.print_action_start(job.name, action.name)
            outcome = self.retry.execute(
                lambda: executor.run(workspace, action, env, action.timeout),
                action.retry,
                job=job.name,
                action=action.name,
            )
            res = outcome.result
            self.console.print_action_result(job.name, action.name, res.exit_code, res.duration)

            ok = res.exit_code == 0
            if not ok:
                failures.append(ActionFailure(job.name, action.name, action.run, res.exit_code, res.timed_out))
            result.actions.append(
                ActionResult(
                    action.name,
                    "success" if ok else "failure",
                    exit_code=res.exit_code,
                    duration=res.duration,
                    attempts=outcome.attempts,
                )
            )
        return failures

    def action_env(self, job: Job, action: Action, context: JobContext, workspace: JobWorkspace) -> Dict[str, str]:
        env = self.resolver.resolve(job, action, context)
        env["JOB_DIR"] = workspace.path
        env["JOB_ENV"] = workspace.env_file
        return env

    def _finish(self, job: Job, result: JobResult, *, error: str | None = None) -> JobResult:
        result.status = JobStatus.FAILURE if error else JobStatus.SUCCESS
        result.error = error
        self.state.set_status(job.name, result.status)
        self.console.print_job_finished(job.name, result.status.value, job.continue_on_error)
        return result


# ----------------------------------------------------------------------
# Whole run
# ----------------------------------------------------------------------

class WorkflowRun:
    """
    Executes a Plan level by level.

    Usage:
        run = WorkflowRun(plan, Settings.from_env())
        result = run.run()
        raise SystemExit(result.exit_code)
    """

    def __init__(
        self,
        plan: Plan,
        settings: Optional[Settings] = None,
        *,
        console: Optional[Console] = None,
        sleep: Optional[Callable[[float], None]] = None,
        runtime_env: Optional[Mapping[str, str]] = None,
    ):
        self.plan = plan
        self.settings = settings or Settings.from_env()
        self.console = console or get_console()
        if not self.console.workflow:
            self.console.workflow = plan.name
        self.run_id = f"{plan.name}-{int(time.time())}-{os.getpid()}"
        self.run_root = Path(self.settings.run_root) / self.run_id
        self.state = WorkflowRunState(j.name for j in plan.jobs())
        self.results: Dict[str, JobResult] = {}
        self._sleep = sleep
        self._runtime_env = runtime_env

    def cancel(self) -> None:
        """Cooperative: later jobs/actions only run under always() or cancelled()."""
        self.state.cancel()

    def interrupt(self) -> None:
        """
        Hard stop: kill in-flight actions, stop retries, issue no further levels.

        Actions that start after this, always() and cancelled() cleanup
        included, are killed as soon as they launch. `cancel` is the
        cooperative stop that lets cleanup run.
        """
        self.console.event("Interrupted, stopping workflow", event="✗")
        self.state.interrupt()

    def run(self) -> RunResult:
        self.console.print_run_started(self.plan.name, self.run_id, len(self.plan.levels))

        resolver = EnvResolver(self.plan.env, self.plan.providers, runtime=self._runtime_env, console=self.console)
        pool = SandboxPool(self.settings, self.run_id, console=self.console, state=self.state)
        try:
            validate_plan(self.plan)
            resolver.load_providers()
            store = ArtifactStore(self.run_root, console=self.console)
            retry = RetryPolicy(sleep=self._sleep or self.state.sleep, console=self.console)
            runner = JobRunner(self.state, pool, store, resolver, retry=retry, console=self.console)
            scheduler = LevelScheduler(self.state, max_workers=self.settings.max_workers, console=self.console)

            for index, level in enumerate(self.plan.levels, start=1):
                if self.state.interrupted:
                    break
                outcome = scheduler.run_level(index, level, runner.run)
                self.results.update(outcome.results)
                if outcome.halt:
                    self.console.event(
                        "Stopping workflow: blocking failure", event="✗",
                        level=index, failed_jobs=" ".join(outcome.blocking),
                    )
                    break
        finally:
            pool.teardown_all()
            if not self.settings.keep_workspace:
                shutil.rmtree(self.run_root, ignore_errors=True)
            self.console.print_results(
                {name: status.value for name, status in self.state.job_status.items()},
                self.state.failed_jobs,
            )

        return RunResult(
            run_id=self.run_id,
            job_status=self.state.job_status,
            failed_jobs=self.state.failed_jobs,
            cancelled=self.state.cancelled,
            jobs=dict(self.results),
        )


def run_plan(plan: Plan, settings: Optional[Settings] = None, **kwargs) -> RunResult:
    return WorkflowRun(plan, settings, **kwargs).run()
