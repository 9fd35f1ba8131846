# src/flowci/dsl.py
from __future__ import annotations

import dataclasses
import itertools
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .dag import build_plan
from .model import LOCAL, Action, ArtifactRef, Condition, ExecutorSpec, Job, Plan, RetrySpec
from .retry import parse_timeout

ConditionLike = Union[Condition, str, None]
Duration = Union[str, int, float, None]
InputLike = Union[str, ArtifactRef, Sequence[str]]
OutputsLike = Union[Mapping[str, str], Iterable[ArtifactRef], None]


# ---------------------------------------------------------------------
# Small value helpers
# ---------------------------------------------------------------------

def local() -> ExecutorSpec:
    return LOCAL


def container(image: str, *, mode: str = "mount", archive: str | None = None) -> ExecutorSpec:
    """Container sandbox. mode="mount" shares the host action store, "build" expects a baked image."""
    return ExecutorSpec(kind="container", image=image, mode=mode, archive=archive)


def retry(
    max_attempts: int = 3,
    *,
    backoff: str = "exponential",
    min_delay: Duration = 1,
    max_delay: Duration = 60,
) -> RetrySpec:
    """retry(3, backoff="linear", min_delay="2s", max_delay="1m")"""
    return RetrySpec(
        max_attempts=max_attempts,
        backoff=backoff,
        min_delay=_delay(min_delay),
        max_delay=_delay(max_delay),
    )


def _delay(value: Duration) -> float:
    # zero is a valid delay but not a valid timeout
    if isinstance(value, (int, float)):
        return float(value)
    return parse_timeout(value) or 0.0


def _inputs(values: Optional[Iterable[InputLike]]) -> List[ArtifactRef]:
    refs: List[ArtifactRef] = []
    for v in values or []:
        if isinstance(v, ArtifactRef):
            refs.append(v)
        elif isinstance(v, str):
            refs.append(ArtifactRef(v))
        else:
            name, path = v
            refs.append(ArtifactRef(name, path))
    return refs


def _outputs(values: OutputsLike) -> List[ArtifactRef]:
    if values is None:
        return []
    if isinstance(values, Mapping):
        return [ArtifactRef(name, path) for name, path in values.items()]
    return list(values)


# ---------------------------------------------------------------------
# Action helper
# ---------------------------------------------------------------------

def action(
    name: str,
    run: str,
    *,
    condition: ConditionLike = None,
    env: Optional[Dict[str, Any]] = None,
    retry: Optional[RetrySpec] = None,
    timeout: Duration = None,
) -> Action:
    """
    Create an action. `run` is the path of an executable built elsewhere;
    `timeout` accepts "30s", "5m", "2h" or seconds.
    """
    return Action(
        name=name,
        run=run,
        condition=Condition.parse(condition),
        env={k: str(v) for k, v in (env or {}).items()},
        retry=retry,
        timeout=parse_timeout(timeout),
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *actions: Action,  # allow: job("x", action(...), action(...))
    actions_list: Optional[List[Action]] = None,  # allow: job("x", actions_list=[...])
    needs: Optional[List[str]] = None,
    condition: ConditionLike = None,
    continue_on_error: bool = False,
    executor: ExecutorSpec = LOCAL,
    env: Optional[Dict[str, Any]] = None,
    inputs: Optional[Iterable[InputLike]] = None,
    outputs: OutputsLike = None,
) -> Job:
    actions_final: List[Action] = []
    if actions_list:
        actions_final.extend(actions_list)
    actions_final.extend(actions)

    if not actions_final:
        raise ValueError(f"job({name!r}) must have at least one action")

    return Job(
        name=name,
        actions=actions_final,
        condition=Condition.parse(condition),
        continue_on_error=continue_on_error,
        executor=executor,
        env={k: str(v) for k, v in (env or {}).items()},
        inputs=_inputs(inputs),
        outputs=_outputs(outputs),
        needs=list(needs or []),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._actions: list[Action] = []
        self._env: dict[str, str] = {}
        self._inputs: list[ArtifactRef] = []
        self._outputs: list[ArtifactRef] = []
        self._condition: Condition = Condition.parse(None)
        self._continue_on_error = False
        self._executor: ExecutorSpec = LOCAL

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_action(self, name: str, run: str, **kwargs):
        self._actions.append(action(name, run, **kwargs))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def restores(self, name: str, path: str = "."):
        self._inputs.append(ArtifactRef(name, path))
        return self

    def saves(self, name: str, path: str):
        self._outputs.append(ArtifactRef(name, path))
        return self

    def when(self, condition: ConditionLike):
        self._condition = Condition.parse(condition)
        return self

    def continue_on_error(self, enabled: bool = True):
        self._continue_on_error = enabled
        return self

    def runs_on(self, executor: ExecutorSpec):
        self._executor = executor
        return self

    def build(self) -> Job:
        if not self._actions:
            raise ValueError(f"Job '{self.name}' has no actions")
        return Job(
            name=self.name,
            actions=list(self._actions),
            condition=self._condition,
            continue_on_error=self._continue_on_error,
            executor=self._executor,
            env=dict(self._env),
            inputs=list(self._inputs),
            outputs=list(self._outputs),
            needs=list(self._needs),
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_action(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Cartesian product of named dimensions, one job per combination.

    Example:
        matrix(node=["18", "20"], os=["ubuntu", "alpine"]).jobs(
            "test",
            lambda m: job("test", action("unit", "..."), env={"NODE": m["node"]}),
        )
        -> test-node-18-os-ubuntu, test-node-18-os-alpine, ...
    """
    def __init__(self, dimensions: Mapping[str, Iterable[Any]]):
        if not dimensions:
            raise ValueError("matrix needs at least one dimension")
        self.dimensions = {k: list(v) for k, v in dimensions.items()}

    def combinations(self) -> List[Dict[str, Any]]:
        keys = list(self.dimensions)
        return [dict(zip(keys, values)) for values in itertools.product(*self.dimensions.values())]

    @staticmethod
    def job_name(base: str, combo: Mapping[str, Any]) -> str:
        return "-".join([base, *(f"{k}-{combo[k]}" for k in sorted(combo))])

    def jobs(self, base: str, template: Callable[[Dict[str, Any]], Job]) -> List[Job]:
        out: List[Job] = []
        for combo in self.combinations():
            out.append(dataclasses.replace(template(dict(combo)), name=self.job_name(base, combo)))
        return out


def matrix(**dimensions: Iterable[Any]) -> Matrix:
    return Matrix(dimensions)


# ---------------------------------------------------------------------
# Plan helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    name: str,
    *jobs: Union[Job, List[Job]],
    env: Optional[Dict[str, Any]] = None,
    providers: Iterable[Union[str, List[str]]] = (),
) -> Plan:
    """
    Arrange jobs into a leveled Plan. Matrix job lists may be passed as is.

    Users can write:
        from flowci import wf, job, action

        def plan():
            return wf(
                "ci",
                job("build", action("compile", "/nix/store/...-compile/bin/compile")),
                job("test", action(...), needs=["build"]),
            )
    """
    flat: List[Job] = []
    for j in jobs:
        if isinstance(j, list):
            flat.extend(j)
        else:
            flat.append(j)
    return build_plan(name, flat, env={k: str(v) for k, v in (env or {}).items()}, providers=providers)
