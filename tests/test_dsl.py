import pytest

from flowci import action, build, container, job, matrix, retry, wf
from flowci.errors import ConditionError
from flowci.model import FAILURE, LOCAL, ArtifactRef, ConditionKind, RetrySpec


def test_action_parses_condition_and_timeout():
    a = action("deploy", "/bin/deploy", condition="always()", timeout="5m", env={"N": 3})
    assert a.condition.kind is ConditionKind.ALWAYS
    assert a.timeout == 300
    assert a.env == {"N": "3"}


def test_action_rejects_unknown_condition():
    with pytest.raises(ConditionError):
        action("x", "/bin/true", condition="sometimes()")


def test_job_defaults_and_artifact_shorthands():
    j = job(
        "test",
        action("unit", "/bin/true"),
        inputs=["dist", ("reports", "incoming")],
        outputs={"coverage": "cov/"},
    )
    assert j.executor == LOCAL
    assert j.inputs == [ArtifactRef("dist", "."), ArtifactRef("reports", "incoming")]
    assert j.outputs == [ArtifactRef("coverage", "cov/")]


def test_job_needs_an_action():
    with pytest.raises(ValueError):
        job("empty")


def test_retry_helper_accepts_durations():
    assert retry(4, backoff="linear", min_delay="2s", max_delay="1m") == RetrySpec(4, "linear", 2.0, 60.0)
    assert retry(2, min_delay=0, max_delay=0).min_delay == 0.0


def test_builder_matches_functional_form():
    built = (
        build("notify")
        .depends_on("test")
        .define_action("page", "/bin/page", timeout=30)
        .with_env(CHANNEL="ci")
        .restores("report", "in")
        .saves("receipt", "out.txt")
        .when("failure()")
        .continue_on_error()
        .runs_on(container("alpine:3"))
        .build()
    )
    assert built.needs == ["test"]
    assert built.condition == FAILURE
    assert built.continue_on_error is True
    assert built.executor.key == "container:alpine:3:mount"
    assert built.inputs == [ArtifactRef("report", "in")]
    assert built.outputs == [ArtifactRef("receipt", "out.txt")]
    assert built.actions[0].timeout == 30


def test_matrix_expands_cartesian_product():
    jobs = matrix(node=["18", "20"], os=["ubuntu", "alpine"]).jobs(
        "test",
        lambda m: job("ignored", action("unit", "/bin/true"), env={"NODE": m["node"], "OS": m["os"]}),
    )

    assert [j.name for j in jobs] == [
        "test-node-18-os-ubuntu",
        "test-node-18-os-alpine",
        "test-node-20-os-ubuntu",
        "test-node-20-os-alpine",
    ]
    assert jobs[3].env == {"NODE": "20", "OS": "alpine"}


def test_matrix_needs_a_dimension():
    with pytest.raises(ValueError):
        matrix()


def test_wf_flattens_matrix_lists_into_levels():
    tests = matrix(py=["3.11", "3.12"]).jobs(
        "test", lambda m: job("t", action("unit", "/bin/true"), needs=["build"])
    )
    plan = wf(
        "ci",
        job("build", action("compile", "/bin/true")),
        tests,
        env={"CI": 1},
        providers=["/usr/local/bin/secrets"],
    )

    assert plan.name == "ci"
    assert [lvl.names for lvl in plan.levels] == [["build"], ["test-py-3.11", "test-py-3.12"]]
    assert plan.env == {"CI": "1"}
    assert plan.providers == ["/usr/local/bin/secrets"]


@pytest.mark.parametrize("name", ["../../escaped", "a/b", ".hidden", ""])
def test_artifact_names_stay_inside_the_store(name):
    with pytest.raises(ValueError):
        ArtifactRef(name, "f.txt")
    with pytest.raises(ValueError):
        job("build", action("b", "/bin/true"), outputs={name: "f.txt"})
