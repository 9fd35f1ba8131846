import textwrap

import pytest
from click.testing import CliRunner

from flowci.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


def _write_plan(tmp_path, body: str, name: str = "demo_plan.py") -> str:
    path = tmp_path / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return str(path)


@pytest.fixture
def passing_plan(tmp_path, script):
    ok = script("ok", "echo hello from $JOB_DIR")
    return _write_plan(
        tmp_path,
        f"""
        from flowci import action, container, job, wf

        PLAN = wf(
            "demo",
            job("build", action("compile", {ok!r})),
            job("test", action("unit", {ok!r}), needs=["build"]),
            job(
                "notify",
                action("page", {ok!r}),
                needs=["test"],
                condition="failure()",
                executor=container("alpine:3"),
            ),
        )
        """,
    )


def test_levels_prints_layout(runner, passing_plan):
    result = runner.invoke(cli, ["levels", "--plan", passing_plan])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == "Plan: demo"
    assert "=== Level 1: build ===" in lines
    assert "=== Level 2: test ===" in lines
    assert "=== Level 3: notify ===" in lines
    assert "  notify: 1 action(s) (container:alpine:3:mount; if failure())" in lines


def test_run_success_exits_zero(runner, passing_plan):
    result = runner.invoke(cli, ["run", "--plan", passing_plan, "--log-format", "simple"])

    assert result.exit_code == 0, result.output
    assert "hello from" in result.output
    assert "  build: SUCCESS" in result.output
    assert "  notify: SKIPPED" in result.output


def test_run_failure_exits_one(runner, tmp_path, script):
    bad = script("bad", "exit 3")
    plan = _write_plan(
        tmp_path,
        f"""
        from flowci import action, job

        JOBS = [job("broken", action("explode", {bad!r}))]
        """,
        name="broken_plan.py",
    )

    result = runner.invoke(cli, ["run", "--plan", plan, "--log-format", "json"])

    assert result.exit_code == 1
    assert "  broken: FAILURE" in result.output
    assert '"workflow": "broken"' in result.output


def test_run_missing_plan(runner, tmp_path):
    result = runner.invoke(cli, ["run", "--plan", str(tmp_path / "nope.py")])
    assert result.exit_code == 1
    assert "Plan file not found" in result.output


def test_run_rejects_cyclic_plan(runner, tmp_path):
    plan = _write_plan(
        tmp_path,
        """
        from flowci import action, job

        JOBS = [
            job("a", action("x", "/bin/true"), needs=["b"]),
            job("b", action("y", "/bin/true"), needs=["a"]),
        ]
        """,
    )
    result = runner.invoke(cli, ["levels", "--plan", plan])
    assert result.exit_code == 1
    assert "cycle" in result.output


def test_provide_static(runner):
    result = runner.invoke(cli, ["provide", "static", "LEVEL=1", "GREETING=hello world"])
    assert result.exit_code == 0
    assert result.output == "export LEVEL=1\nexport GREETING='hello world'\n"


def test_provide_static_rejects_bad_key(runner):
    result = runner.invoke(cli, ["provide", "static", "1BAD=x"])
    assert result.exit_code == 1
    assert "Invalid environment variable name" in result.output


def test_provide_file(runner, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text('# comment\n\nDB_HOST="db.local"\nPORT=5432\nNAME=\'ci\'\n')

    result = runner.invoke(cli, ["provide", "file", str(env_file)])

    assert result.exit_code == 0
    assert result.output.splitlines() == ["export DB_HOST=db.local", "export PORT=5432", "export NAME=ci"]


def test_provide_file_missing(runner, tmp_path):
    missing = str(tmp_path / "absent.env")

    assert runner.invoke(cli, ["provide", "file", missing]).output == ""
    required = runner.invoke(cli, ["provide", "file", missing, "--required"])
    assert required.exit_code == 1
    assert "Required env file not found" in required.output


def test_provide_required(runner, monkeypatch):
    monkeypatch.setenv("T_PRESENT", "")
    monkeypatch.delenv("T_ABSENT", raising=False)
    monkeypatch.delenv("T_ALSO_ABSENT", raising=False)

    assert runner.invoke(cli, ["provide", "required", "T_PRESENT"]).exit_code == 0

    result = runner.invoke(cli, ["provide", "required", "T_PRESENT", "T_ABSENT", "T_ALSO_ABSENT"])
    assert result.exit_code == 1
    assert "Error: Required environment variables not set:" in result.output
    assert "  - T_ABSENT" in result.output
    assert "  - T_ALSO_ABSENT" in result.output
    assert "T_PRESENT" not in result.output
