"""Environment layering, provider and job-context tests."""

import pytest

from flowci.env import EnvResolver, JobContext, parse_env_lines, provider_name
from flowci.errors import ProviderError
from flowci.model import Action, Job


def _job(env=None, action_env=None):
    act = Action(name="a", run="/bin/true", env=action_env or {})
    return Job(name="j", actions=[act], env=env or {}), act


def test_parse_env_lines_handles_export_quotes_and_comments():
    text = """
# comment
export A=1
B='two words'
export C="quoted"
not a line
export A=3
"""
    assert parse_env_lines(text) == {"A": "3", "B": "two words", "C": "quoted"}


def test_parse_env_lines_require_export_skips_bare_assignments():
    assert parse_env_lines("A=1\nexport B=2", require_export=True) == {"B": "2"}


def test_layering_order_runtime_action_job_provider_workflow(console):
    resolver = EnvResolver(
        workflow_env={"K1": "w", "K2": "w", "K3": "w", "K4": "w", "K5": "w"},
        runtime={"K1": "r"},
        console=console,
    )
    resolver.apply_provider_output("export K1=p\nexport K2=p\nexport K3=p\nexport K4=p\n")
    job, act = _job(
        env={"K1": "j", "K2": "j", "K3": "j"},
        action_env={"K1": "a", "K2": "a"},
    )

    env = resolver.resolve(job, act)

    assert env == {"K1": "r", "K2": "a", "K3": "j", "K4": "p", "K5": "w"}


def test_overlay_only_contains_declared_keys(console):
    resolver = EnvResolver({"W": "1"}, runtime={"HOME": "/root", "PATH": "/bin"}, console=console)
    overlay = resolver.resolve()
    assert overlay == {"W": "1"}
    assert resolver.full(overlay)["PATH"] == "/bin"


def test_provider_output_never_overrides_runtime(console):
    resolver = EnvResolver(runtime={"TOKEN": "from-runtime"}, console=console)

    vars_set, skipped = resolver.apply_provider_output("export TOKEN=from-provider\nexport OTHER=x\n")

    assert (vars_set, skipped) == (1, 1)
    assert resolver.provider_env == {"OTHER": "x"}


def test_job_context_sits_between_action_and_runtime(console):
    resolver = EnvResolver(runtime={"R": "runtime"}, console=console)
    job, act = _job(action_env={"X": "action", "R": "action"})
    ctx = JobContext("j")
    ctx.load("X=context\nexport R=context\nY=new\n")

    env = resolver.resolve(job, act, ctx)

    assert env["X"] == "context"
    assert env["Y"] == "new"
    assert env["R"] == "runtime"


def test_providers_run_in_order_and_later_ones_win(script, console):
    first = script("p1", "echo 'export A=first'\necho 'export B=first'")
    second = script("p2", "echo 'export B=second'\necho \"export SEEN=$A\"")
    resolver = EnvResolver(providers=[first, second], runtime={"PATH": "/usr/bin:/bin"}, console=console)

    env = resolver.load_providers()

    assert env["A"] == "first"
    assert env["B"] == "second"
    # later providers see earlier provider output
    assert env["SEEN"] == "first"


def test_providers_load_only_once(script, marker_dir, console):
    counter = marker_dir / "count"
    provider = script("p", f"echo x >> {counter}\necho 'export A=1'")
    resolver = EnvResolver(providers=[provider], runtime={"PATH": "/usr/bin:/bin"}, console=console)

    resolver.load_providers()
    resolver.load_providers()

    assert counter.read_text().count("x") == 1


def test_failing_provider_raises(script, console):
    provider = script("bad", "echo boom >&2\nexit 3")
    resolver = EnvResolver(providers=[provider], runtime={}, console=console)

    with pytest.raises(ProviderError) as info:
        resolver.load_providers()

    assert info.value.details["exit_code"] == 3
    assert "boom" in info.value.details["stderr"]


def test_missing_provider_raises(tmp_path, console):
    resolver = EnvResolver(providers=[str(tmp_path / "nope")], runtime={}, console=console)
    with pytest.raises(ProviderError):
        resolver.load_providers()


def test_provider_name_for_builtin_argv():
    assert provider_name(["/usr/bin/python3", "-m", "flowci", "provide", "static", "A=1"]) == "provide static"
    assert provider_name("/nix/store/abc-env/bin/env-provider") == "env-provider"
