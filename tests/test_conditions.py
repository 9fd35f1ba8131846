"""Condition parsing and run/skip decisions."""

import pytest

from flowci.conditions import ConditionEvaluator, host_shell
from flowci.errors import ConditionError, ConfigurationError
from flowci.model import ALWAYS, CANCELLED, FAILURE, SUCCESS, Condition, ConditionKind


@pytest.mark.parametrize(
    "text, kind",
    [
        ("success()", ConditionKind.SUCCESS),
        ("failure()", ConditionKind.FAILURE),
        ("always()", ConditionKind.ALWAYS),
        ("cancelled()", ConditionKind.CANCELLED),
        ('[ "$BRANCH" = main ]', ConditionKind.SHELL),
    ],
)
def test_parse(text, kind):
    assert Condition.parse(text).kind is kind


def test_parse_none_defaults_to_success():
    assert Condition.parse(None) == SUCCESS


@pytest.mark.parametrize("text", ["", "   ", "sucess()", "never()"])
def test_parse_rejects_bad_literals(text):
    with pytest.raises(ConditionError):
        Condition.parse(text)


def test_condition_error_is_configuration_error():
    assert issubclass(ConditionError, ConfigurationError)


@pytest.mark.parametrize(
    "cond, failed, cancelled, expected",
    [
        (SUCCESS, False, False, True),
        (SUCCESS, True, False, False),
        (FAILURE, False, False, False),
        (FAILURE, True, False, True),
        (ALWAYS, True, False, True),
        (ALWAYS, False, True, True),
        (CANCELLED, False, False, False),
        (CANCELLED, False, True, True),
        # once cancelled only always() and cancelled() stay eligible
        (SUCCESS, False, True, False),
        (FAILURE, True, True, False),
    ],
)
def test_builtin_truth_table(console, cond, failed, cancelled, expected):
    assert ConditionEvaluator(console).should_run(cond, failed=failed, cancelled=cancelled) is expected


def test_shell_condition_uses_exit_code(console):
    calls = []

    def shell(expr, env):
        calls.append((expr, dict(env)))
        return 0 if env.get("BRANCH") == "main" else 1

    ev = ConditionEvaluator(console)
    cond = Condition.parse('[ "$BRANCH" = main ]')

    assert ev.should_run(cond, failed=False, env={"BRANCH": "main"}, shell=shell) is True
    assert ev.should_run(cond, failed=False, env={"BRANCH": "dev"}, shell=shell) is False
    assert calls[0][0] == '[ "$BRANCH" = main ]'


def test_shell_condition_runs_even_after_failure(console):
    ev = ConditionEvaluator(console)
    assert ev.should_run("true", failed=True, shell=lambda expr, env: 0) is True


def test_shell_launch_error_means_skip(console):
    def broken(expr, env):
        raise OSError("no sh")

    assert ConditionEvaluator(console).should_run("true", failed=False, shell=broken) is False


def test_host_shell():
    assert host_shell('[ "$X" = 1 ]', {"X": "1"}) == 0
    assert host_shell('[ "$X" = 1 ]', {"X": "2"}) != 0
    assert host_shell("echo noisy; exit 0", {}) == 0
