import io
import json
import re

import pytest

from flowci.ui.console import Console, get_console, set_console


def _console(log_format):
    return Console(log_format=log_format, workflow="ci", stream=io.StringIO())


def test_structured_line_has_context_and_details():
    c = _console("structured")
    c.event("Completed", job="build", action="compile", event="✓", duration="1.200s", exit_code=0)

    line = c.stream.getvalue().strip()
    assert re.match(r"^\[\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z\] \[workflow:ci\] \[job:build\] \[action:compile\] ", line)
    assert line.endswith("Completed (duration: 1.200s, exit_code: 0)")


def test_structured_without_job_or_details():
    c = _console("structured")
    c.event("Workflow starting")
    line = c.stream.getvalue().strip()
    assert "[job:" not in line
    assert line.endswith("[workflow:ci] Workflow starting")


def test_simple_format():
    c = _console("simple")
    c.event("Starting", job="build", action="compile", event="→")
    c.event("Workflow completed successfully", event="✓")
    assert c.stream.getvalue().splitlines() == ["→ compile Starting", "Workflow completed successfully"]


def test_simple_output_lines_are_raw():
    c = _console("simple")
    c.print_action_output("build", "compile", "gcc -O2 main.c")
    assert c.stream.getvalue() == "gcc -O2 main.c\n"


def test_json_format_keeps_numbers_and_drops_none():
    c = _console("json")
    c.event("Failed", job="build", action="compile", event="✗", exit_code=2, attempt=None, duration="0.5s")

    record = json.loads(c.stream.getvalue())
    assert record["workflow"] == "ci"
    assert record["job"] == "build"
    assert record["action"] == "compile"
    assert record["event"] == "✗"
    assert record["exit_code"] == 2
    assert record["duration"] == "0.5s"
    assert record["message"] == "Failed"
    assert "attempt" not in record
    assert record["timestamp"].endswith("Z")


def test_results_table():
    c = _console("simple")
    c.print_results({"build": "success", "test": "failure", "deploy": "skipped"}, ["test"])

    out = c.stream.getvalue()
    assert "Workflow failed" in out
    assert "RESULTS" in out
    assert "  build: SUCCESS" in out
    assert "  test: FAILURE" in out
    assert "  deploy: SKIPPED" in out


def test_results_success_message():
    c = _console("simple")
    c.print_results({"build": "success"}, [])
    assert c.stream.getvalue().startswith("Workflow completed successfully")


def test_errors_go_to_stderr(capsys):
    c = _console("structured")
    c.print_error("Plan Error", "bad plan", details=["line 1"], suggestion="Fix it.")

    err = capsys.readouterr().err
    assert "ERROR: Plan Error" in err
    assert "  line 1" in err
    assert "Fix it." in err
    assert c.stream.getvalue() == ""


@pytest.mark.parametrize("debug, shown", [(True, True), (False, False)])
def test_debug_only_when_enabled(capsys, debug, shown):
    Console(debug=debug, stream=io.StringIO()).print_debug("details")
    assert ("[DEBUG] details" in capsys.readouterr().err) is shown


def test_global_console():
    c = _console("json")
    set_console(c)
    assert get_console() is c
