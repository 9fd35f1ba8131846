# cli.py
from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

import click

from .errors import CIError, ConfigurationError
from .providers import check_required, parse_assignments, read_env_file, render_exports
from .runner import WorkflowRun, load_plan
from .settings import LOG_FORMATS, Settings
from .ui.console import Console, get_console, set_console

DEFAULT_PLAN = "flowci_plan.py"


def find_plan_files() -> list[Path]:
    """flowci_plan.py plus any other *_plan.py in the current directory."""
    plan_files = []
    current_dir = Path(".")

    default_plan = current_dir / DEFAULT_PLAN
    if default_plan.exists():
        plan_files.append(default_plan)

    for path in current_dir.glob("*_plan.py"):
        if path != default_plan:
            plan_files.append(path)

    return sorted(plan_files)


def discover_plan(plan_arg: str | None) -> Path:
    """
    Resolve the plan file from --plan or by looking in the current directory.

    Raises:
        SystemExit: If no plan, or more than one candidate, is found
    """
    console = get_console()

    if plan_arg:
        plan_path = Path(plan_arg)
        if not plan_path.exists() and plan_path.suffix != ".py":
            plan_path = Path(str(plan_path) + ".py")
        if not plan_path.exists():
            console.print_error(
                "Plan file not found",
                f"Could not find plan file: {plan_arg}",
                suggestion="Create a plan file or specify a different path:\n  flowci run --plan my_plan.py",
            )
            sys.exit(1)
        return plan_path

    plan_files = find_plan_files()

    if not plan_files:
        console.print_error(
            "No plan file found",
            "Could not find any plan files.",
            details=["Looked for:", f"  {DEFAULT_PLAN}", "  *_plan.py"],
            suggestion=f"Create {DEFAULT_PLAN} or specify one explicitly:\n  flowci run --plan my_plan.py",
        )
        sys.exit(1)

    if len(plan_files) > 1:
        console.print_error(
            "Multiple plan files found",
            "Found multiple plan files. Please specify which one to use:",
            details=[f"  {f}" for f in plan_files],
            suggestion=f"Specify a plan explicitly:\n  flowci run --plan {DEFAULT_PLAN}",
        )
        sys.exit(1)

    return plan_files[0]


def _load(plan_arg: str | None, debug: bool):
    plan_path = discover_plan(plan_arg)
    try:
        return load_plan(plan_path)
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        get_console().print_error("Failed to load plan", f"Could not load plan from {plan_path}", details=[str(e)])
        if debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """flowci: level-parallel CI workflow engine."""
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        Console(debug=debug).print_error(
            "Invalid configuration",
            e.message,
            suggestion="Fix or unset the FLOWCI_* variable named above.",
        )
        sys.exit(1)
    console = Console(debug=debug, log_format=settings.log_format)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--plan", "plan_arg", default=None, help=f"Plan file path (defaults to {DEFAULT_PLAN} if present)")
@click.option("--log-format", type=click.Choice(LOG_FORMATS), default=None, help="Override FLOWCI_LOG_FORMAT")
@click.option("--keep-workspace", is_flag=True, default=False, help="Keep sandboxes and workspace after the run")
@click.option("--run-root", type=click.Path(file_okay=False), default=None, help="Artifact/run directory root")
@click.option("--workers", default=None, type=int, help="Max parallel jobs per level")
@click.pass_context
def run(ctx, plan_arg, log_format, keep_workspace, run_root, workers):
    """Run a flowci plan."""
    debug = ctx.obj.get("debug", False)
    settings = ctx.obj["settings"].override(
        log_format=log_format,
        keep_workspace=True if keep_workspace else None,
        run_root=Path(run_root) if run_root else None,
        max_workers=workers,
    )
    console = get_console()
    console.log_format = settings.log_format

    plan = _load(plan_arg, debug)
    console.workflow = plan.name
    workflow_run = WorkflowRun(plan, settings, console=console)

    def _on_signal(signum, _frame):
        workflow_run.interrupt()

    previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = workflow_run.run()
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except CIError as e:
        console.print_error("Workflow aborted", e.message, details=[str(e)] if debug else None)
        sys.exit(130 if workflow_run.state.cancelled else 1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    sys.exit(result.exit_code)


@cli.command()
@click.option("--plan", "plan_arg", default=None, help=f"Plan file path (defaults to {DEFAULT_PLAN} if present)")
@click.pass_context
def levels(ctx, plan_arg):
    """Print the level layout of a plan without running it."""
    plan = _load(plan_arg, ctx.obj.get("debug", False))
    click.echo(f"Plan: {plan.name}")
    for index, level in enumerate(plan.levels, start=1):
        click.echo(f"=== Level {index}: {', '.join(level.names)} ===")
        for job in level.jobs:
            extra = []
            if job.executor.key != "local":
                extra.append(job.executor.key)
            if str(job.condition) != "success()":
                extra.append(f"if {job.condition}")
            if job.continue_on_error:
                extra.append("continue-on-error")
            suffix = f" ({'; '.join(extra)})" if extra else ""
            click.echo(f"  {job.name}: {len(job.actions)} action(s){suffix}")


# ---------------------------------------------------------------------
# Built-in environment providers
# ---------------------------------------------------------------------

@cli.group()
def provide():
    """Built-in environment providers (print `export KEY=value` lines)."""


@provide.command("static")
@click.argument("assignments", nargs=-1)
def provide_static(assignments):
    """Emit fixed KEY=VALUE pairs."""
    try:
        click.echo(render_exports(parse_assignments(assignments)), nl=False)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


@provide.command("file")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--required", is_flag=True, default=False, help="Fail if the file does not exist")
def provide_file(path, required):
    """Emit the variables of a dotenv-style file."""
    try:
        click.echo(render_exports(read_env_file(path, required=required)), nl=False)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


@provide.command("required")
@click.argument("names", nargs=-1)
def provide_required(names):
    """Fail unless every named variable is set. Emits nothing."""
    ok, missing = check_required(names, os.environ)
    if not ok:
        click.echo("Error: Required environment variables not set:", err=True)
        for name in missing:
            click.echo(f"  - {name}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
