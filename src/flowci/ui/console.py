"""Console output formatting utilities for flowci."""

from __future__ import annotations

import json
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Optional, TextIO

_NUMBER_TYPES = (int, float)


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class Console:
    """
    Centralized event sink.

    The engine emits events (job, action, event, duration, exit_code,
    message); the console renders them as one of:
      - simple:     "<event> <action> <message>" or just the message
      - structured: "[ts] [workflow:w] [job:j] [action:a] message (k: v, ...)"
      - json:       one JSON object per line
    """

    def __init__(
        self,
        debug: bool = False,
        log_format: str = "structured",
        workflow: str = "",
        stream: Optional[TextIO] = None,
    ):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            log_format: "structured", "simple" or "json"
            workflow: workflow name stamped on every structured/json line
            stream: where events go (defaults to stderr)
        """
        self.debug = debug
        self.log_format = log_format
        self.workflow = workflow
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    # ------------------------------------------------------------------
    # Core event API
    # ------------------------------------------------------------------

    def event(
        self,
        message: str,
        *,
        job: str | None = None,
        action: str | None = None,
        event: str | None = None,
        **fields: Any,
    ) -> None:
        """Render one event. Extra keyword fields become details."""
        fields = {k: v for k, v in fields.items() if v is not None}
        line = self.render(message, job=job, action=action, event=event, fields=fields)
        with self._lock:
            print(line, file=self.stream, flush=True)

    def render(
        self,
        message: str,
        *,
        job: str | None,
        action: str | None,
        event: str | None,
        fields: dict,
    ) -> str:
        if self.log_format == "simple":
            if action:
                return f"{event or '→'} {action} {message}"
            return message

        if self.log_format == "json":
            record: dict[str, Any] = {"timestamp": _timestamp(), "workflow": self.workflow}
            for key, value in (("job", job), ("action", action), ("event", event)):
                if value is not None:
                    record[key] = value
            for key, value in fields.items():
                record[key] = value if isinstance(value, _NUMBER_TYPES) else str(value)
            record["message"] = message
            return json.dumps(record, ensure_ascii=False)

        prefix = f"[{_timestamp()}] [workflow:{self.workflow}]"
        if job:
            prefix += f" [job:{job}]"
        if action:
            prefix += f" [action:{action}]"
        details = ", ".join(f"{k}: {v}" for k, v in fields.items())
        if details:
            return f"{prefix} {message} ({details})"
        return f"{prefix} {message}"

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def print_run_started(self, workflow: str, run_id: str, levels: int) -> None:
        """Print run start information."""
        self.event("Workflow starting", event="▶", run_id=run_id, levels=levels)

    def print_level_start(self, index: int, jobs: list[str]) -> None:
        self.event("Starting level", event="→", level=index, jobs=", ".join(jobs))

    def print_job_start(self, name: str, executor: str, workdir: str) -> None:
        """Print job start message."""
        self.event("Job starting", job=name, event="▶", executor=executor, workdir=workdir)

    def print_job_skipped(self, name: str, condition: str) -> None:
        self.event("Skipped", job=name, event="⊘", condition=condition)

    def print_job_finished(self, name: str, status: str, continue_on_error: bool = False) -> None:
        if status == "success":
            self.event("Job succeeded", job=name, event="✓")
        else:
            self.event("Job failed", job=name, event="✗")
            if continue_on_error:
                self.event("Continuing despite failure", job=name, event="→", continue_on_error=True)

    def print_action_start(self, job: str, action: str) -> None:
        self.event("Starting", job=job, action=action, event="→")

    def print_action_skipped(self, job: str, action: str, condition: str) -> None:
        self.event(f"Skipping (condition: {condition})", job=job, action=action, event="⊘")

    def print_action_output(self, job: str, action: str, line: str) -> None:
        if self.log_format == "simple":
            with self._lock:
                print(line, file=self.stream, flush=True)
            return
        self.event(line, job=job, action=action, event="output")

    def print_action_result(self, job: str, action: str, exit_code: int, duration: float) -> None:
        if exit_code == 0:
            self.event("Completed", job=job, action=action, event="✓",
                       duration=f"{duration:.3f}s", exit_code=exit_code)
        else:
            self.event("Failed", job=job, action=action, event="✗",
                       duration=f"{duration:.3f}s", exit_code=exit_code)

    def print_results(self, results: dict[str, str], failed_jobs: list[str]) -> None:
        """Print final results summary."""
        if failed_jobs:
            self.event("Workflow failed", event="✗", failed_jobs=" ".join(failed_jobs))
        else:
            self.event("Workflow completed successfully", event="✓")
        with self._lock:
            out = self.stream
            print("\n" + "=" * 40, file=out)
            print("RESULTS", file=out)
            print("=" * 40, file=out)
            for job, status in results.items():
                print(f"  {job}: {status.upper()}", file=out)
            out.flush()

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        with self._lock:
            print(f"\nERROR: {title}", file=sys.stderr)
            print(f"{message}", file=sys.stderr)
            if details:
                for detail in details:
                    print(f"  {detail}", file=sys.stderr)
            if suggestion:
                print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        with self._lock:
            print(message, file=self.stream, flush=True)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            with self._lock:
                print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
