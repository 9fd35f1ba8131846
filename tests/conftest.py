"""Shared pytest fixtures for flowci tests."""

import io
import os
import stat
from pathlib import Path

import pytest

from flowci.settings import Settings
from flowci.ui.console import Console, set_console


@pytest.fixture
def console() -> Console:
    """Console writing structured lines into a StringIO (read with console.stream.getvalue())."""
    c = Console(log_format="structured", workflow="test", stream=io.StringIO())
    set_console(c)
    return c


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        run_root=tmp_path / "runs",
        workspace_root=tmp_path / "ws",
    )


@pytest.fixture
def script(tmp_path):
    """
    Factory writing an executable /bin/sh script.

        path = script("fail", "exit 1")
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def make(name: str, body: str) -> str:
        p = bin_dir / name
        p.write_text("#!/bin/sh\n" + body.strip() + "\n", encoding="utf-8")
        p.chmod(p.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(p)

    return make


@pytest.fixture
def no_sleep():
    """Records retry backoff delays instead of sleeping."""
    delays = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def marker_dir(tmp_path) -> Path:
    """Host directory outside every sandbox where test actions leave traces."""
    d = tmp_path / "markers"
    d.mkdir()
    return d


@pytest.fixture(autouse=True)
def _isolated_flowci_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("FLOWCI_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("FLOWCI_RUN_ROOT", str(tmp_path / "env-runs"))
    monkeypatch.setenv("FLOWCI_WORKSPACE_ROOT", str(tmp_path / "env-ws"))
