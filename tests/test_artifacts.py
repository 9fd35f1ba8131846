"""Artifact store save/restore through the local executor."""

import json
from pathlib import Path

import pytest

from flowci.artifacts import ArtifactStore, format_size, normalize_artifact_path
from flowci.errors import ArtifactError
from flowci.executors.local import LocalExecutor
from flowci.model import LOCAL


@pytest.fixture
def sandbox(settings, console):
    executor = LocalExecutor(settings, "run-1", console=console)
    handle = executor.provision(LOCAL)
    yield executor, handle
    executor.teardown(handle)


@pytest.fixture
def store(tmp_path, console):
    return ArtifactStore(tmp_path / "run-root", console=console)


def test_save_restore_round_trip_keeps_structure(sandbox, store):
    executor, handle = sandbox
    producer = executor.prepare_job_workspace(handle, "build")
    out = Path(producer.path) / "dist"
    (out / "lib").mkdir(parents=True)
    (out / "app").write_text("binary")
    (out / "lib" / "util.so").write_text("so")

    entry = store.save("dist", executor, producer, "dist")

    assert (entry / "dist" / "app").read_text() == "binary"

    consumer = executor.prepare_job_workspace(handle, "test")
    store.restore("dist", executor, consumer)

    restored = Path(consumer.path) / "dist"
    assert (restored / "app").read_text() == "binary"
    assert (restored / "lib" / "util.so").read_text() == "so"
    # restore copies; the entry is still there for other consumers
    assert (entry / "dist" / "app").exists()


def test_save_single_file_into_nested_path(sandbox, store):
    executor, handle = sandbox
    ws = executor.prepare_job_workspace(handle, "build")
    (Path(ws.path) / "reports").mkdir()
    (Path(ws.path) / "reports" / "junit.xml").write_text("<xml/>")

    store.save("junit", executor, ws, "reports/junit.xml")

    consumer = executor.prepare_job_workspace(handle, "publish")
    store.restore("junit", executor, consumer, "incoming")
    assert (Path(consumer.path) / "incoming" / "reports" / "junit.xml").read_text() == "<xml/>"


def test_manifest_written(sandbox, store):
    executor, handle = sandbox
    ws = executor.prepare_job_workspace(handle, "build")
    (Path(ws.path) / "out.txt").write_text("hello")

    store.save("out", executor, ws, "out.txt")

    manifest = json.loads(store.manifest_path("out").read_text())
    assert manifest["job"] == "build"
    assert manifest["path"] == "out.txt"
    assert manifest["missing"] is False
    assert manifest["size_bytes"] == 5


def test_save_replaces_previous_entry(sandbox, store):
    executor, handle = sandbox
    ws = executor.prepare_job_workspace(handle, "build")
    (Path(ws.path) / "a.txt").write_text("a")
    store.save("art", executor, ws, "a.txt")

    (Path(ws.path) / "b.txt").write_text("b")
    store.save("art", executor, ws, "b.txt")

    assert not (store.entry_path("art") / "a.txt").exists()
    assert (store.entry_path("art") / "b.txt").read_text() == "b"


def test_save_missing_path_raises_and_marks_manifest(sandbox, store):
    executor, handle = sandbox
    ws = executor.prepare_job_workspace(handle, "build")

    with pytest.raises(ArtifactError):
        store.save("dist", executor, ws, "dist")

    assert store.manifest("dist")["missing"] is True

    consumer = executor.prepare_job_workspace(handle, "test")
    with pytest.raises(ArtifactError):
        store.restore("dist", executor, consumer)


def test_restore_unsaved_artifact_raises(sandbox, store):
    executor, handle = sandbox
    ws = executor.prepare_job_workspace(handle, "test")
    with pytest.raises(ArtifactError):
        store.restore("never-saved", executor, ws)


@pytest.mark.parametrize("path", ["../escape", "/etc/passwd", "a/../../b"])
def test_paths_must_stay_inside_workspace(path):
    with pytest.raises(ArtifactError):
        normalize_artifact_path(path)


def test_normalize_artifact_path():
    assert normalize_artifact_path("./dist/") == "dist"
    assert normalize_artifact_path("") == "."


def test_format_size():
    assert format_size(512) == "512B"
    assert format_size(1536) == "1.5K"
    assert format_size(3 * 1024 * 1024) == "3.0M"


def test_saving_whole_workspace_leaves_out_sandbox_files(sandbox, store):
    executor, handle = sandbox
    ws = executor.prepare_job_workspace(handle, "build")
    Path(ws.env_file).write_text("TOKEN=producer-only\n")
    (Path(ws.path) / ".flowci-action.pid").write_text("4242")
    (Path(ws.path) / "result.txt").write_text("ok")

    entry = store.save("ws", executor, ws, ".")

    assert (entry / "result.txt").read_text() == "ok"
    assert not (entry / ".job-env").exists()
    assert not (entry / ".flowci-action.pid").exists()

    consumer = executor.prepare_job_workspace(handle, "test")
    store.restore("ws", executor, consumer)
    assert Path(consumer.env_file).read_text() == ""


@pytest.mark.parametrize("name", ["../escaped", "a/b", ".manifests", ".."])
def test_store_rejects_names_outside_its_root(store, name):
    with pytest.raises(ArtifactError):
        store.entry_path(name)
