"""Tests for the global run lock."""

import json
import os

import pytest

from repo_triage.engine import run_lock
from repo_triage.engine.run_lock import RunLock, process_alive
from repo_triage.exceptions import RunLockError


@pytest.fixture
def lock_path(tmp_path):
    return tmp_path / "locks" / "repo-triage.lock"


def write_record(path, pid):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"pid": pid, "started_at": "2026-01-15T10:30:00+00:00"}))


def test_acquire_and_release(lock_path):
    lock = RunLock(lock_path)

    with lock.held() as held:
        assert held is lock
        record = json.loads(lock_path.read_text())
        assert record["pid"] == os.getpid()
        assert "started_at" in record

    assert not lock_path.exists()


def test_live_holder_blocks(lock_path, monkeypatch):
    write_record(lock_path, 999999)
    monkeypatch.setattr(run_lock, "process_alive", lambda pid: True)

    with pytest.raises(RunLockError) as exc_info:
        RunLock(lock_path).acquire()

    assert exc_info.value.holder_pid == 999999
    assert json.loads(lock_path.read_text())["pid"] == 999999


def test_force_overrides_live_holder(lock_path, monkeypatch):
    write_record(lock_path, 999999)
    monkeypatch.setattr(run_lock, "process_alive", lambda pid: True)

    lock = RunLock(lock_path)
    lock.acquire(force=True)

    assert json.loads(lock_path.read_text())["pid"] == os.getpid()
    lock.release()


def test_stale_lock_removed(lock_path, monkeypatch):
    write_record(lock_path, 999999)
    monkeypatch.setattr(run_lock, "process_alive", lambda pid: False)

    lock = RunLock(lock_path)
    lock.acquire()

    assert json.loads(lock_path.read_text())["pid"] == os.getpid()
    lock.release()


def test_corrupt_lock_treated_as_stale(lock_path):
    lock_path.parent.mkdir(parents=True)
    lock_path.write_text("not json")

    with RunLock(lock_path).held():
        assert json.loads(lock_path.read_text())["pid"] == os.getpid()


def test_released_on_exception(lock_path):
    lock = RunLock(lock_path)

    with pytest.raises(RuntimeError):
        with lock.held():
            raise RuntimeError("phase crashed")

    assert not lock_path.exists()


def test_release_leaves_foreign_lock(lock_path):
    lock = RunLock(lock_path)
    lock.acquire()
    write_record(lock_path, 999999)

    lock.release()

    assert json.loads(lock_path.read_text())["pid"] == 999999


def test_status(lock_path, monkeypatch):
    lock = RunLock(lock_path)
    assert lock.status() == {"locked": False}

    write_record(lock_path, 999999)
    monkeypatch.setattr(run_lock, "process_alive", lambda pid: False)
    status = lock.status()
    assert status["locked"] is False
    assert status["stale"] is True
    assert status["pid"] == 999999


def test_process_alive():
    assert process_alive(os.getpid())
    assert not process_alive(0)
    assert not process_alive(-1)
