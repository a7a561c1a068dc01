from __future__ import annotations

import os
from pathlib import Path

import pytest

from host_checks.run_guard import RunGuard


def test_second_guard_is_refused_while_first_holds(tmp_path: Path) -> None:
    lock = tmp_path / "monitor.lock"
    first = RunGuard(lock)
    second = RunGuard(lock)

    assert first.acquire() is True
    try:
        assert second.acquire() is False
        assert second.held is False
        assert lock.read_text(encoding="utf-8") == str(os.getpid())
    finally:
        first.release()

    assert second.acquire() is True
    second.release()


def test_release_is_idempotent(tmp_path: Path) -> None:
    guard = RunGuard(tmp_path / "monitor.lock")
    guard.release()
    assert guard.acquire() is True
    guard.release()
    guard.release()
    assert guard.held is False


def test_context_manager_raises_on_contention(tmp_path: Path) -> None:
    lock = tmp_path / "monitor.lock"
    with RunGuard(lock):
        with pytest.raises(BlockingIOError):
            with RunGuard(lock):
                pass
    with RunGuard(lock) as guard:
        assert guard.held is True


def test_lock_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOST_MONITOR_LOCK", str(tmp_path / "env.lock"))
    assert RunGuard().path == tmp_path / "env.lock"
