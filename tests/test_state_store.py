from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from host_checks.alerting import HostState, HostStatus
from host_checks.errors import StateStoreError
from host_checks.state import StateStore


def test_missing_state_file_loads_empty(tmp_path: Path) -> None:
    assert StateStore(tmp_path / "state.json").load() == {}


def test_save_then_load_round_trips(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "nested" / "state.json")
    states = {
        "192.168.1.1": HostState(0, HostStatus.UP),
        "example.com": HostState(2, HostStatus.UP),
        "10.0.0.9": HostState(17, HostStatus.DOWN),
    }
    store.save(states)
    assert store.load() == states

    store.save({})
    assert store.load() == {}


def test_saved_file_is_private_and_human_readable(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    StateStore(path).save({"example.com": HostState(1, HostStatus.UP)})

    mode = stat.S_IMODE(os.stat(path).st_mode)
    assert mode == 0o600

    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc["hosts"] == {"example.com": {"failure_count": 1, "status": "up"}}
    assert not (tmp_path / "state.json.tmp").exists()


def test_unparseable_file_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text('{"hosts": {"a.example.com": {"failure_count": 1, ', encoding="utf-8")
    with capture_logs() as logs:
        assert StateStore(path).load() == {}
    assert any(entry["log_level"] == "warning" for entry in logs)


def test_one_corrupt_record_does_not_hide_the_others(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "hosts": {
                    "10.0.0.1": {"failure_count": 2, "status": "up"},
                    "10.0.0.2": {"failure_count": "lots", "status": "down"},
                    "10.0.0.3": {"failure_count": 4, "status": "down"},
                    "10.0.0.4": {"failure_count": -1, "status": "up"},
                    "10.0.0.5": {"failure_count": 1, "status": "sideways"},
                    "10.0.0.6": "garbage",
                    "10.0.0.7": {"failure_count": True, "status": "up"},
                },
            }
        ),
        encoding="utf-8",
    )
    with capture_logs() as logs:
        states = StateStore(path).load()

    assert states == {
        "10.0.0.1": HostState(2, HostStatus.UP),
        "10.0.0.3": HostState(4, HostStatus.DOWN),
    }
    dropped = [e for e in logs if e["event"] == "Dropping corrupt state record"]
    assert {e["host"] for e in dropped} == {"10.0.0.2", "10.0.0.4", "10.0.0.5", "10.0.0.6", "10.0.0.7"}


def test_flat_document_without_wrapper_is_accepted(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"example.com": {"failure_count": 3, "status": "down"}}), encoding="utf-8")
    assert StateStore(path).load() == {"example.com": HostState(3, HostStatus.DOWN)}


def test_failed_save_leaves_previous_file_intact(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "state.json"
    store = StateStore(path)
    store.save({"10.0.0.1": HostState(1, HostStatus.UP)})

    def boom(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("host_checks.state.os.replace", boom)
    with pytest.raises(StateStoreError):
        store.save({"10.0.0.1": HostState(2, HostStatus.UP)})

    monkeypatch.undo()
    assert store.load() == {"10.0.0.1": HostState(1, HostStatus.UP)}
    assert not (tmp_path / "state.json.tmp").exists()


def test_clear_empties_store(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    store.save({"10.0.0.1": HostState(5, HostStatus.DOWN)})
    store.clear()
    assert store.load() == {}
