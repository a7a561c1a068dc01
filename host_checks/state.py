from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

import structlog

from host_checks.alerting import HostState, HostStatus
from host_checks.errors import StateStoreError


logger = structlog.get_logger(__name__)

STATE_FORMAT_VERSION = 1
STATE_FILE_MODE = 0o600


def _coerce_host_state(value: Any) -> HostState | None:
    if not isinstance(value, dict):
        return None
    count = value.get("failure_count")
    # bool is an int subclass; "true" is not a count
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        return None
    try:
        status = HostStatus(value.get("status"))
    except ValueError:
        return None
    return HostState(failure_count=count, status=status)


def coerce_host_states(raw: Any) -> dict[str, HostState]:
    """
    Decode the persisted host mapping record by record. Invalid records are dropped
    so one corrupted host never hides the others.
    """
    if not isinstance(raw, dict):
        return {}

    out: dict[str, HostState] = {}
    for address, value in raw.items():
        if not isinstance(address, str) or not address.strip():
            logger.warning("Dropping state record with invalid host key", key=repr(address))
            continue
        state = _coerce_host_state(value)
        if state is None:
            logger.warning("Dropping corrupt state record", host=address, record=repr(value)[:200])
            continue
        out[address] = state
    return out


def encode_host_states(states: Mapping[str, HostState]) -> dict[str, Any]:
    return {
        "version": STATE_FORMAT_VERSION,
        "hosts": {
            address: {"failure_count": int(state.failure_count), "status": state.status.value}
            for address, state in states.items()
        },
    }


class StateStore:
    """JSON file holding address -> {failure_count, status}, replaced atomically on save."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, HostState]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("No state file yet; starting fresh", path=str(self.path))
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read state file; starting fresh", path=str(self.path), error=str(exc))
            return {}

        if not isinstance(raw, dict):
            logger.warning("State file is not a mapping; starting fresh", path=str(self.path))
            return {}

        # Back-compat: flat {address: record} documents without the wrapper.
        hosts_raw = raw.get("hosts")
        if not isinstance(hosts_raw, dict):
            hosts_raw = {k: v for k, v in raw.items() if k not in ("version", "hosts")}

        states = coerce_host_states(hosts_raw)
        logger.info("Loaded state", path=str(self.path), hosts=len(states))
        return states

    def save(self, states: Mapping[str, HostState]) -> None:
        payload = json.dumps(encode_host_states(states), ensure_ascii=False, sort_keys=True, indent=2) + "\n"
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, STATE_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, STATE_FILE_MODE)
            os.replace(tmp, self.path)
        except OSError as exc:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise StateStoreError(f"Failed to write state file {self.path}: {exc}") from exc
        logger.info("Saved state", path=str(self.path), hosts=len(states))

    def clear(self) -> None:
        self.save({})
