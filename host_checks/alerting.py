from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

import structlog

from host_checks.config import HostEntry
from host_checks.probe import ProbeResult


logger = structlog.get_logger(__name__)


class HostStatus(str, enum.Enum):
    UP = "up"
    DOWN = "down"


class TransitionKind(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class HostState:
    failure_count: int = 0
    status: HostStatus = HostStatus.UP


@dataclass(frozen=True)
class TransitionEvent:
    kind: TransitionKind
    address: str
    label: str
    failure_count: int
    timestamp: datetime


def update_host_state(
    prev: HostState,
    *,
    observed_ok: bool,
    offline_threshold: int,
) -> tuple[HostState, TransitionKind | None]:
    """
    Asymmetric debounce: DOWN after `offline_threshold` consecutive failures, UP after
    a single success. Emits at most one transition per observation and never repeats
    OFFLINE while already DOWN.
    """
    if int(offline_threshold) < 1:
        raise ValueError(f"offline_threshold must be >= 1, got {offline_threshold!r}")

    if observed_ok:
        if prev.status is HostStatus.DOWN:
            return HostState(failure_count=0, status=HostStatus.UP), TransitionKind.ONLINE
        return HostState(failure_count=0, status=HostStatus.UP), None

    fail_count = int(prev.failure_count) + 1
    if prev.status is HostStatus.UP and fail_count >= int(offline_threshold):
        return HostState(failure_count=fail_count, status=HostStatus.DOWN), TransitionKind.OFFLINE
    return HostState(failure_count=fail_count, status=prev.status), None


def evaluate_round(
    states: Mapping[str, HostState],
    results: Iterable[tuple[HostEntry, ProbeResult]],
    *,
    offline_threshold: int,
    now: datetime,
) -> tuple[dict[str, HostState], list[TransitionEvent]]:
    """
    Feed one round of probe results through the state machine.

    Returns a new state mapping (hosts not probed this round are carried over) and the
    transition events in probe order.
    """
    next_states = dict(states)
    events: list[TransitionEvent] = []

    for entry, result in results:
        prev = next_states.get(entry.address)
        if prev is None:
            prev = HostState()
            logger.info("Initialized host state", host=entry.address, label=entry.label)

        state, kind = update_host_state(
            prev,
            observed_ok=bool(result.reachable),
            offline_threshold=offline_threshold,
        )
        next_states[entry.address] = state

        if kind is TransitionKind.OFFLINE:
            logger.warning(
                "Host went offline",
                host=entry.address,
                label=entry.label,
                failure_count=state.failure_count,
                threshold=offline_threshold,
            )
        elif kind is TransitionKind.ONLINE:
            logger.info(
                "Host back online",
                host=entry.address,
                label=entry.label,
                previous_failure_count=prev.failure_count,
            )
        elif not result.reachable:
            logger.warning(
                "Host failing (alert suppressed)" if state.status is HostStatus.UP else "Host still offline",
                host=entry.address,
                label=entry.label,
                failure_count=state.failure_count,
                threshold=offline_threshold,
                status=state.status.value,
            )
        else:
            logger.info(
                "Host reachable",
                host=entry.address,
                label=entry.label,
                latency_ms=result.latency_ms,
            )

        if kind is not None:
            events.append(
                TransitionEvent(
                    kind=kind,
                    address=entry.address,
                    label=entry.label,
                    failure_count=state.failure_count if kind is TransitionKind.OFFLINE else prev.failure_count,
                    timestamp=now,
                )
            )

    return next_states, events
