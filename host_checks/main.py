from __future__ import annotations

import argparse
import enum
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

import httpx
import structlog

from host_checks.alerting import HostState, TransitionEvent, TransitionKind, evaluate_round
from host_checks.config import MonitorConfig, describe_config, load_config
from host_checks.dingtalk import DingTalkConfig, DingTalkNotifier
from host_checks.errors import ConfigError, StateStoreError
from host_checks.notify import Notifier
from host_checks.probe import PingProber, Prober
from host_checks.run_guard import RunGuard, resolve_lock_path
from host_checks.state import StateStore
from host_checks.telegram import TelegramConfig, TelegramNotifier


logger = structlog.get_logger("host-monitor")

TEST_HOST = "192.0.2.1"
TEST_LABEL = "Test Host"


class InvocationStatus(enum.IntEnum):
    """Outcome of one guarded invocation; the value doubles as the process exit code."""

    OK = 0
    SKIPPED_LOCKED = 75  # EX_TEMPFAIL
    CONFIG_INVALID = 78  # EX_CONFIG


EXIT_STATE_WRITE_FAILED = 1
EXIT_LOCK_UNAVAILABLE = 1


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    levelno = getattr(logging, str(level).upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(levelno),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    # Avoid leaking secrets (Telegram token is embedded in the Bot API URL).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_notifier(config: MonitorConfig, client: httpx.Client) -> Notifier:
    if config.channel == "telegram":
        return TelegramNotifier(
            client,
            TelegramConfig(
                bot_token=config.telegram.bot_token,
                chat_ids=tuple(config.telegram.chat_ids),
                api_base_url=config.telegram.api_base_url,
            ),
            timeout_seconds=config.notify_timeout_seconds,
        )
    if config.channel == "dingtalk":
        return DingTalkNotifier(
            client,
            DingTalkConfig(webhook_url=config.dingtalk.webhook_url, secret=config.dingtalk.secret),
            timeout_seconds=config.notify_timeout_seconds,
        )
    raise ConfigError(f"Unsupported notification channel: {config.channel!r}")


def run_rounds(
    config: MonitorConfig,
    *,
    store: StateStore,
    prober: Prober,
    notifier: Notifier,
    sleep: Callable[[float], None] = time.sleep,
    now: Callable[[], datetime] = datetime.now,
) -> dict[str, HostState]:
    """
    Probe every host in order, update state, persist, then dispatch that round's
    transitions. Repeats `rounds_per_invocation` times separated by the poll interval.
    """
    states = store.load()
    rounds = config.rounds_per_invocation

    for attempt in range(1, rounds + 1):
        logger.info("Monitor round", round=attempt, rounds=rounds, hosts=len(config.hosts))
        round_started = now()
        results = ((entry, prober.probe(entry.address)) for entry in config.hosts)
        states, events = evaluate_round(
            states,
            results,
            offline_threshold=config.offline_threshold,
            now=round_started,
        )

        store.save(states)

        for event in events:
            delivered = notifier.notify(event)
            logger.log(
                logging.INFO if delivered else logging.WARNING,
                "Transition notification",
                host=event.address,
                label=event.label,
                transition=event.kind.value,
                failure_count=event.failure_count,
                delivered=delivered,
            )

        if attempt < rounds:
            sleep(float(config.poll_interval_seconds))

    return states


def run_monitoring_invocation(
    config_path: str | Path | None = None,
    *,
    lock_path: str | Path | None = None,
    prober: Prober | None = None,
    notifier: Notifier | None = None,
    sleep: Callable[[float], None] = time.sleep,
    now: Callable[[], datetime] = datetime.now,
    env: dict[str, str] | None = None,
) -> InvocationStatus:
    """
    One guarded monitoring invocation, as started by cron.

    Returns SKIPPED_LOCKED without touching state when another invocation holds the
    run lock, and CONFIG_INVALID before any probing when configuration is rejected.
    A state write failure raises StateStoreError.
    """
    guard = RunGuard(lock_path)
    if not guard.acquire():
        logger.info("Monitoring skipped; another invocation holds the lock", lock=str(guard.path))
        return InvocationStatus.SKIPPED_LOCKED

    try:
        try:
            config = load_config(config_path, env=env)
        except ConfigError as exc:
            logger.error("Configuration rejected", error=str(exc))
            return InvocationStatus.CONFIG_INVALID

        store = StateStore(config.state_path)
        if prober is None:
            prober = PingProber(timeout_seconds=config.probe_timeout_seconds)

        client: httpx.Client | None = None
        if notifier is None:
            client = httpx.Client()
            notifier = build_notifier(config, client)
        try:
            run_rounds(config, store=store, prober=prober, notifier=notifier, sleep=sleep, now=now)
        finally:
            if client is not None:
                client.close()
        return InvocationStatus.OK
    finally:
        guard.release()


def _sample_event(kind: TransitionKind, config: MonitorConfig) -> TransitionEvent:
    return TransitionEvent(
        kind=kind,
        address=TEST_HOST,
        label=TEST_LABEL,
        failure_count=config.offline_threshold if kind is TransitionKind.OFFLINE else 0,
        timestamp=datetime.now(),
    )


def _cmd_monitor(args: argparse.Namespace) -> int:
    try:
        status = run_monitoring_invocation(args.config, lock_path=args.lock_file)
    except StateStoreError as exc:
        logger.error("Monitoring aborted; state could not be saved", error=str(exc))
        return EXIT_STATE_WRITE_FAILED
    except OSError as exc:
        logger.error(
            "Monitoring aborted; run lock could not be opened",
            lock=str(resolve_lock_path(args.lock_file)),
            error=str(exc),
        )
        return EXIT_LOCK_UNAVAILABLE
    return int(status)


def _cmd_test_notify(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    kind = TransitionKind.OFFLINE if args.kind == "offline" else TransitionKind.ONLINE
    with httpx.Client() as client:
        notifier = build_notifier(config, client)
        delivered = notifier.notify(_sample_event(kind, config))
    print("Notification sent, check your channel" if delivered else "Notification failed, check log")
    return 0 if delivered else 1


def _cmd_check_channel(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    with httpx.Client() as client:
        ok = build_notifier(config, client).verify()
    print(f"{config.channel} channel {'OK' if ok else 'FAILED'}")
    return 0 if ok else 1


def _cmd_show_config(args: argparse.Namespace) -> int:
    print(describe_config(load_config(args.config)))
    return 0


def _cmd_reset_state(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    guard = RunGuard(args.lock_file)
    if not guard.acquire():
        print("Another monitor instance is running; state not reset")
        return int(InvocationStatus.SKIPPED_LOCKED)
    try:
        StateStore(config.state_path).clear()
    except StateStoreError as exc:
        logger.error("State reset failed", error=str(exc))
        return EXIT_STATE_WRITE_FAILED
    finally:
        guard.release()
    logger.info("State cleared", path=str(config.state_path))
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace], int]] = {
    "monitor": _cmd_monitor,
    "test-notify": _cmd_test_notify,
    "check-channel": _cmd_check_channel,
    "show-config": _cmd_show_config,
    "reset-state": _cmd_reset_state,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="host-monitor", description="Host availability monitor")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $HOST_MONITOR_CONFIG)")
    parser.add_argument("--lock-file", default=None, help="Run lock path (default: $HOST_MONITOR_LOCK)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    parser.add_argument("--log-format", choices=("console", "json"), default="console")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("monitor", help="Run one monitoring invocation (called by cron)")
    test_notify = sub.add_parser("test-notify", help="Send a sample notification")
    test_notify.add_argument("kind", choices=("offline", "online"))
    sub.add_parser("check-channel", help="Validate the notification channel credentials")
    sub.add_parser("show-config", help="Print the configuration with secrets masked")
    sub.add_parser("reset-state", help="Clear all stored host state")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    command = args.command or "monitor"
    try:
        return COMMANDS[command](args)
    except ConfigError as exc:
        logger.error("Configuration rejected", error=str(exc))
        return int(InvocationStatus.CONFIG_INVALID)


if __name__ == "__main__":
    raise SystemExit(main())
