from __future__ import annotations

import math
import re
import subprocess
from dataclasses import dataclass
from typing import Protocol

import structlog


logger = structlog.get_logger(__name__)

PING_BINARY = "ping"

# iputils: "1 packets transmitted, 1 received, 0% packet loss, time 0ms"
# busybox: "1 packets transmitted, 1 packets received, 0% packet loss"
_SUMMARY_RE = re.compile(r"(\d+)\s+packets?\s+transmitted,\s+(\d+)\s+(?:packets\s+)?received")
# "time=12.3 ms", "time=0.045 ms", "time<1 ms", "time=12ms"
_REPLY_TIME_RE = re.compile(r"time\s*[=<]\s*([0-9]+(?:\.[0-9]+)?)\s*ms")


@dataclass(frozen=True)
class PingSummary:
    transmitted: int
    received: int
    latency_ms: float | None


@dataclass(frozen=True)
class ProbeResult:
    address: str
    reachable: bool
    latency_ms: float | None = None
    output: str = ""
    error: str | None = None


class Prober(Protocol):
    def probe(self, address: str) -> ProbeResult: ...


def parse_ping_output(text: str) -> PingSummary:
    """
    Extract packet counts and the first reply's round-trip time from ping output.
    Missing summary lines are reported as 0 transmitted / 0 received.
    """
    s = text or ""
    transmitted = 0
    received = 0
    m = _SUMMARY_RE.search(s)
    if m:
        transmitted = int(m.group(1))
        received = int(m.group(2))

    latency_ms = None
    t = _REPLY_TIME_RE.search(s)
    if t:
        try:
            latency_ms = float(t.group(1))
        except ValueError:
            latency_ms = None

    return PingSummary(transmitted=transmitted, received=received, latency_ms=latency_ms)


def build_ping_command(address: str, *, timeout_seconds: float) -> list[str]:
    wait = max(1, int(math.ceil(float(timeout_seconds))))
    return [PING_BINARY, "-c", "1", "-W", str(wait), address]


class PingProber:
    """Single ICMP echo per probe via the system ping binary. No retries."""

    def __init__(self, timeout_seconds: float = 2.0) -> None:
        self.timeout_seconds = float(timeout_seconds)

    def probe(self, address: str) -> ProbeResult:
        cmd = build_ping_command(address, timeout_seconds=self.timeout_seconds)
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout_seconds + 2.0,
                check=False,
            )
        except subprocess.TimeoutExpired:
            result = ProbeResult(address=address, reachable=False, error="ping timed out")
            logger.info("Ping attempt", host=address, reachable=False, error=result.error)
            return result
        except OSError as exc:
            result = ProbeResult(address=address, reachable=False, error=f"{type(exc).__name__}: {exc}")
            logger.error("Ping could not be started", host=address, error=result.error)
            return result

        output = (proc.stdout or "").strip()
        summary = parse_ping_output(output)
        reachable = proc.returncode == 0 and summary.received >= 1
        result = ProbeResult(
            address=address,
            reachable=reachable,
            latency_ms=summary.latency_ms if reachable else None,
            output=output,
            error=None if reachable else f"ping exit status {proc.returncode}",
        )
        logger.info(
            "Ping attempt",
            host=address,
            reachable=reachable,
            latency_ms=result.latency_ms,
            exit_status=proc.returncode,
            output=output,
        )
        return result
