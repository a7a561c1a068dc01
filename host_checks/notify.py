"""Transition rendering and recipient fanout shared by every notification channel."""

from __future__ import annotations

import abc

import httpx
import structlog

from host_checks.alerting import TransitionEvent, TransitionKind


logger = structlog.get_logger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Characters that open an entity in Telegram's legacy Markdown parse mode.
_MARKDOWN_SPECIAL = ("_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    for ch in _MARKDOWN_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text


def render_message(event: TransitionEvent, *, markdown: bool = True) -> str:
    def bold(text: str) -> str:
        return f"*{text}*" if markdown else text

    def plain(text: str) -> str:
        return escape_markdown(text) if markdown else text

    ts = event.timestamp.strftime(TIME_FORMAT)
    address = plain(event.address)
    label = plain(event.label or "-")
    if event.kind is TransitionKind.OFFLINE:
        lines = [
            f"🛑 {bold('Host Offline Notification')}",
            "",
            f"📍 {bold('Host')}: {address}",
            f"📝 {bold('Remark')}: {label}",
            f"🕒 {bold('Time')}: {ts}",
            f"⚠️ {bold('Consecutive Failures')}: {event.failure_count}",
        ]
    else:
        lines = [
            f"✅ {bold('Host Online Notification')}",
            "",
            f"📍 {bold('Host')}: {address}",
            f"📝 {bold('Remark')}: {label}",
            f"🕒 {bold('Time')}: {ts}",
        ]
    return "\n".join(lines)


class Notifier(abc.ABC):
    """
    One notification channel. Subclasses implement `send` for a single recipient;
    `notify` fans a rendered event out to every recipient independently.
    """

    channel: str = ""
    markdown: bool = True

    def __init__(self, client: httpx.Client, *, timeout_seconds: float = 5.0) -> None:
        self.client = client
        self.timeout_seconds = float(timeout_seconds)

    @property
    @abc.abstractmethod
    def recipients(self) -> list[str]:
        """Destinations that each receive their own copy of a message."""

    @abc.abstractmethod
    def send(self, recipient: str, message: str) -> bool:
        """Deliver one text message to one recipient; True on confirmed success."""

    @abc.abstractmethod
    def verify(self) -> bool:
        """Check that the channel credentials work."""

    def describe_recipient(self, recipient: str) -> str:
        return recipient

    def render(self, event: TransitionEvent) -> str:
        return render_message(event, markdown=self.markdown)

    def notify(self, event: TransitionEvent) -> bool:
        message = self.render(event)
        return self.broadcast(message, event=event)

    def broadcast(self, message: str, *, event: TransitionEvent | None = None) -> bool:
        context = {"channel": self.channel}
        if event is not None:
            context.update(host=event.address, label=event.label, transition=event.kind.value)

        delivered = 0
        recipients = self.recipients
        for recipient in recipients:
            who = self.describe_recipient(recipient)
            try:
                ok = self.send(recipient, message)
            except Exception as exc:
                logger.error(
                    "Notification delivery raised",
                    recipient=who,
                    error=f"{type(exc).__name__}: {exc}",
                    **context,
                )
                ok = False
            if ok:
                delivered += 1

        if delivered:
            logger.info("Notification delivered", delivered=delivered, recipients=len(recipients), **context)
        else:
            logger.warning("Notification failed for every recipient", recipients=len(recipients), **context)
        return delivered > 0
