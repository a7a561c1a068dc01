from __future__ import annotations

import json
from dataclasses import dataclass

import httpx
import structlog

from host_checks.notify import Notifier


logger = structlog.get_logger(__name__)

TELEGRAM_API_BASE_URL = "https://api.telegram.org"


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_ids: tuple[str, ...]
    api_base_url: str = TELEGRAM_API_BASE_URL


def _redact(text: str, token: str) -> str:
    if token:
        text = text.replace(token, "<redacted>")
    return text


def _bot_url(config: TelegramConfig, method: str) -> str:
    return f"{config.api_base_url.rstrip('/')}/bot{config.bot_token}/{method}"


def send_telegram_message(
    client: httpx.Client,
    config: TelegramConfig,
    chat_id: str,
    text: str,
    *,
    parse_mode: str | None = "Markdown",
    timeout: float = 5.0,
) -> tuple[bool, dict]:
    payload: dict = {"chat_id": chat_id, "text": text}
    if parse_mode:
        payload["parse_mode"] = parse_mode
    try:
        resp = client.post(_bot_url(config, "sendMessage"), json=payload, timeout=timeout)
        data = resp.json()
        if not isinstance(data, dict):
            return False, {"ok": False, "error": f"unexpected response (HTTP {resp.status_code})"}
        return bool(data.get("ok")), data
    except (httpx.HTTPError, ValueError) as e:
        msg = _redact(f"{type(e).__name__}: {e}", config.bot_token)
        return False, {"ok": False, "error": msg}


def get_me(client: httpx.Client, config: TelegramConfig, *, timeout: float = 5.0) -> tuple[bool, dict]:
    try:
        resp = client.get(_bot_url(config, "getMe"), timeout=timeout)
        data = resp.json()
        if not isinstance(data, dict):
            return False, {"ok": False, "error": f"unexpected response (HTTP {resp.status_code})"}
        return bool(data.get("ok")), data
    except (httpx.HTTPError, ValueError) as e:
        msg = _redact(f"{type(e).__name__}: {e}", config.bot_token)
        return False, {"ok": False, "error": msg}


def redact_telegram_response(data: dict) -> str:
    safe = {"ok": data.get("ok")}
    if isinstance(data.get("result"), dict):
        safe["result"] = {"message_id": data["result"].get("message_id")}
    if data.get("error_code") is not None:
        safe["error_code"] = data.get("error_code")
    if data.get("description"):
        safe["description"] = data.get("description")
    if data.get("error"):
        safe["error"] = data.get("error")
    return json.dumps(safe, ensure_ascii=False)


class TelegramNotifier(Notifier):
    """Bot API sendMessage, one request per configured chat."""

    channel = "telegram"
    markdown = True

    def __init__(self, client: httpx.Client, config: TelegramConfig, *, timeout_seconds: float = 5.0) -> None:
        super().__init__(client, timeout_seconds=timeout_seconds)
        self.config = config

    @property
    def recipients(self) -> list[str]:
        return list(self.config.chat_ids)

    def send(self, recipient: str, message: str) -> bool:
        ok, resp = send_telegram_message(
            self.client,
            self.config,
            recipient,
            message,
            timeout=self.timeout_seconds,
        )
        if ok:
            logger.info("Telegram message sent", chat_id=recipient, telegram=redact_telegram_response(resp))
        else:
            logger.error("Telegram message failed", chat_id=recipient, telegram=redact_telegram_response(resp))
        return ok

    def verify(self) -> bool:
        ok, resp = get_me(self.client, self.config, timeout=self.timeout_seconds)
        if ok:
            logger.info("Telegram bot validation succeeded")
        else:
            logger.error("Telegram bot validation failed", telegram=redact_telegram_response(resp))
        return ok
