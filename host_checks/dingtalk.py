from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from urllib.parse import quote_plus

import httpx
import structlog

from host_checks.config import mask_webhook
from host_checks.notify import Notifier


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DingTalkConfig:
    webhook_url: str
    secret: str | None = None


def sign_webhook_url(webhook_url: str, secret: str, *, timestamp_ms: int | None = None) -> str:
    """
    Robots with signature security expect `timestamp` (ms) and
    `sign = base64(hmac_sha256(secret, f"{timestamp}\\n{secret}"))` as query params.
    """
    ts = int(time.time() * 1000) if timestamp_ms is None else int(timestamp_ms)
    string_to_sign = f"{ts}\n{secret}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), string_to_sign, digestmod=hashlib.sha256).digest()
    sign = quote_plus(base64.b64encode(digest).decode("ascii"))
    sep = "&" if "?" in webhook_url else "?"
    return f"{webhook_url}{sep}timestamp={ts}&sign={sign}"


def send_dingtalk_text(
    client: httpx.Client,
    config: DingTalkConfig,
    webhook_url: str,
    text: str,
    *,
    timeout: float = 5.0,
) -> tuple[bool, dict]:
    url = sign_webhook_url(webhook_url, config.secret) if config.secret else webhook_url
    payload = {"msgtype": "text", "text": {"content": text}}
    try:
        resp = client.post(url, json=payload, timeout=timeout)
        data = resp.json()
        if not isinstance(data, dict):
            return False, {"errcode": None, "errmsg": f"unexpected response (HTTP {resp.status_code})"}
        errcode = data.get("errcode")
        return errcode == 0 and not isinstance(errcode, bool), data
    except (httpx.HTTPError, ValueError) as e:
        msg = f"{type(e).__name__}: {e}".replace(webhook_url, mask_webhook(webhook_url))
        return False, {"errcode": None, "errmsg": msg}


def redact_dingtalk_response(data: dict) -> str:
    return json.dumps({"errcode": data.get("errcode"), "errmsg": data.get("errmsg")}, ensure_ascii=False)


class DingTalkNotifier(Notifier):
    """Robot webhook text messages; success is errcode == 0 in the JSON reply."""

    channel = "dingtalk"
    markdown = False

    def __init__(self, client: httpx.Client, config: DingTalkConfig, *, timeout_seconds: float = 5.0) -> None:
        super().__init__(client, timeout_seconds=timeout_seconds)
        self.config = config

    @property
    def recipients(self) -> list[str]:
        return [self.config.webhook_url]

    def describe_recipient(self, recipient: str) -> str:
        return mask_webhook(recipient)

    def send(self, recipient: str, message: str) -> bool:
        ok, resp = send_dingtalk_text(self.client, self.config, recipient, message, timeout=self.timeout_seconds)
        if ok:
            logger.info("DingTalk message sent", webhook=mask_webhook(recipient))
        else:
            logger.error(
                "DingTalk message failed",
                webhook=mask_webhook(recipient),
                dingtalk=redact_dingtalk_response(resp),
            )
        return ok

    def verify(self) -> bool:
        ok = self.send(self.config.webhook_url, "Test message")
        if ok:
            logger.info("DingTalk webhook validation succeeded", webhook=mask_webhook(self.config.webhook_url))
        else:
            logger.error("DingTalk webhook validation failed", webhook=mask_webhook(self.config.webhook_url))
        return ok
