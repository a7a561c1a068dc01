"""Configuration loading and validation for the host monitor."""

from __future__ import annotations

import ipaddress
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from host_checks.errors import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")
DEFAULT_STATE_PATH = "/var/lib/host-monitor/state.json"

_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z]{2,})+$")
_IPV4_SHAPE_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")


def is_valid_host(address: str) -> bool:
    s = (address or "").strip()
    if not s:
        return False
    if _IPV4_SHAPE_RE.match(s):
        try:
            ipaddress.IPv4Address(s)
        except ValueError:
            return False
        return True
    return bool(_DOMAIN_RE.match(s))


class HostEntry(BaseModel):
    """One monitored endpoint: an IPv4 address or domain plus a free-text remark."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., min_length=1, description="IPv4 address or domain name")
    label: str = Field(default="", description="Free-text remark shown in notifications")

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_host(value):
            raise ValueError(f"invalid host address {value!r}; expected IPv4 address or domain name")
        return value

    @field_validator("label", mode="before")
    @classmethod
    def _strip_label(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value


class TelegramSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    bot_token: str = Field(default="", description="Bot API token")
    chat_ids: list[str] = Field(default_factory=list, description="Chats that receive alerts")
    api_base_url: str = Field(default="https://api.telegram.org", description="Bot API base URL")

    @field_validator("chat_ids", mode="before")
    @classmethod
    def _split_chat_ids(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = str(value).split(",")
        if isinstance(value, list):
            return [str(x).strip() for x in value if str(x or "").strip()]
        return value


class DingTalkSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    webhook_url: str = Field(default="", description="Robot webhook URL including access_token")
    secret: str | None = Field(default=None, description="Signing secret for robots with signature security")


class MonitorConfig(BaseModel):
    """Validated, read-only configuration for one monitoring invocation."""

    model_config = ConfigDict(frozen=True)

    channel: Literal["telegram", "dingtalk"] = Field(..., description="Active notification channel")
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    dingtalk: DingTalkSettings = Field(default_factory=DingTalkSettings)

    hosts: list[HostEntry] = Field(..., min_length=1, description="Hosts to probe, in order")

    poll_interval_seconds: int = Field(default=60, gt=0, description="Pause between probing rounds")
    offline_threshold: int = Field(default=3, gt=0, description="Consecutive failures before DOWN")
    invocation_window_seconds: int = Field(default=60, gt=0, description="Time budget of one invocation")
    probe_timeout_seconds: float = Field(default=2.0, gt=0, description="Per-probe reply timeout")
    notify_timeout_seconds: float = Field(default=5.0, gt=0, description="Per-recipient HTTP timeout")

    state_path: Path = Field(default=Path(DEFAULT_STATE_PATH), description="Persisted host state")

    @field_validator("hosts", mode="before")
    @classmethod
    def _normalize_hosts(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        out: list[Any] = []
        for idx, entry in enumerate(value):
            if isinstance(entry, str):
                out.append({"address": entry})
            elif isinstance(entry, dict):
                out.append(entry)
            else:
                raise ValueError(f"hosts[{idx}] must be a string or mapping, got {type(entry).__name__}")
        return out

    @field_validator("hosts")
    @classmethod
    def _reject_duplicates(cls, value: list[HostEntry]) -> list[HostEntry]:
        seen: set[str] = set()
        for entry in value:
            if entry.address in seen:
                raise ValueError(f"duplicate host entry: {entry.address}")
            seen.add(entry.address)
        return value

    @model_validator(mode="after")
    def _require_channel_credentials(self) -> "MonitorConfig":
        if self.channel == "telegram":
            if not self.telegram.bot_token.strip():
                raise ValueError("telegram.bot_token is required when channel=telegram")
            if not self.telegram.chat_ids:
                raise ValueError("telegram.chat_ids must list at least one chat when channel=telegram")
        elif self.channel == "dingtalk":
            url = self.dingtalk.webhook_url.strip()
            if not url:
                raise ValueError("dingtalk.webhook_url is required when channel=dingtalk")
            if not url.startswith(("http://", "https://")):
                raise ValueError("dingtalk.webhook_url must be an http(s) URL")
        return self

    @property
    def rounds_per_invocation(self) -> int:
        return max(1, self.invocation_window_seconds // self.poll_interval_seconds)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")
    return data


def _apply_env_overrides(data: dict[str, Any], env: dict[str, str]) -> dict[str, Any]:
    data = dict(data)
    telegram = dict(data.get("telegram") or {})
    dingtalk = dict(data.get("dingtalk") or {})

    if env.get("TELEGRAM_BOT_TOKEN"):
        telegram["bot_token"] = env["TELEGRAM_BOT_TOKEN"]
    if env.get("TELEGRAM_CHAT_IDS"):
        telegram["chat_ids"] = env["TELEGRAM_CHAT_IDS"]
    if env.get("DINGTALK_WEBHOOK"):
        dingtalk["webhook_url"] = env["DINGTALK_WEBHOOK"]
    if env.get("DINGTALK_SECRET"):
        dingtalk["secret"] = env["DINGTALK_SECRET"]
    if env.get("HOST_MONITOR_STATE"):
        data["state_path"] = env["HOST_MONITOR_STATE"]

    if telegram:
        data["telegram"] = telegram
    if dingtalk:
        data["dingtalk"] = dingtalk
    return data


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    if config_path is None:
        config_path = os.getenv("HOST_MONITOR_CONFIG") or DEFAULT_CONFIG_PATH
    return Path(config_path)


def load_config(config_path: str | Path | None = None, *, env: dict[str, str] | None = None) -> MonitorConfig:
    """Load configuration from YAML, apply secret overrides from the environment and validate.

    Raises ConfigError for anything that must stop an invocation before probing.
    """
    path = resolve_config_path(config_path)
    data = _read_yaml(path)
    data = _apply_env_overrides(data, dict(os.environ) if env is None else env)
    try:
        return MonitorConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {path}: {exc}") from exc


def mask_token(token: str) -> str:
    if not token:
        return "Not set"
    prefix = token.split(":", 1)[0]
    return f"{prefix}:****"


def mask_webhook(url: str) -> str:
    if not url:
        return "Not set"
    return f"{url[:10]}****"


def describe_config(config: MonitorConfig) -> str:
    lines = [f"Notification channel: {config.channel}"]
    if config.channel == "telegram":
        lines.append(f"Telegram bot token: {mask_token(config.telegram.bot_token)}")
        lines.append(f"Telegram chat ids: {', '.join(config.telegram.chat_ids)}")
    else:
        lines.append(f"DingTalk webhook: {mask_webhook(config.dingtalk.webhook_url)}")
        lines.append(f"DingTalk signing: {'enabled' if config.dingtalk.secret else 'disabled'}")
    lines.append(f"Poll interval: {config.poll_interval_seconds} seconds")
    lines.append(f"Offline threshold: {config.offline_threshold} consecutive failures")
    lines.append(
        f"Invocation window: {config.invocation_window_seconds} seconds "
        f"({config.rounds_per_invocation} round(s))"
    )
    lines.append(f"State file: {config.state_path}")
    lines.append("Hosts:")
    for idx, entry in enumerate(config.hosts, start=1):
        label = f" ({entry.label})" if entry.label else ""
        lines.append(f"  {idx}. {entry.address}{label}")
    return "\n".join(lines)
