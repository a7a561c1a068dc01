from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from host_checks.config import DEFAULT_CONFIG_PATH, HostEntry, describe_config, is_valid_host, load_config
from host_checks.errors import ConfigError


def _write(tmp_path: Path, data: dict) -> Path:
    p = tmp_path / "config.yaml"
    p.write_text(yaml.safe_dump(data), encoding="utf-8")
    return p


def _base(**overrides) -> dict:
    data = {
        "channel": "telegram",
        "telegram": {"bot_token": "123:abc", "chat_ids": ["1", "2"]},
        "hosts": [{"address": "192.168.1.1", "label": "Gateway"}, "example.com"],
        "poll_interval_seconds": 20,
        "offline_threshold": 3,
    }
    data.update(overrides)
    return data


@pytest.mark.parametrize(
    ("host", "ok"),
    [
        ("192.168.1.1", True),
        ("8.8.8.8", True),
        ("example.com", True),
        ("sub.example.co.uk", True),
        ("999.1.1.1", False),
        ("localhost", False),
        ("-bad.example.com", False),
        ("", False),
        ("http://example.com", False),
    ],
)
def test_is_valid_host(host: str, ok: bool) -> None:
    assert is_valid_host(host) is ok


def test_load_config_parses_hosts_in_order(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, _base()), env={})
    assert [h.address for h in cfg.hosts] == ["192.168.1.1", "example.com"]
    assert cfg.hosts[0].label == "Gateway"
    assert cfg.hosts[1].label == ""
    assert cfg.rounds_per_invocation == 3


def test_empty_label_in_yaml_is_accepted(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text(
        "channel: telegram\n"
        "telegram:\n  bot_token: '123:abc'\n  chat_ids: ['1']\n"
        "hosts:\n  - address: 10.0.0.1\n    label:\n  - address: example.com\n    label: '  Web  '\n",
        encoding="utf-8",
    )
    cfg = load_config(p, env={})
    assert [h.label for h in cfg.hosts] == ["", "Web"]
    assert HostEntry(address="10.0.0.1", label=None).label == ""


@pytest.mark.parametrize(
    "overrides",
    [
        {"offline_threshold": 0},
        {"offline_threshold": -2},
        {"poll_interval_seconds": 0},
        {"invocation_window_seconds": 0},
        {"hosts": []},
        {"hosts": ["not a host!"]},
        {"hosts": ["example.com", {"address": "example.com"}]},
        {"channel": "email"},
        {"telegram": {"bot_token": "", "chat_ids": ["1"]}},
        {"telegram": {"bot_token": "123:abc", "chat_ids": []}},
        {"channel": "dingtalk"},
        {"channel": "dingtalk", "dingtalk": {"webhook_url": "oapi.dingtalk.com/robot/send"}},
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, overrides: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, _base(**overrides)), env={})


def test_missing_and_malformed_files_are_config_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml", env={})

    p = tmp_path / "config.yaml"
    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p, env={})


def test_env_overrides_supply_secrets(tmp_path: Path) -> None:
    data = _base(channel="dingtalk", telegram={})
    cfg = load_config(
        _write(tmp_path, data),
        env={
            "DINGTALK_WEBHOOK": "https://oapi.dingtalk.com/robot/send?access_token=t",
            "DINGTALK_SECRET": "SECxyz",
            "HOST_MONITOR_STATE": str(tmp_path / "s.json"),
        },
    )
    assert cfg.dingtalk.webhook_url.endswith("access_token=t")
    assert cfg.dingtalk.secret == "SECxyz"
    assert cfg.state_path == tmp_path / "s.json"

    cfg = load_config(
        _write(tmp_path, _base(telegram={})),
        env={"TELEGRAM_BOT_TOKEN": "42:zz", "TELEGRAM_CHAT_IDS": "100, 200"},
    )
    assert cfg.telegram.bot_token == "42:zz"
    assert cfg.telegram.chat_ids == ["100", "200"]


def test_describe_config_masks_secrets(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, _base(telegram={"bot_token": "123:supersecret", "chat_ids": "7"})), env={})
    text = describe_config(cfg)
    assert "supersecret" not in text
    assert "123:****" in text
    assert "1. 192.168.1.1 (Gateway)" in text


def test_bundled_example_config_needs_only_secrets() -> None:
    cfg = load_config(DEFAULT_CONFIG_PATH, env={"TELEGRAM_BOT_TOKEN": "1:x", "TELEGRAM_CHAT_IDS": "5"})
    assert cfg.channel == "telegram"
    assert cfg.hosts
