"""Network presets and runtime configuration for the Qi agent wallet."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Dict, Optional

from .core.zones import Zone, parse_zone

MAILBOX_ADDRESS = "0x004C82298b3ED69a949008d7037918B13A4260c5"

NETWORK_CONFIGS: Dict[str, Dict[str, str]] = {
    "mainnet": {
        "rpc_url": "https://rpc.quai.network",
        "ws_url": "wss://rpc.quai.network",
        "mailbox_address": MAILBOX_ADDRESS,
    },
    "orchard": {
        "rpc_url": "https://orchard.rpc.quai.network",
        "ws_url": "wss://orchard.rpc.quai.network",
        "mailbox_address": MAILBOX_ADDRESS,
    },
    "local": {
        "rpc_url": "memory://",
        "ws_url": "",
        "mailbox_address": "0x0000000000000000000000000000000000000000",
    },
}

PROFILE = os.getenv("QIAGENT_PROFILE", "default")

PROFILES: Dict[str, Dict[str, str]] = {
    "default": {
        "QIAGENT_GAP_LIMIT": "20",
        "QIAGENT_SCAN_WORKERS": "3",
        "QIAGENT_POLLING_INTERVAL": "30",
    },
    "thorough": {
        "QIAGENT_GAP_LIMIT": "100",
        "QIAGENT_SCAN_WORKERS": "9",
        "QIAGENT_POLLING_INTERVAL": "60",
        "QIAGENT_REQUEST_TIMEOUT": "30",
    },
}


def apply_profile() -> None:
    profile = os.getenv("QIAGENT_PROFILE", PROFILE)
    if not profile:
        return
    settings = PROFILES.get(profile)
    if not settings:
        return
    for key, value in settings.items():
        os.environ.setdefault(key, value)


@dataclass
class QiAgentConfig:
    network: str = "mainnet"
    rpc_url: Optional[str] = None
    ws_url: Optional[str] = None
    mailbox_address: Optional[str] = None
    polling_interval: float = 30.0
    default_zone: Zone = Zone.CYPRUS1
    gap_limit: int = 20
    scan_workers: int = 3
    request_timeout: float = 10.0
    notify_timeout: float = 120.0
    retry_failed_channels: bool = True

    def __post_init__(self):
        self.default_zone = parse_zone(self.default_zone)

    def to_dict(self) -> Dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["default_zone"] = self.default_zone.value
        return data


_ENV_OVERRIDES = {
    "network": ("QIAGENT_NETWORK", str),
    "rpc_url": ("QIAGENT_RPC_URL", str),
    "ws_url": ("QIAGENT_WS_URL", str),
    "mailbox_address": ("QIAGENT_MAILBOX_ADDRESS", str),
    "polling_interval": ("QIAGENT_POLLING_INTERVAL", float),
    "default_zone": ("QIAGENT_DEFAULT_ZONE", str),
    "gap_limit": ("QIAGENT_GAP_LIMIT", int),
    "scan_workers": ("QIAGENT_SCAN_WORKERS", int),
    "request_timeout": ("QIAGENT_REQUEST_TIMEOUT", float),
    "notify_timeout": ("QIAGENT_NOTIFY_TIMEOUT", float),
}


def resolve_config(config: Optional[QiAgentConfig] = None, **overrides) -> QiAgentConfig:
    """Return a copy of ``config`` with every unset field filled in.

    Explicit keyword overrides win, then fields set on ``config``, then
    ``QIAGENT_*`` environment variables (only for fields still at their
    default), then the network preset.
    """
    apply_profile()
    config = replace(config) if config is not None else QiAgentConfig()
    defaults = QiAgentConfig()

    for name, (env_key, cast) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_key)
        if raw is None or raw == "":
            continue
        if getattr(config, name) != getattr(defaults, name):
            continue
        try:
            setattr(config, name, cast(raw))
        except ValueError:
            raise ValueError(f"Invalid value for {env_key}: {raw!r}")

    retry = os.getenv("QIAGENT_RETRY_FAILED_CHANNELS")
    if retry is not None and config.retry_failed_channels == defaults.retry_failed_channels:
        config.retry_failed_channels = retry.strip().lower() not in ("0", "false", "no", "off")

    for name, value in overrides.items():
        if not hasattr(config, name):
            raise TypeError(f"Unknown config field: {name}")
        setattr(config, name, value)

    if config.network not in NETWORK_CONFIGS:
        raise ValueError(f"Unknown network: {config.network!r}")
    preset = NETWORK_CONFIGS[config.network]
    if not config.rpc_url:
        config.rpc_url = preset["rpc_url"]
    if not config.ws_url:
        config.ws_url = preset["ws_url"]
    if not config.mailbox_address:
        config.mailbox_address = preset["mailbox_address"]

    config.default_zone = parse_zone(config.default_zone)
    if config.gap_limit < 1:
        raise ValueError("gap_limit must be at least 1")
    if config.polling_interval <= 0:
        raise ValueError("polling_interval must be positive")
    return config
