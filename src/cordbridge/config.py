# Cordbridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Cordbridge.
#
# Cordbridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Provisioning API configuration.

The config lives in a single YAML file next to the bridge's other state.
Unknown keys are ignored and missing sections fall back to defaults, so
an empty or absent file yields a working local-development setup.

Config location: ~/.cordbridge/config.yaml  (override with CORDBRIDGE_HOME)
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("cordbridge.config")

# ---------------------------------------------------------------------------
# Default paths
# ---------------------------------------------------------------------------
_CORDBRIDGE_HOME = Path(os.environ.get("CORDBRIDGE_HOME", Path.home() / ".cordbridge"))
DEFAULT_CONFIG_PATH = _CORDBRIDGE_HOME / "config.yaml"

# Subprotocol identifier negotiated on the login WebSocket. Clients embed
# the shared secret as "<protocol>-<secret>" in their offer list.
DEFAULT_PROTOCOL = "com.gitlab.beeper.discord"
DEFAULT_PREFIX = "/_matrix/provision/v1"

# Sentinel secrets understood by load_config()
SECRET_GENERATE = "generate"
SECRET_DISABLE = "disable"


@dataclass
class ProvisioningConfig:
    """Full provisioning API configuration."""

    # HTTP listener
    host: str = "127.0.0.1"
    port: int = 29350

    # Route prefix for every provisioning endpoint
    prefix: str = DEFAULT_PREFIX

    # Shared secret compared against the caller-supplied token
    shared_secret: str = SECRET_DISABLE

    # WebSocket subprotocol identifier for the login handshake
    protocol: str = DEFAULT_PROTOCOL

    # Wall-clock limit for one login handshake, in seconds (0 = none)
    login_timeout: float = 300.0

    # Advisory display timeout sent with every delivery code, in seconds
    code_timeout: int = 120

    # Logging
    log_level: str = "INFO"
    log_directory: str | None = None

    # "module:attr" import paths for the pluggable collaborators
    user_store: str = "cordbridge.bridge.memory:MemoryUserStore"
    remote_auth: str | None = None

    @property
    def enabled(self) -> bool:
        """Provisioning is off when the secret is empty or "disable"."""
        return bool(self.shared_secret) and self.shared_secret != SECRET_DISABLE

    @property
    def login_path(self) -> str:
        return self.prefix.rstrip("/") + "/login"


def load_config(path: Path | str | None = None) -> ProvisioningConfig:
    """Load provisioning configuration from a YAML file.

    If the file does not exist, returns the default config (provisioning
    disabled). A shared secret of "generate" is replaced with a random
    token and written back so the value survives restarts.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.info("No config at %s -- using defaults (provisioning disabled)", config_path)
        return ProvisioningConfig()

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            logger.warning("Invalid config (not a dict) -- using defaults")
            return ProvisioningConfig()
        config = _parse_config(raw)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error("Failed to load config: %s -- using defaults", exc)
        return ProvisioningConfig()

    if config.shared_secret == SECRET_GENERATE:
        config.shared_secret = secrets.token_urlsafe(48)
        save_config(config, config_path)
        logger.info("Generated a new provisioning shared secret in %s", config_path)
    return config


def save_config(config: ProvisioningConfig, path: Path | str | None = None) -> None:
    """Save provisioning configuration to a YAML file."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "server": {
            "host": config.host,
            "port": config.port,
        },
        "provisioning": {
            "prefix": config.prefix,
            "shared_secret": config.shared_secret,
            "protocol": config.protocol,
            "login_timeout": config.login_timeout,
            "code_timeout": config.code_timeout,
        },
        "logging": {
            "level": config.log_level,
            "directory": config.log_directory,
        },
        "backends": {
            "user_store": config.user_store,
            "remote_auth": config.remote_auth,
        },
    }
    config_path.write_text(
        yaml.dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8"
    )
    logger.info("Saved config to %s", config_path)


def _parse_config(raw: dict) -> ProvisioningConfig:
    """Parse raw YAML dict into ProvisioningConfig."""
    server = raw.get("server") or {}
    prov = raw.get("provisioning") or {}
    log_section = raw.get("logging") or {}
    backends = raw.get("backends") or {}

    defaults = ProvisioningConfig()
    prefix = str(prov.get("prefix", defaults.prefix)) or "/"
    if not prefix.startswith("/"):
        prefix = "/" + prefix

    return ProvisioningConfig(
        host=server.get("host", defaults.host),
        port=int(server.get("port", defaults.port)),
        prefix=prefix,
        shared_secret=str(prov.get("shared_secret") or SECRET_DISABLE),
        protocol=prov.get("protocol", defaults.protocol),
        login_timeout=float(prov.get("login_timeout", defaults.login_timeout) or 0),
        code_timeout=int(prov.get("code_timeout", defaults.code_timeout)),
        log_level=str(log_section.get("level", defaults.log_level)).upper(),
        log_directory=log_section.get("directory"),
        user_store=backends.get("user_store") or defaults.user_store,
        remote_auth=backends.get("remote_auth") or None,
    )
