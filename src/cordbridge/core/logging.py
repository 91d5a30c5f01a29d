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
"""
Cordbridge -- Live Provisioning Logger

Every provisioning request and login handshake is recorded as one
component-tagged line, so an operator can tail the log and follow a
login from upgrade to terminal message.

FORMAT:
    TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {structured fields}

OUTPUT:
    stderr                                  (always)
    <log_directory>/provisioning.log        (when a directory is configured)

USAGE:
    from cordbridge.core.logging import get_logger
    log = get_logger()
    log.http_request("POST", "/_matrix/provision/v1/reconnect", status=200, duration=0.01)
    log.login_event("@u:server", "succeeded", discord_id="1234")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path

# =============================================================================
# CONSTANTS
# =============================================================================

MAX_LOG_FILE_BYTES = 10 * 1024 * 1024  # 10 MB per file
LOG_BACKUP_COUNT = 10
LOG_FILE_NAME = "provisioning.log"
LIVE_LOGGER_NAME = "cordbridge.live"


# =============================================================================
# CUSTOM FORMATTER -- human-readable + structured
# =============================================================================


class BridgeLogFormatter(logging.Formatter):
    """
    Format: TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {structured fields}

    Example:
    2026-02-09T17:30:45.123Z | HTTP  | Provisioning | POST /_matrix/provision/v1/reconnect -> 200 | mxid="@u:server" duration=0.012
    2026-02-09T17:30:46.500Z | LOGIN | Login        | Login succeeded | mxid="@u:server" discord_id="1234"
    """

    LEVEL_WIDTH = 5
    COMPONENT_WIDTH = 12

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.fromtimestamp(record.created, timezone.utc)
        ts = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

        level = getattr(record, "bridge_level", record.levelname)
        component = getattr(record, "component", "System")
        message = record.getMessage()

        fields = getattr(record, "fields", {})
        field_str = ""
        if fields:
            parts = []
            for k, v in fields.items():
                if isinstance(v, str):
                    parts.append(f'{k}="{v}"')
                elif isinstance(v, float):
                    parts.append(f"{k}={v:.3f}")
                else:
                    parts.append(f"{k}={v}")
            field_str = " | " + " ".join(parts)

        return (
            f"{ts} | {level:<{self.LEVEL_WIDTH}} | "
            f"{component:<{self.COMPONENT_WIDTH}} | {message}{field_str}"
        )


# =============================================================================
# BRIDGE LOGGER
# =============================================================================


class BridgeLogger:
    """
    Component-tagged logger for the provisioning API.

    Writes to stderr and, when log_directory is given, to a rotating
    provisioning.log in that directory. Instances are cheap; tests create
    their own with a custom logger name to capture output in isolation.
    """

    def __init__(
        self,
        log_directory: str | Path | None = None,
        level: str = "INFO",
        name: str = LIVE_LOGGER_NAME,
    ):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._logger.propagate = False

        # Remove existing handlers to avoid duplicates
        self._logger.handlers.clear()

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(BridgeLogFormatter())
        self._logger.addHandler(stderr_handler)

        self._log_file: Path | None = None
        if log_directory:
            log_dir = Path(log_directory).expanduser()
            log_dir.mkdir(parents=True, exist_ok=True)
            self._log_file = log_dir / LOG_FILE_NAME
            file_handler = logging.handlers.RotatingFileHandler(
                str(self._log_file),
                maxBytes=MAX_LOG_FILE_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setFormatter(BridgeLogFormatter())
            self._logger.addHandler(file_handler)

        self._request_count = 0

    @property
    def logger(self) -> logging.Logger:
        """The underlying stdlib logger (tests attach handlers here)."""
        return self._logger

    @property
    def log_file(self) -> str | None:
        return str(self._log_file) if self._log_file else None

    def _log(self, level: int, bridge_level: str, component: str, message: str, **fields):
        """Core log method."""
        if not self._logger.isEnabledFor(level):
            return
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )
        record.component = component
        record.bridge_level = bridge_level
        record.fields = fields
        self._logger.handle(record)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def warn(self, component: str, message: str, **fields):
        self._log(logging.WARNING, "WARN", component, message, **fields)

    def http_request(
        self, method: str, path: str, status: int = 200, duration: float = 0.0, **fields
    ):
        """Log one gated provisioning request."""
        fields.update(method=method, path=path, status=status, duration=duration)
        level = logging.INFO if status < 400 else logging.WARNING
        self._log(level, "HTTP", "Provisioning", f"{method} {path} -> {status}", **fields)
        self._request_count += 1

    def ws_connect(self, mxid: str = "", subprotocol: str | None = None, **fields):
        """Log an accepted login WebSocket."""
        fields.update(mxid=mxid, subprotocol=subprotocol or "")
        self._log(logging.INFO, "WS", "WebSocket", "Login socket opened", **fields)

    def ws_disconnect(self, mxid: str = "", code: int = 1000, **fields):
        """Log a peer-initiated close of the login WebSocket."""
        fields.update(mxid=mxid, code=code)
        self._log(logging.DEBUG, "WS", "WebSocket", "Login socket closed by peer", **fields)

    def login_event(self, mxid: str, outcome: str, **fields):
        """Log a login handshake transition or terminal outcome."""
        fields.update(mxid=mxid, outcome=outcome)
        level = logging.ERROR if outcome == "failed" else logging.INFO
        self._log(level, "LOGIN", "Login", f"Login {outcome}", **fields)

    def server_start(self, host: str = "", port: int = 0, **fields):
        fields.update(host=host, port=port)
        self._log(logging.INFO, "BOOT", "Server", "Provisioning API started", **fields)

    def server_stop(self, **fields):
        fields.update(requests_served=self._request_count)
        self._log(logging.INFO, "HALT", "Server", "Provisioning API stopped", **fields)


# =============================================================================
# SINGLETON
# =============================================================================

_logger_instance: BridgeLogger | None = None


def get_logger(log_directory: str | Path | None = None, level: str = "INFO") -> BridgeLogger:
    """Get or create the process-wide BridgeLogger.

    The arguments only take effect on the first call.
    """
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = BridgeLogger(log_directory=log_directory, level=level)
    return _logger_instance
