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
Cordbridge -- Duplex channel for the login WebSocket

Wraps a Starlette WebSocket for the lifetime of one login handshake:

  - accepts the upgrade, negotiating the bridge's protocol identifier as
    subprotocol when the client offered it (any Origin is accepted; the
    credential gate has already authorized the caller)
  - runs a background reader that drains inbound frames solely so that a
    peer close is noticed, then fires the on_close callback
  - closes the socket on every exit path when used as a context manager
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable

from starlette.responses import JSONResponse
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from cordbridge.api.errors import ProvisioningError, TransportError
from cordbridge.core.logging import BridgeLogger

logger = logging.getLogger("cordbridge.api.duplex")

# Policy violation; used when the server cannot send a denial response
CLOSE_POLICY_VIOLATION = 1008
# Abnormal closure, reported when a send fails without a close frame
CLOSE_ABNORMAL = 1006


async def deny(websocket: WebSocket, exc: ProvisioningError) -> None:
    """Refuse a WebSocket upgrade with exc's status and error body."""
    response = JSONResponse(status_code=exc.status_code, content=exc.body())
    if "websocket.http.response" in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(response)
    else:
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=exc.message[:120])


class DuplexChannel:
    """One accepted login WebSocket plus its close-watching reader task."""

    def __init__(
        self,
        websocket: WebSocket,
        protocol: str,
        on_close: Callable[[int], None] | None = None,
        log: BridgeLogger | None = None,
        mxid: str = "",
    ):
        self.websocket = websocket
        self.protocol = protocol
        self._on_close = on_close
        self._log = log
        self._mxid = mxid
        self._reader: asyncio.Task | None = None
        self._closed = False
        self._peer_closed = False
        self._close_notified = False

    async def open(self) -> str | None:
        """Accept the upgrade and start the reader. Returns the subprotocol."""
        offered = self.websocket.scope.get("subprotocols") or []
        subprotocol = self.protocol if self.protocol in offered else None
        try:
            await self.websocket.accept(subprotocol=subprotocol)
        except (RuntimeError, OSError) as exc:
            raise TransportError(f"failed to upgrade connection to websocket: {exc}") from exc

        self._reader = asyncio.create_task(self._drain())
        if self._log:
            self._log.ws_connect(mxid=self._mxid, subprotocol=subprotocol)
        return subprotocol

    async def _drain(self) -> None:
        # Inbound payloads carry no commands; read only to observe the close
        code = 1000
        try:
            while True:
                message = await self.websocket.receive()
                if message["type"] == "websocket.disconnect":
                    code = message.get("code", 1000)
                    break
        except (RuntimeError, WebSocketDisconnect) as exc:
            code = getattr(exc, "code", CLOSE_ABNORMAL)
        self._peer_gone(code)

    def _peer_gone(self, code: int) -> None:
        self._peer_closed = True
        if self._close_notified:
            return
        self._close_notified = True
        if self._log:
            self._log.ws_disconnect(mxid=self._mxid, code=code)
        logger.debug("Login websocket closed (%d), cancelling login", code)
        if self._on_close is not None:
            self._on_close(code)

    async def send_json(self, message: dict[str, Any]) -> bool:
        """Write one JSON text frame. Returns False if the peer is gone."""
        if self._closed or self._peer_closed:
            return False
        try:
            await self.websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.debug("Failed to send on login websocket: %s", exc)
            self._peer_gone(getattr(exc, "code", CLOSE_ABNORMAL))
            return False
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the socket (if still open) and stop the reader. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if (
            not self._peer_closed
            and self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        ):
            try:
                await self.websocket.close(code=code, reason=reason)
            except (RuntimeError, OSError, WebSocketDisconnect) as exc:
                logger.debug("Error closing websocket: %s", exc)

        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None

    async def __aenter__(self) -> DuplexChannel:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
