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
Cordbridge -- Credential gate (shared-secret auth + access log)

Pure ASGI middleware guarding every http and websocket scope under the
provisioning prefix (the health route is never gated, even under a
root prefix):

- Token from `Authorization: Bearer <secret>`; for the login WebSocket,
  whose clients cannot set headers during the upgrade, from the
  `Sec-WebSocket-Protocol` offer `<protocol>-<secret>`.
- Exact match against the configured shared secret, else 403 M_FORBIDDEN
  and nothing downstream runs.
- After the wrapped app returns (or raises), one access-log line with
  method, path, caller, duration and final status.

ASGI messages are forwarded untouched, so the WebSocket upgrade takes
over the connection exactly as it would without the gate.
"""

from __future__ import annotations

import logging
import secrets
import time
from urllib.parse import parse_qs

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from starlette.websockets import WebSocket

from cordbridge.api.duplex import deny
from cordbridge.api.errors import AuthorizationError
from cordbridge.api.routes.health import HEALTH_PATH
from cordbridge.core.logging import BridgeLogger

logger = logging.getLogger("cordbridge.api.middleware")

BEARER_PREFIX = "Bearer "


def extract_token(headers: Headers, path: str, protocol: str, login_path: str) -> str:
    """Pull the caller-supplied secret from the request headers."""
    auth = headers.get("authorization", "")

    # Login clients smuggle the secret through the subprotocol offer list
    if not auth and path == login_path:
        marker = protocol + "-"
        for part in headers.get("sec-websocket-protocol", "").split(","):
            part = part.strip()
            if part.startswith(marker):
                return part[len(marker):]
        return ""

    if auth.startswith(BEARER_PREFIX):
        auth = auth[len(BEARER_PREFIX):]
    return auth


class CredentialGateMiddleware:
    """Rejects callers without the shared secret and logs the rest."""

    def __init__(
        self,
        app: ASGIApp,
        shared_secret: str,
        prefix: str,
        protocol: str,
        login_path: str,
        log: BridgeLogger | None = None,
    ):
        self.app = app
        self._secret = shared_secret.encode("utf-8")
        self._root = prefix.rstrip("/")
        self._protocol = protocol
        self._login_path = login_path
        self._log = log

    def _guards(self, path: str) -> bool:
        if path == HEALTH_PATH:
            return False
        return path == self._root or path.startswith(self._root + "/")

    def _authorized(self, token: str) -> bool:
        # An empty configured secret never authorizes anything
        return bool(self._secret) and secrets.compare_digest(token.encode("utf-8"), self._secret)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket") or not self._guards(scope["path"]):
            await self.app(scope, receive, send)
            return

        path = scope["path"]
        token = extract_token(Headers(scope=scope), path, self._protocol, self._login_path)
        if not self._authorized(token):
            client = scope.get("client")
            source = client[0] if client else "unknown"
            if self._log:
                self._log.warn("Provisioning", "Unauthorized request", path=path, client=source)
            else:
                logger.warning("Unauthorized request to %s from %s", path, source)
            await self._reject(scope, receive, send)
            return

        query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
        mxid = query.get("user_id", [""])[0]
        method = scope["method"] if scope["type"] == "http" else "WS"
        status: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            kind = message["type"]
            if kind in ("http.response.start", "websocket.http.response.start"):
                status = message["status"]
            elif kind == "websocket.accept":
                status = 101
            elif kind == "websocket.close" and status is None:
                status = 403
            await send(message)

        start = time.monotonic()
        failed = False
        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            failed = True
            raise
        finally:
            duration = time.monotonic() - start
            final = status if status is not None else (500 if failed else 200)
            if self._log:
                self._log.http_request(method, path, status=final, duration=duration, mxid=mxid)
            else:
                logger.info(
                    "%s %s from %s took %.2f seconds and returned status %d",
                    method, path, mxid, duration, final,
                )

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        exc = AuthorizationError("Invalid auth token")
        if scope["type"] == "websocket":
            await deny(WebSocket(scope, receive, send), exc)
            return
        response = JSONResponse(status_code=exc.status_code, content=exc.body())
        await response(scope, receive, send)
