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
Cordbridge -- Login Route (QR-code remote auth over WebSocket)

Peer messages:
    {"code": "<qr payload>", "timeout": 120}              repeatable
    {"success": true, "id": "<discord user id>"}          terminal
    {"success": false, "error": "...", "errcode": "..."}  terminal

The socket is always closed after the terminal message, so clients can
treat "connection closed" as "handshake over".
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, WebSocket
from starlette.concurrency import run_in_threadpool

from cordbridge.api._shared import resolve_user
from cordbridge.api.duplex import DuplexChannel, deny
from cordbridge.api.errors import ProvisioningError, TransportError
from cordbridge.provisioning.channels import CancelToken
from cordbridge.provisioning.handshake import LoginHandshake

logger = logging.getLogger("cordbridge.api.login")

router = APIRouter()


@router.websocket("/login")
async def login(websocket: WebSocket, user_id: str = Query(default="")):
    state = websocket.app.state
    config = state.config

    try:
        user = await run_in_threadpool(resolve_user, state.user_store, user_id)
    except ProvisioningError as e:
        await deny(websocket, e)
        return

    cancel = CancelToken()
    channel = DuplexChannel(
        websocket,
        protocol=config.protocol,
        on_close=lambda code: cancel.cancel("peer closed"),
        log=state.log,
        mxid=user.mxid,
    )

    try:
        async with channel:
            handshake = LoginHandshake(
                user,
                channel,
                state.remote_auth_factory,
                cancel,
                registry=state.handshakes,
                code_timeout=config.code_timeout,
                login_timeout=config.login_timeout,
                log=state.log,
            )
            await handshake.run()
    except TransportError as e:
        logger.error("Failed to upgrade connection to websocket: %s", e)
