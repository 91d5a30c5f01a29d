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
"""Cordbridge -- Session Routes (ping / disconnect / reconnect / logout)."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from cordbridge.api._shared import ConnectionInfo, ErrorResponse, StatusResponse, get_caller
from cordbridge.api.errors import NotFoundError, StateConflictError, UpstreamError
from cordbridge.bridge.user import User

logger = logging.getLogger("cordbridge.api.session")

router = APIRouter()

_CONFLICT = {409: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@router.get("/ping")
def ping(user: User = Depends(get_caller)):
    """Snapshot of the caller's login and gateway connection state."""
    discord = {
        "logged_in": user.logged_in(),
        "connected": user.connected(),
        "conn": None,
    }

    with user.lock:
        if user.id:
            discord["id"] = user.id

        session = user.session
        if session is not None:
            with session.lock:
                discord["conn"] = ConnectionInfo(
                    last_heartbeat_ack=_timestamp(session.last_heartbeat_ack),
                    last_heartbeat_sent=_timestamp(session.last_heartbeat_sent),
                ).model_dump()

        return {
            "discord": discord,
            "management_room": user.management_room,
            "mxid": user.mxid,
        }


@router.post("/disconnect", response_model=StatusResponse, responses=_CONFLICT)
def disconnect(user: User = Depends(get_caller)):
    if not user.connected():
        raise StateConflictError("You're not connected to discord", "not connected")

    try:
        user.disconnect()
    except Exception as e:
        logger.warning("Failed to disconnect %s: %s", user.mxid, e)
        raise UpstreamError("Failed to disconnect from discord", "failed to disconnect") from e

    return StatusResponse(status="Disconnected from Discord")


@router.post("/reconnect", response_model=StatusResponse, responses=_CONFLICT)
def reconnect(user: User = Depends(get_caller)):
    if user.connected():
        raise StateConflictError("You're already connected to discord", "already connected")

    try:
        user.connect()
    except Exception as e:
        logger.warning("Failed to connect %s: %s", user.mxid, e)
        raise UpstreamError("Failed to connect to discord", "failed to connect") from e

    return StatusResponse(status="Connected to Discord")


@router.post(
    "/logout",
    response_model=StatusResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def logout(user: User = Depends(get_caller), force: str = Query(default="")):
    """End the Discord session.

    force defaults to true; only an explicit `force=false` makes internal
    errors (and a missing live session) fail the request.
    """
    forced = force.lower() != "false"

    if not user.logged_in():
        raise NotFoundError("You're not logged in", "not logged in")

    if user.session is None:
        if forced:
            return StatusResponse(status="Logged out successfully.")
        raise NotFoundError("You're not logged in", "not logged in")

    try:
        user.logout()
    except Exception as e:
        logger.warning("Error while logging out %s: %s", user.mxid, e)
        if not forced:
            raise UpstreamError(f"Unknown error while logging out: {e}", str(e)) from e

    return StatusResponse(status="Logged out successfully.")
