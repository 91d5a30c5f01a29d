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
"""Cordbridge -- Guild Routes (list / bridge / unbridge / joinentire)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from cordbridge.api._shared import ErrorResponse, GuildEntry, get_caller
from cordbridge.api.errors import NotFoundError
from cordbridge.bridge.user import BridgeError, User

router = APIRouter(prefix="/guilds")

_NOT_FOUND = {404: {"model": ErrorResponse}}


@router.get("", response_model=list[GuildEntry])
def guilds_list(user: User = Depends(get_caller)):
    return [
        GuildEntry(name=guild.name, id=guild.guild_id, bridged=guild.bridged)
        for guild in user.list_guilds()
    ]


def _bridge(user: User, guild_id: str, everything: bool) -> Response:
    try:
        user.bridge_guild(guild_id, everything)
    except BridgeError as e:
        raise NotFoundError(str(e), "M_NOT_FOUND") from e
    return Response(status_code=201)


@router.post("/{guild_id}/bridge", status_code=201, responses=_NOT_FOUND)
def guilds_bridge(guild_id: str, user: User = Depends(get_caller)):
    return _bridge(user, guild_id, everything=False)


@router.post("/{guild_id}/joinentire", status_code=201, responses=_NOT_FOUND)
def guilds_join_entire(guild_id: str, user: User = Depends(get_caller)):
    """Bridge the guild and every one of its channels."""
    return _bridge(user, guild_id, everything=True)


@router.post("/{guild_id}/unbridge", status_code=204, responses=_NOT_FOUND)
def guilds_unbridge(guild_id: str, user: User = Depends(get_caller)):
    try:
        user.unbridge_guild(guild_id)
    except BridgeError as e:
        raise NotFoundError(str(e), "M_NOT_FOUND") from e
    return Response(status_code=204)
