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
Cordbridge -- Shared API Utilities

Pydantic response models and the caller dependency shared across all
route modules.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Query, Request
from pydantic import BaseModel

from cordbridge.api.errors import NotFoundError
from cordbridge.bridge.user import User, UserStore

logger = logging.getLogger("cordbridge.api")


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class StatusResponse(BaseModel):
    success: bool = True
    status: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    errcode: str


class ConnectionInfo(BaseModel):
    last_heartbeat_ack: Optional[str] = None
    last_heartbeat_sent: Optional[str] = None


class GuildEntry(BaseModel):
    name: str
    id: str
    bridged: bool


class HealthResponse(BaseModel):
    status: str
    version: str


# =============================================================================
# CALLER RESOLUTION
# =============================================================================

def resolve_user(store: UserStore, user_id: str) -> User:
    """Look up the caller, raising NotFoundError for unknown MXIDs."""
    user = store.get_by_mxid(user_id) if user_id else None
    if user is None:
        raise NotFoundError(f"Unknown user {user_id!r}" if user_id else "Missing user_id parameter")
    return user


def get_caller(request: Request, user_id: str = Query(default="")) -> User:
    """FastAPI dependency: the User named by the user_id query parameter.

    Handlers receive the caller as an explicit argument; the credential
    gate has already checked the shared secret by the time this runs.
    """
    return resolve_user(request.app.state.user_store, user_id)
