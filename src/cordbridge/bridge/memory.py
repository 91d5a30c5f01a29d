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
Cordbridge -- In-memory bridge users

Process-local User and UserStore used by the development server and the
test suite. Connection state is simulated: connect() just stamps
heartbeat times, and update() snapshots identity fields into the store.
"""

from __future__ import annotations

import re
import threading
from datetime import datetime, timezone
from typing import Any

from cordbridge.bridge.user import (
    BridgeError,
    DiscordSession,
    GuildInfo,
    GuildNotFoundError,
    User,
    UserStore,
)

# @localpart:server.name
_MXID_RE = re.compile(r"^@[^:\s]+:[^\s]+$")


class MemoryUser(User):
    """A User whose Discord side lives entirely in memory."""

    def __init__(self, mxid: str, store: MemoryUserStore | None = None, management_room: str = ""):
        super().__init__(mxid, management_room=management_room)
        self._store = store
        self._token = ""

    @property
    def token(self) -> str:
        return self._token

    def logged_in(self) -> bool:
        return bool(self._token)

    def connected(self) -> bool:
        return self.session is not None

    def connect(self) -> None:
        with self.lock:
            if not self._token:
                raise BridgeError("no Discord token stored")
            now = datetime.now(timezone.utc)
            self.session = DiscordSession(last_heartbeat_sent=now, last_heartbeat_ack=now)

    def disconnect(self) -> None:
        with self.lock:
            if self.session is None:
                raise BridgeError("not connected")
            self.session = None

    def login(self, token: str) -> None:
        with self.lock:
            self._token = token
            self.update()
        self.connect()

    def logout(self) -> None:
        with self.lock:
            self.session = None
            self._token = ""
            self.id = ""
            self.update()

    def update(self) -> None:
        if self._store is not None:
            self._store.save(self)

    def add_guild(self, guild_id: str, name: str = "", bridged: bool = False) -> GuildInfo:
        """Register a guild as if Discord had reported membership."""
        guild = GuildInfo(guild_id=guild_id, name=name, bridged=bridged)
        with self.guilds_lock:
            self._guilds[guild_id] = guild
        return guild

    def bridge_guild(self, guild_id: str, everything: bool) -> None:
        with self.guilds_lock:
            guild = self._guilds.get(guild_id)
            if guild is None:
                raise GuildNotFoundError(f"guild {guild_id} not found")
            guild.bridged = True
            guild.join_entire = everything

    def unbridge_guild(self, guild_id: str) -> None:
        with self.guilds_lock:
            guild = self._guilds.get(guild_id)
            if guild is None:
                raise GuildNotFoundError(f"guild {guild_id} not found")
            guild.bridged = False
            guild.join_entire = False


class MemoryUserStore(UserStore):
    """
    Lazily creates a MemoryUser for every well-formed MXID.

    Persisted identity snapshots (what update() writes) are kept in
    `saved` so tests can tell committed state from in-flight state.
    """

    def __init__(self):
        self._users: dict[str, MemoryUser] = {}
        self._lock = threading.Lock()
        self.saved: dict[str, dict[str, Any]] = {}

    def get_by_mxid(self, mxid: str) -> MemoryUser | None:
        if not mxid or not _MXID_RE.match(mxid):
            return None
        with self._lock:
            user = self._users.get(mxid)
            if user is None:
                user = MemoryUser(mxid, store=self)
                self._users[mxid] = user
            return user

    def save(self, user: MemoryUser) -> None:
        with self._lock:
            self.saved[user.mxid] = {
                "id": user.id,
                "logged_in": user.logged_in(),
                "management_room": user.management_room,
            }
