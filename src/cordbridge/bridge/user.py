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
Cordbridge -- Bridge user interface

A User is one Matrix account that the bridge puppets on Discord. The
provisioning API never creates users; it looks them up through a
UserStore and calls exactly one operation per request.

LOCKING:
  - user.lock guards the identity fields (id, management_room, session).
    Callers hold it only for short snapshots or commits, never across
    network I/O.
  - session.lock guards the heartbeat timestamps of a live connection.
  - user.guilds_lock guards the guild table.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


class BridgeError(Exception):
    """Raised by User operations that fail on the bridge or Discord side."""


class GuildNotFoundError(BridgeError):
    """The user is not a member of the requested guild."""


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class GuildInfo:
    """One Discord guild visible to a user."""
    guild_id: str
    name: str = ""
    bridged: bool = False
    join_entire: bool = False        # Bridge every channel, not just active ones


@dataclass
class DiscordSession:
    """Live gateway connection state for a logged-in user."""
    last_heartbeat_sent: datetime | None = None
    last_heartbeat_ack: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


# =============================================================================
# ABSTRACT USER
# =============================================================================

class User(ABC):
    """
    A bridge account.

    Concrete bridges implement:
      - logged_in() / connected()   -- state predicates
      - connect() / disconnect()    -- toggle the gateway connection
      - login(token) / logout()     -- start or end the Discord session
      - update()                    -- persist identity fields
      - bridge_guild() / unbridge_guild()
    """

    def __init__(self, mxid: str, management_room: str = ""):
        self.mxid = mxid
        self.id = ""                              # Discord user ID once logged in
        self.management_room = management_room
        self.session: DiscordSession | None = None
        self.lock = threading.Lock()
        self.guilds_lock = threading.Lock()
        self._guilds: dict[str, GuildInfo] = {}

    @abstractmethod
    def logged_in(self) -> bool:
        """True once a Discord token is stored for this user."""

    @abstractmethod
    def connected(self) -> bool:
        """True while the gateway connection is up."""

    @abstractmethod
    def connect(self) -> None:
        ...

    @abstractmethod
    def disconnect(self) -> None:
        ...

    @abstractmethod
    def login(self, token: str) -> None:
        """Store the token and open the gateway connection."""

    @abstractmethod
    def logout(self) -> None:
        ...

    @abstractmethod
    def update(self) -> None:
        """Persist the identity fields. Callers hold user.lock."""

    @abstractmethod
    def bridge_guild(self, guild_id: str, everything: bool) -> None:
        """Bridge a guild; raises GuildNotFoundError for unknown IDs."""

    @abstractmethod
    def unbridge_guild(self, guild_id: str) -> None:
        """Unbridge a guild; raises GuildNotFoundError for unknown IDs."""

    def list_guilds(self) -> list[GuildInfo]:
        """Snapshot of the guild table, taken under guilds_lock."""
        with self.guilds_lock:
            return [
                GuildInfo(g.guild_id, g.name, g.bridged, g.join_entire)
                for g in self._guilds.values()
            ]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.mxid}>"


class UserStore(ABC):
    """Resolves bridge accounts by Matrix user ID."""

    @abstractmethod
    def get_by_mxid(self, mxid: str) -> User | None:
        """Return the user for mxid, or None if it is not a valid bridge user."""
