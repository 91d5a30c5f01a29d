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
Cordbridge -- Remote auth client interface

Discord's remote auth lets a logged-in mobile client approve a login by
scanning a QR code. The client that speaks that protocol is outside this
package; the provisioning API only needs the two calls below.

LIFECYCLE:
  1. dial(cancel, codes, done) connects and returns once the handshake is
     running in the background. Raises RemoteAuthError if it cannot connect.
  2. Every fresh QR payload is sent on `codes`; each one supersedes the last.
  3. When the handshake ends (approved, rejected or broken) the client sets
     `done` and closes `codes`.
  4. result() returns the RemoteAuthUser or raises RemoteAuthError.
  5. Once `cancel` fires, the client stops and releases its connection.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from cordbridge.provisioning.channels import CancelToken, CodeChannel


class RemoteAuthError(Exception):
    """The remote-auth handshake could not connect or did not complete."""


@dataclass(frozen=True)
class RemoteAuthUser:
    """Identity and credential returned by a completed handshake."""
    user_id: str
    username: str = ""
    discriminator: str = ""
    avatar_hash: str = ""
    token: str = ""


class RemoteAuthClient(ABC):
    """One remote-auth handshake with Discord. Not reusable."""

    @abstractmethod
    async def dial(self, cancel: CancelToken, codes: CodeChannel, done: asyncio.Event) -> None:
        ...

    @abstractmethod
    def result(self) -> RemoteAuthUser:
        ...


RemoteAuthFactory = Callable[[], RemoteAuthClient]


def unavailable_remote_auth() -> RemoteAuthClient:
    """Factory used when no remote-auth client is configured."""
    raise RemoteAuthError("no remote auth client configured")
