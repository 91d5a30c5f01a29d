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
"""Channel primitives shared by the login handshake and remote-auth clients.

CancelToken   -- one-shot cancellation with a recorded reason
CodeChannel   -- closeable stream of delivery codes
"""

from __future__ import annotations

import asyncio
from collections import deque


class CancelToken:
    """
    One-shot cancellation signal for a handshake.

    The first cancel() wins and its reason is kept; later calls are
    no-ops. Safe to call from callbacks on the owning event loop.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def cancel_after(self, delay: float, reason: str = "timed out") -> asyncio.TimerHandle:
        """Schedule cancel(reason) after delay seconds on the running loop."""
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self.cancel, reason)


class CodeChannel:
    """
    Closeable stream of delivery codes.

    receive() returns (code, True) for each sent code in order and
    (None, False) once the channel is closed and drained. Closing is
    idempotent; sending on a closed channel raises RuntimeError.
    """

    def __init__(self):
        self._buffer: deque[str] = deque()
        self._readable = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, code: str) -> None:
        if self._closed:
            raise RuntimeError("send on closed code channel")
        self._buffer.append(code)
        self._readable.set()

    def close(self) -> None:
        self._closed = True
        self._readable.set()

    def receive_nowait(self) -> tuple[str | None, bool]:
        """Like receive(), but raises asyncio.QueueEmpty instead of waiting."""
        if self._buffer:
            code = self._buffer.popleft()
            if not self._buffer and not self._closed:
                self._readable.clear()
            return code, True
        if self._closed:
            return None, False
        raise asyncio.QueueEmpty

    async def receive(self) -> tuple[str | None, bool]:
        while True:
            try:
                return self.receive_nowait()
            except asyncio.QueueEmpty:
                await self._readable.wait()

    async def wait_readable(self) -> None:
        """Suspend until receive_nowait() would not raise. Consumes nothing."""
        await self._readable.wait()
