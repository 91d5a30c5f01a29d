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
Cordbridge -- Login Handshake (QR-code remote auth)

One LoginHandshake drives one login attempt from dial to terminal outcome:

    IDLE -> DIALING -> AWAITING_COMPLETION -> SUCCEEDED | FAILED | CANCELLED

While awaiting completion, three independent sources are merged into a
single stream of tagged events (HandshakeEvents):

    CODE_RECEIVED        a fresh QR payload; relayed to the peer as
                         {"code": ..., "timeout": ...}
    CODE_CHANNEL_CLOSED  the client closed its code stream; no-op
    COMPLETED            the client finished; fetch result() and commit
    CANCELLED            peer closed the socket or the login timed out

Peer messages are written only from the handshake task, so every code
message precedes the single terminal message. Session state is touched
only on the success path, and user.lock is held only for the commit.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from starlette.concurrency import run_in_threadpool

from cordbridge.bridge.remoteauth import RemoteAuthClient, RemoteAuthFactory, RemoteAuthUser
from cordbridge.bridge.user import User
from cordbridge.core.logging import BridgeLogger
from cordbridge.provisioning.channels import CancelToken, CodeChannel

logger = logging.getLogger("cordbridge.provisioning.handshake")

DEFAULT_CODE_TIMEOUT = 120

# (human-readable error, errcode) pairs sent as terminal failure messages
ERR_ALREADY_LOGGED_IN = ("You're already logged into Discord", "already logged in")
ERR_LOGIN_IN_PROGRESS = ("A login is already in progress for this account", "login in progress")
ERR_CONNECTION = ("Failed to connect to Discord", "connection error")


class HandshakeState(str, enum.Enum):
    IDLE = "idle"
    DIALING = "dialing"
    AWAITING_COMPLETION = "awaiting_completion"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (HandshakeState.SUCCEEDED, HandshakeState.FAILED, HandshakeState.CANCELLED)


class EventKind(enum.Enum):
    CODE_RECEIVED = "code_received"
    CODE_CHANNEL_CLOSED = "code_channel_closed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class HandshakeEvent:
    kind: EventKind
    code: str | None = None


@dataclass(frozen=True)
class HandshakeOutcome:
    """Terminal value of a handshake."""
    state: HandshakeState
    user_id: str | None = None
    error: str | None = None
    errcode: str | None = None
    reason: str | None = None


class Peer(Protocol):
    """The provisioning client end of the duplex channel."""

    async def send_json(self, message: dict[str, Any]) -> bool:
        ...


# =============================================================================
# EVENT SOURCE -- code channel + completion + cancellation, merged
# =============================================================================

class HandshakeEvents:
    """
    Merges the three handshake sources into one awaitable event stream.

    Sources are polled without consuming anything until one is ready;
    when several are ready together, cancellation wins, then buffered
    codes (so every code precedes completion), then completion.
    """

    def __init__(self, codes: CodeChannel, done: asyncio.Event, cancel: CancelToken):
        self._codes = codes
        self._done = done
        self._cancel = cancel
        self._code_exhausted = False

    def _poll(self) -> HandshakeEvent | None:
        if self._cancel.cancelled:
            return HandshakeEvent(EventKind.CANCELLED)
        if not self._code_exhausted:
            try:
                code, ok = self._codes.receive_nowait()
            except asyncio.QueueEmpty:
                pass
            else:
                if not ok:
                    # A closed channel stays readable forever; stop polling it
                    self._code_exhausted = True
                    return HandshakeEvent(EventKind.CODE_CHANNEL_CLOSED)
                return HandshakeEvent(EventKind.CODE_RECEIVED, code=code)
        if self._done.is_set():
            return HandshakeEvent(EventKind.COMPLETED)
        return None

    async def next(self) -> HandshakeEvent:
        """Suspend until any source is ready and return its event."""
        while True:
            event = self._poll()
            if event is not None:
                return event
            await self._wait_any()

    async def _wait_any(self) -> None:
        waiters = [
            asyncio.ensure_future(self._cancel.wait()),
            asyncio.ensure_future(self._done.wait()),
        ]
        if not self._code_exhausted:
            waiters.append(asyncio.ensure_future(self._codes.wait_readable()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)


# =============================================================================
# ACTIVE HANDSHAKES -- one live login per caller
# =============================================================================

class HandshakeRegistry:
    """Thread-safe set of MXIDs with a handshake in flight."""

    def __init__(self):
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, mxid: str) -> bool:
        with self._lock:
            if mxid in self._active:
                return False
            self._active.add(mxid)
            return True

    def release(self, mxid: str) -> None:
        with self._lock:
            self._active.discard(mxid)


# =============================================================================
# LOGIN HANDSHAKE
# =============================================================================

class LoginHandshake:
    """
    Runs one QR-code login for `user`, reporting progress to `peer`.

    The handshake never raises for collaborator failures; they become a
    FAILED outcome plus one failure message to the peer. The caller owns
    the duplex channel and closes it once run() returns.
    """

    def __init__(
        self,
        user: User,
        peer: Peer,
        client_factory: RemoteAuthFactory,
        cancel: CancelToken,
        registry: HandshakeRegistry | None = None,
        code_timeout: int = DEFAULT_CODE_TIMEOUT,
        login_timeout: float = 0,
        log: BridgeLogger | None = None,
    ):
        self.user = user
        self.peer = peer
        self.cancel = cancel
        self._client_factory = client_factory
        self._registry = registry if registry is not None else HandshakeRegistry()
        self._code_timeout = code_timeout
        self._login_timeout = login_timeout
        self._log = log
        self._state = HandshakeState.IDLE
        self._outcome: HandshakeOutcome | None = None
        self._registered = False

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def outcome(self) -> HandshakeOutcome | None:
        return self._outcome

    async def run(self) -> HandshakeOutcome:
        """Drive the handshake to a terminal outcome."""
        timer = None
        if self._login_timeout > 0:
            timer = self.cancel.cancel_after(self._login_timeout, "timed out")
        try:
            return await self._run()
        finally:
            if timer is not None:
                timer.cancel()
            if self._registered:
                self._registry.release(self.user.mxid)
                self._registered = False

    async def _run(self) -> HandshakeOutcome:
        # Claim the slot first so a login committed meanwhile is seen below
        if not self._registry.acquire(self.user.mxid):
            return await self._fail(*ERR_LOGIN_IN_PROGRESS)
        self._registered = True
        if await run_in_threadpool(self.user.logged_in):
            return await self._fail(*ERR_ALREADY_LOGGED_IN)

        self._transition(HandshakeState.DIALING)
        logger.debug("Started login via provisioning API for %s", self.user.mxid)

        try:
            client = self._client_factory()
        except Exception as exc:
            return await self._fail(*ERR_CONNECTION, cause=exc)

        codes = CodeChannel()
        done = asyncio.Event()
        try:
            await client.dial(self.cancel, codes, done)
        except Exception as exc:
            codes.close()
            done.set()
            if self.cancel.cancelled:
                return self._cancelled()
            return await self._fail(*ERR_CONNECTION, cause=exc)

        self._transition(HandshakeState.AWAITING_COMPLETION)
        events = HandshakeEvents(codes, done, self.cancel)
        try:
            while True:
                event = await events.next()
                if event.kind is EventKind.CODE_RECEIVED:
                    await self.peer.send_json({"code": event.code, "timeout": self._code_timeout})
                elif event.kind is EventKind.CODE_CHANNEL_CLOSED:
                    continue
                elif event.kind is EventKind.CANCELLED:
                    return self._cancelled()
                else:
                    return await self._complete(client)
        finally:
            codes.close()

    async def _complete(self, client: RemoteAuthClient) -> HandshakeOutcome:
        try:
            result = client.result()
        except Exception as exc:
            return await self._fail(*ERR_CONNECTION, cause=exc)

        if self.cancel.cancelled:
            return self._cancelled()

        await run_in_threadpool(self._commit, result)
        try:
            await run_in_threadpool(self.user.login, result.token)
        except Exception as exc:
            return await self._fail(*ERR_CONNECTION, cause=exc)

        self._finish(HandshakeOutcome(HandshakeState.SUCCEEDED, user_id=result.user_id))
        await self.peer.send_json({"success": True, "id": result.user_id})
        return self._outcome

    def _commit(self, result: RemoteAuthUser) -> None:
        # The only place the handshake takes user.lock
        with self.user.lock:
            self.user.id = result.user_id
            self.user.update()

    # -------------------------------------------------------------------------
    # terminal helpers
    # -------------------------------------------------------------------------

    def _transition(self, state: HandshakeState) -> None:
        logger.debug("Login %s: %s -> %s", self.user.mxid, self._state.value, state.value)
        self._state = state

    def _finish(self, outcome: HandshakeOutcome) -> None:
        if self._outcome is not None:
            raise RuntimeError("handshake outcome already recorded")
        self._transition(outcome.state)
        self._outcome = outcome
        if self._log:
            fields = {k: v for k, v in (
                ("discord_id", outcome.user_id),
                ("errcode", outcome.errcode),
                ("reason", outcome.reason),
            ) if v}
            self._log.login_event(self.user.mxid, outcome.state.value, **fields)

    async def _fail(self, error: str, errcode: str, cause: BaseException | None = None) -> HandshakeOutcome:
        if cause is not None:
            logger.error("Failed to log in %s via provisioning API: %s", self.user.mxid, cause)
        self._finish(HandshakeOutcome(HandshakeState.FAILED, error=error, errcode=errcode))
        await self.peer.send_json({"success": False, "error": error, "errcode": errcode})
        return self._outcome

    def _cancelled(self) -> HandshakeOutcome:
        logger.debug("Login for %s cancelled (%s)", self.user.mxid, self.cancel.reason)
        self._finish(HandshakeOutcome(HandshakeState.CANCELLED, reason=self.cancel.reason))
        return self._outcome
