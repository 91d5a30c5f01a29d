# Cordbridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Cordbridge.
#
# Cordbridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Unit tests for the login handshake state machine.

The handshake is driven directly with a RecordingPeer and scripted
remote-auth clients; no HTTP or WebSocket layer is involved.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import MXID, AuthFactory, RecordingPeer, ScriptedRemoteAuth
from cordbridge.bridge.memory import MemoryUser
from cordbridge.bridge.remoteauth import RemoteAuthError, RemoteAuthUser
from cordbridge.bridge.user import BridgeError
from cordbridge.provisioning.channels import CancelToken, CodeChannel
from cordbridge.provisioning.handshake import (
    EventKind,
    HandshakeEvents,
    HandshakeRegistry,
    HandshakeState,
    LoginHandshake,
)

FAILURE = {"success": False, "error": "Failed to connect to Discord", "errcode": "connection error"}


def make_handshake(user, client=None, peer=None, **kwargs):
    peer = peer or RecordingPeer()
    factory = kwargs.pop("factory", None) or AuthFactory(client or ScriptedRemoteAuth())
    cancel = kwargs.pop("cancel", None) or CancelToken()
    handshake = LoginHandshake(user, peer, factory, cancel, **kwargs)
    return handshake, peer, factory


class BrokenLoginUser(MemoryUser):
    def login(self, token: str) -> None:
        raise BridgeError("gateway refused token")


class SlotCheckingUser(MemoryUser):
    """Records whether the login slot was free each time logged_in() ran."""

    def __init__(self, mxid, registry, **kwargs):
        super().__init__(mxid, **kwargs)
        self.registry = registry
        self.slot_free_at_check: list[bool] = []

    def logged_in(self) -> bool:
        free = self.registry.acquire(self.mxid)
        if free:
            self.registry.release(self.mxid)
        self.slot_free_at_check.append(free)
        return super().logged_in()


# ═══════════════════════════════════════════════════════════════════════
# Success path
# ═══════════════════════════════════════════════════════════════════════


class TestSuccess:

    @pytest.mark.asyncio
    async def test_codes_then_single_success(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(codes=["A", "B", "C"])
        handshake, peer, _ = make_handshake(user, client)

        outcome = await handshake.run()

        assert outcome.state is HandshakeState.SUCCEEDED
        assert outcome.user_id == "discorduser#1"
        assert peer.messages == [
            {"code": "A", "timeout": 120},
            {"code": "B", "timeout": 120},
            {"code": "C", "timeout": 120},
            {"success": True, "id": "discorduser#1"},
        ]

    @pytest.mark.asyncio
    async def test_commits_identity_and_logs_in(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(user=RemoteAuthUser(user_id="1234", token="secret-token"))
        handshake, _, _ = make_handshake(user, client)

        await handshake.run()

        assert user.id == "1234"
        assert user.token == "secret-token"
        assert user.logged_in() is True
        assert user.connected() is True
        assert store.saved[MXID]["id"] == "1234"

    @pytest.mark.asyncio
    async def test_success_without_codes(self, store):
        user = store.get_by_mxid(MXID)
        handshake, peer, _ = make_handshake(user, ScriptedRemoteAuth(codes=[]))

        await handshake.run()

        assert peer.messages == [{"success": True, "id": "discorduser#1"}]

    @pytest.mark.asyncio
    async def test_custom_code_timeout(self, store):
        user = store.get_by_mxid(MXID)
        handshake, peer, _ = make_handshake(user, ScriptedRemoteAuth(codes=["A"]), code_timeout=30)

        await handshake.run()

        assert peer.messages[0] == {"code": "A", "timeout": 30}

    @pytest.mark.asyncio
    async def test_registry_released_after_run(self, store):
        user = store.get_by_mxid(MXID)
        registry = HandshakeRegistry()
        handshake, _, _ = make_handshake(user, registry=registry)

        await handshake.run()

        assert registry.acquire(MXID) is True

    @pytest.mark.asyncio
    async def test_outcome_recorded_once(self, store):
        user = store.get_by_mxid(MXID)
        handshake, _, _ = make_handshake(user)

        outcome = await handshake.run()

        assert handshake.outcome is outcome
        assert handshake.state is HandshakeState.SUCCEEDED


# ═══════════════════════════════════════════════════════════════════════
# Failure paths
# ═══════════════════════════════════════════════════════════════════════


class TestFailure:

    @pytest.mark.asyncio
    async def test_already_logged_in_never_dials(self, store):
        user = store.get_by_mxid(MXID)
        user.login("existing")
        handshake, peer, factory = make_handshake(user)

        outcome = await handshake.run()

        assert outcome.state is HandshakeState.FAILED
        assert outcome.errcode == "already logged in"
        assert factory.calls == 0
        assert peer.messages == [{
            "success": False,
            "error": "You're already logged into Discord",
            "errcode": "already logged in",
        }]

    @pytest.mark.asyncio
    async def test_login_in_progress_rejected(self, store):
        user = store.get_by_mxid(MXID)
        registry = HandshakeRegistry()
        registry.acquire(MXID)
        handshake, peer, factory = make_handshake(user, registry=registry)

        outcome = await handshake.run()

        assert outcome.errcode == "login in progress"
        assert factory.calls == 0
        assert len(peer.messages) == 1
        # The other handshake still owns the slot
        assert registry.acquire(MXID) is False

    @pytest.mark.asyncio
    async def test_login_state_checked_while_holding_slot(self):
        registry = HandshakeRegistry()
        user = SlotCheckingUser(MXID, registry)
        handshake, _, _ = make_handshake(user, registry=registry)

        await handshake.run()

        assert user.slot_free_at_check
        assert True not in user.slot_free_at_check

    @pytest.mark.asyncio
    async def test_concurrent_handshakes_log_in_once(self, store):
        user = store.get_by_mxid(MXID)
        registry = HandshakeRegistry()
        factory = AuthFactory(ScriptedRemoteAuth(codes=["A"]))
        first, first_peer, _ = make_handshake(user, registry=registry, factory=factory)
        second, second_peer, _ = make_handshake(user, registry=registry, factory=factory)

        outcomes = await asyncio.gather(first.run(), second.run())

        states = sorted(o.state.value for o in outcomes)
        assert states == ["failed", "succeeded"]
        failed = next(o for o in outcomes if o.state is HandshakeState.FAILED)
        assert failed.errcode in ("login in progress", "already logged in")
        assert factory.calls == 1
        successes = [m for m in first_peer.messages + second_peer.messages if m.get("success")]
        assert successes == [{"success": True, "id": "discorduser#1"}]

    @pytest.mark.asyncio
    async def test_dial_error_sends_one_connection_error(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(codes=["A"], dial_error=RemoteAuthError("refused"))
        handshake, peer, _ = make_handshake(user, client)

        outcome = await handshake.run()

        assert outcome.state is HandshakeState.FAILED
        assert outcome.errcode == "connection error"
        assert peer.messages == [FAILURE]
        assert client.result_calls == 0

    @pytest.mark.asyncio
    async def test_factory_error_is_connection_error(self, store):
        user = store.get_by_mxid(MXID)

        def factory():
            raise RemoteAuthError("no client")

        handshake, peer, _ = make_handshake(user, factory=factory)
        outcome = await handshake.run()

        assert outcome.state is HandshakeState.FAILED
        assert peer.messages == [FAILURE]

    @pytest.mark.asyncio
    async def test_result_error_after_codes(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(codes=["A"], result_error=RemoteAuthError("rejected on phone"))
        handshake, peer, _ = make_handshake(user, client)

        outcome = await handshake.run()

        assert outcome.state is HandshakeState.FAILED
        assert peer.messages == [{"code": "A", "timeout": 120}, FAILURE]
        assert user.logged_in() is False
        assert user.id == ""

    @pytest.mark.asyncio
    async def test_login_error_after_commit(self, store):
        user = BrokenLoginUser(MXID, store=store)
        handshake, peer, _ = make_handshake(user)

        outcome = await handshake.run()

        assert outcome.state is HandshakeState.FAILED
        assert peer.messages == [FAILURE]
        assert user.logged_in() is False


# ═══════════════════════════════════════════════════════════════════════
# Cancellation
# ═══════════════════════════════════════════════════════════════════════


class TestCancellation:

    @pytest.mark.asyncio
    async def test_peer_close_cancels_without_messages(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(codes=["A"], finish=False)
        handshake, peer, _ = make_handshake(user, client)

        task = asyncio.ensure_future(handshake.run())
        await asyncio.wait_for(peer.got_message.wait(), 1)
        handshake.cancel.cancel("peer closed")
        outcome = await asyncio.wait_for(task, 1)

        assert outcome.state is HandshakeState.CANCELLED
        assert outcome.reason == "peer closed"
        assert peer.messages == [{"code": "A", "timeout": 120}]
        assert client.result_calls == 0
        assert user.logged_in() is False
        assert MXID not in store.saved

    @pytest.mark.asyncio
    async def test_timeout_cancels(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(codes=["A"], finish=False)
        handshake, peer, _ = make_handshake(user, client, login_timeout=0.05)

        outcome = await asyncio.wait_for(handshake.run(), 2)

        assert outcome.state is HandshakeState.CANCELLED
        assert outcome.reason == "timed out"
        assert peer.messages == [{"code": "A", "timeout": 120}]

    @pytest.mark.asyncio
    async def test_cancel_during_dial(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(dial_delay=5)
        handshake, peer, _ = make_handshake(user, client)

        task = asyncio.ensure_future(handshake.run())
        while not client.dial_started.is_set():
            await asyncio.sleep(0.01)
        handshake.cancel.cancel("peer closed")
        outcome = await asyncio.wait_for(task, 1)

        assert outcome.state is HandshakeState.CANCELLED
        assert peer.messages == []

    @pytest.mark.asyncio
    async def test_cancelled_before_result_skips_commit(self, store):
        user = store.get_by_mxid(MXID)
        cancel = CancelToken()

        class CancelOnResult(ScriptedRemoteAuth):
            def result(self):
                cancel.cancel("peer closed")
                return super().result()

        handshake, peer, _ = make_handshake(user, CancelOnResult(), cancel=cancel)
        outcome = await handshake.run()

        assert outcome.state is HandshakeState.CANCELLED
        assert peer.messages == []
        assert user.id == ""


# ═══════════════════════════════════════════════════════════════════════
# Lock scope
# ═══════════════════════════════════════════════════════════════════════


class TestLockScope:

    @pytest.mark.asyncio
    async def test_user_lock_free_while_awaiting_completion(self, store):
        user = store.get_by_mxid(MXID)
        client = ScriptedRemoteAuth(codes=["A"], finish=False)
        handshake, peer, _ = make_handshake(user, client)

        task = asyncio.ensure_future(handshake.run())
        await asyncio.wait_for(peer.got_message.wait(), 1)

        assert handshake.state is HandshakeState.AWAITING_COMPLETION
        assert user.lock.acquire(blocking=False) is True
        user.lock.release()

        handshake.cancel.cancel("peer closed")
        await asyncio.wait_for(task, 1)


# ═══════════════════════════════════════════════════════════════════════
# Event source
# ═══════════════════════════════════════════════════════════════════════


class TestHandshakeEvents:

    @pytest.mark.asyncio
    async def test_buffered_codes_precede_completion(self):
        codes, done, cancel = CodeChannel(), asyncio.Event(), CancelToken()
        await codes.send("A")
        await codes.send("B")
        done.set()
        events = HandshakeEvents(codes, done, cancel)

        kinds = [await events.next() for _ in range(3)]

        assert [e.kind for e in kinds] == [
            EventKind.CODE_RECEIVED, EventKind.CODE_RECEIVED, EventKind.COMPLETED,
        ]
        assert [e.code for e in kinds[:2]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_closed_channel_reported_once(self):
        codes, done, cancel = CodeChannel(), asyncio.Event(), CancelToken()
        codes.close()
        events = HandshakeEvents(codes, done, cancel)

        first = await events.next()
        asyncio.get_running_loop().call_later(0.01, done.set)
        second = await asyncio.wait_for(events.next(), 1)

        assert first.kind is EventKind.CODE_CHANNEL_CLOSED
        assert second.kind is EventKind.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_wins_ties(self):
        codes, done, cancel = CodeChannel(), asyncio.Event(), CancelToken()
        await codes.send("A")
        done.set()
        cancel.cancel("peer closed")
        events = HandshakeEvents(codes, done, cancel)

        assert (await events.next()).kind is EventKind.CANCELLED

    @pytest.mark.asyncio
    async def test_waits_for_first_ready_source(self):
        codes, done, cancel = CodeChannel(), asyncio.Event(), CancelToken()
        events = HandshakeEvents(codes, done, cancel)

        pending = asyncio.ensure_future(events.next())
        await asyncio.sleep(0.01)
        assert not pending.done()

        await codes.send("XQR1")
        event = await asyncio.wait_for(pending, 1)
        assert event.kind is EventKind.CODE_RECEIVED
        assert event.code == "XQR1"
