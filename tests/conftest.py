"""Pytest configuration and shared stubs for cordbridge tests."""

from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path

import pytest

# Ensure src/cordbridge is importable without an install
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from cordbridge.bridge.memory import MemoryUserStore  # noqa: E402
from cordbridge.bridge.remoteauth import RemoteAuthClient, RemoteAuthError, RemoteAuthUser  # noqa: E402
from cordbridge.config import ProvisioningConfig  # noqa: E402
from cordbridge.core.logging import BridgeLogger  # noqa: E402

SECRET = "abc"
PREFIX = "/_matrix/provision/v1"
PROTOCOL = "com.gitlab.beeper.discord"
MXID = "@u:server"
LOGIN_PATH = f"{PREFIX}/login?user_id=%40u%3Aserver"
LOGIN_SUBPROTOCOLS = [PROTOCOL, f"{PROTOCOL}-{SECRET}"]


# ---------------------------------------------------------------------------
# Shared stubs
# ---------------------------------------------------------------------------


class ScriptedRemoteAuth(RemoteAuthClient):
    """Remote-auth stub that plays back a fixed script of codes and a result.

    finish=False keeps the handshake open until the cancel token fires.
    dial_delay makes dial() itself slow (but still cancel-aware).
    """

    def __init__(
        self,
        codes=(),
        user: RemoteAuthUser | None = None,
        result_error: Exception | None = None,
        dial_error: Exception | None = None,
        finish: bool = True,
        dial_delay: float = 0.0,
    ):
        self.codes = list(codes)
        self.user = user or RemoteAuthUser(user_id="discorduser#1", username="discorduser", token="tok-1")
        self.result_error = result_error
        self.dial_error = dial_error
        self.finish = finish
        self.dial_delay = dial_delay
        self.dial_calls = 0
        self.result_calls = 0
        # threading.Events so tests on another thread can wait on them
        self.dial_started = threading.Event()
        self.saw_cancel = threading.Event()
        self._task: asyncio.Task | None = None

    async def dial(self, cancel, codes, done) -> None:
        self.dial_calls += 1
        self.dial_started.set()
        if self.dial_delay:
            try:
                await asyncio.wait_for(cancel.wait(), self.dial_delay)
            except asyncio.TimeoutError:
                pass
            if cancel.cancelled:
                self.saw_cancel.set()
                raise RemoteAuthError("dial cancelled")
        if self.dial_error is not None:
            raise self.dial_error
        self._task = asyncio.ensure_future(self._play(cancel, codes, done))

    async def _play(self, cancel, codes, done) -> None:
        for code in self.codes:
            await codes.send(code)
        if self.finish:
            codes.close()
            done.set()
            return
        await cancel.wait()
        self.saw_cancel.set()
        codes.close()

    def result(self) -> RemoteAuthUser:
        self.result_calls += 1
        if self.result_error is not None:
            raise self.result_error
        return self.user


class AuthFactory:
    """RemoteAuthFactory that hands out pre-built clients and counts calls."""

    def __init__(self, *clients: ScriptedRemoteAuth):
        self.clients = list(clients)
        self.calls = 0

    def __call__(self) -> ScriptedRemoteAuth:
        self.calls += 1
        if not self.clients:
            return ScriptedRemoteAuth()
        return self.clients.pop(0)


class RecordingPeer:
    """Peer stub that records every message sent by the handshake."""

    def __init__(self):
        self.messages: list[dict] = []
        self.got_message = asyncio.Event()

    async def send_json(self, message: dict) -> bool:
        self.messages.append(message)
        self.got_message.set()
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> MemoryUserStore:
    return MemoryUserStore()


@pytest.fixture()
def bridge_log() -> BridgeLogger:
    """Isolated logger so tests never touch the process-wide singleton."""
    return BridgeLogger(name="cordbridge.test", level="DEBUG")


@pytest.fixture()
def config() -> ProvisioningConfig:
    return ProvisioningConfig(shared_secret=SECRET, prefix=PREFIX, login_timeout=0)


@pytest.fixture()
def auth_header() -> dict:
    return {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture()
def make_client(config, store, bridge_log):
    """Build a TestClient around a fresh provisioning app."""
    from fastapi.testclient import TestClient

    from cordbridge.api.server import create_app

    def _make(factory=None, cfg: ProvisioningConfig | None = None, user_store=None) -> TestClient:
        app = create_app(
            cfg or config,
            user_store=user_store or store,
            remote_auth_factory=factory or AuthFactory(),
            log=bridge_log,
        )
        return TestClient(app)

    return _make

