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
Cordbridge -- Provisioning API Server

FastAPI application factory. Everything the app needs is injected, so
several isolated apps (different secrets, stores, auth clients) can run
side by side in one process:

    app = create_app(config, user_store=store, remote_auth_factory=factory)

Run with: python -m cordbridge --config ~/.cordbridge/config.yaml
"""

from __future__ import annotations

import importlib
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from cordbridge._version import __version__
from cordbridge.api.errors import install_error_handlers
from cordbridge.api.middleware import CredentialGateMiddleware
from cordbridge.api.routes import guilds, health, login, session
from cordbridge.bridge.remoteauth import RemoteAuthFactory, unavailable_remote_auth
from cordbridge.bridge.user import UserStore
from cordbridge.config import ProvisioningConfig
from cordbridge.core.logging import BridgeLogger, get_logger
from cordbridge.provisioning.handshake import HandshakeRegistry

logger = logging.getLogger("cordbridge.api.server")


def import_object(path: str) -> Any:
    """Resolve a "package.module:attribute" reference."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def create_app(
    config: ProvisioningConfig,
    user_store: UserStore | None = None,
    remote_auth_factory: RemoteAuthFactory | None = None,
    log: BridgeLogger | None = None,
) -> FastAPI:
    """Build the provisioning app for one bridge instance."""
    log = log or get_logger(config.log_directory, config.log_level)

    if user_store is None:
        user_store = import_object(config.user_store)()
    if remote_auth_factory is None:
        remote_auth_factory = (
            import_object(config.remote_auth) if config.remote_auth else unavailable_remote_auth
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.server_start(host=config.host, port=config.port, prefix=config.prefix,
                         enabled=config.enabled)
        yield
        log.server_stop()

    app = FastAPI(
        title="Cordbridge Provisioning API",
        description="Login and session management for the Discord bridge",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.user_store = user_store
    app.state.remote_auth_factory = remote_auth_factory
    app.state.handshakes = HandshakeRegistry()
    app.state.log = log

    install_error_handlers(app)
    app.include_router(health.router)

    if not config.enabled:
        logger.info("Provisioning API disabled (no shared secret configured)")
        return app

    prefix = config.prefix.rstrip("/")
    logger.debug("Enabling provisioning API at %s", prefix or "/")
    for module in (session, guilds, login):
        app.include_router(module.router, prefix=prefix)

    app.add_middleware(
        CredentialGateMiddleware,
        shared_secret=config.shared_secret,
        prefix=prefix,
        protocol=config.protocol,
        login_path=config.login_path,
        log=log,
    )
    return app
