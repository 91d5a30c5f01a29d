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
Cordbridge -- Provisioning API errors

Every failure a handler can report maps to one exception class with a
fixed HTTP status. Handlers raise; the exception handler installed by
install_error_handlers() renders the uniform error body:

    {"success": false, "error": "<message>", "errcode": "<short code>"}
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class ProvisioningError(Exception):
    """Base class for errors reported to provisioning clients."""

    status_code = 500
    default_errcode = "M_UNKNOWN"

    def __init__(self, message: str, errcode: str | None = None):
        super().__init__(message)
        self.message = message
        self.errcode = errcode or self.default_errcode

    def body(self) -> dict:
        return error_body(self.message, self.errcode)


class AuthorizationError(ProvisioningError):
    """Bad or missing shared secret."""
    status_code = 403
    default_errcode = "M_FORBIDDEN"


class NotFoundError(ProvisioningError):
    status_code = 404
    default_errcode = "M_NOT_FOUND"


class StateConflictError(ProvisioningError):
    """The action is invalid for the session's current state."""
    status_code = 409
    default_errcode = "M_CONFLICT"


class UpstreamError(ProvisioningError):
    """Discord or the bridge failed while carrying out the action."""
    status_code = 500
    default_errcode = "M_UNKNOWN"


class TransportError(Exception):
    """The login WebSocket could not be established or broke mid-handshake.

    Never rendered as a response: once the upgrade has started there is
    no HTTP body to write, so these are only logged.
    """


def error_body(message: str, errcode: str) -> dict:
    return {"success": False, "error": message, "errcode": errcode}


async def provisioning_error_handler(request: Request, exc: ProvisioningError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProvisioningError, provisioning_error_handler)
