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
Cordbridge -- Provisioning control plane for a Matrix <-> Discord bridge.

Exposes an authenticated HTTP + WebSocket API that lets a provisioning
client log a bridge account into Discord via QR-code remote auth and
manage the resulting session and bridged guilds.
"""

from cordbridge._version import __version__

__author__ = "Cordbridge Team"
