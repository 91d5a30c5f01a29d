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
Cordbridge -- Bridge-side collaborators

Interfaces for the objects the provisioning API acts on, plus an
in-memory implementation for local development and tests:

  - User / UserStore      -- the bridge account and its lookup
  - RemoteAuthClient      -- Discord's QR-code remote-auth handshake

Usage:
    from cordbridge.bridge.memory import MemoryUserStore
    store = MemoryUserStore()
    user = store.get_by_mxid("@alice:example.org")
"""
