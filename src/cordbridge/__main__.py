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
"""Provisioning API CLI entry point.

Usage:
    python -m cordbridge [--config PATH] [--host HOST] [--port PORT] [--log-level LEVEL]
"""

from __future__ import annotations

import argparse
import logging
import sys

from cordbridge.config import load_config

logger = logging.getLogger("cordbridge.server")


def main() -> None:
    """Entry point for the provisioning API server."""
    parser = argparse.ArgumentParser(
        prog="cordbridge",
        description="Cordbridge -- Discord bridge provisioning API",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: ~/.cordbridge/config.yaml)",
    )
    parser.add_argument("--host", default=None, help="Listen address (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (overrides config)")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides config)",
    )
    args = parser.parse_args()

    config = load_config(args.config)

    # Apply CLI overrides
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not config.enabled:
        logger.error("Provisioning is disabled: set provisioning.shared_secret in the config")
        sys.exit(1)

    import uvicorn

    from cordbridge.api.server import create_app

    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
