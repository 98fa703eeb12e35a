#!/usr/bin/env python3
"""Haven middleware server: identity registry, invite mailbox and git sync proxy.

Endpoints:
  POST /api/register        {username}                        → {tag, secret}
  POST /api/invite          {targetTag, senderTag, ip, worldName}
  POST /api/respond         {senderTag, targetTag, action}     action: DENY | JOIN
  POST /api/notifications   {tag, secret}                     → {notifications: [...]}
  ANY  /git/*               → GIT_UPSTREAM_URL/GH_USERNAME/*  (credential injected)
  GET  /healthz

Usage:
  python3 server.py
"""

from __future__ import annotations

import logging
import sys

import uvicorn

import haven_config as config
from app import create_app

log = logging.getLogger("haven.server")


def setup_logging(level_name: str = config.LOG_LEVEL) -> None:
    level = getattr(logging, level_name, logging.INFO)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter("%(levelname)s (%(module)s) %(message)s"))
    root = logging.getLogger()
    root.addHandler(stderr_handler)
    root.setLevel(level)


def main() -> None:
    setup_logging()
    if not (config.GH_USERNAME and config.GH_TOKEN):
        log.warning("GH_USERNAME/GH_TOKEN not set; /git requests will fail with 502")
    log.info("Haven middleware running on %s:%s (store=%s)", config.HOST, config.PORT, config.STORE_BACKEND)
    uvicorn.run(create_app(), host=config.HOST, port=config.PORT, log_config=None)


if __name__ == "__main__":
    main()
