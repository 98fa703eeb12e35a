"""Service configuration constants and environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

HOST = os.environ.get("HOST", "0.0.0.0").strip()
PORT = int(os.environ.get("PORT", "8000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

STORE_BACKEND = os.environ.get("STORE_BACKEND", "redis").strip().lower()
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0").strip()
KVS_PREFIX = os.environ.get("KVS_PREFIX", "")

MAILBOX_TTL_SECONDS = int(os.environ.get("MAILBOX_TTL_SECONDS", "600"))
USERNAME_MAX_LENGTH = int(os.environ.get("USERNAME_MAX_LENGTH", "16"))

GIT_UPSTREAM_URL = os.environ.get("GIT_UPSTREAM_URL", "https://github.com").rstrip("/")
GIT_PROXY_TIMEOUT_SECONDS = float(os.environ.get("GIT_PROXY_TIMEOUT_SECONDS", "60"))
GH_USERNAME = os.environ.get("GH_USERNAME", "").strip()
GH_TOKEN = os.environ.get("GH_TOKEN", "").strip()

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]
