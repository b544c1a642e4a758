"""
src/realtime_engine/settings.py
===============================
Central place for every environment variable and default used by the
realtime engine. Import these symbols instead of reading the environment
elsewhere.
"""

from __future__ import annotations

import os
from typing import FrozenSet, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# ------------------------------------------------------------------------------
# Service endpoint
# ------------------------------------------------------------------------------
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
REALTIME_ENDPOINT: str = os.getenv("REALTIME_ENDPOINT", "wss://api.openai.com/v1/realtime")
REALTIME_MODEL: str = os.getenv("REALTIME_MODEL", "gpt-realtime")

# ------------------------------------------------------------------------------
# Connection behaviour
# ------------------------------------------------------------------------------
REALTIME_CONNECT_TIMEOUT: float = float(os.getenv("REALTIME_CONNECT_TIMEOUT", "10"))
# Handshake attempts only; dropped sessions are never reconnected
REALTIME_CONNECT_MAX_TRIES: int = int(os.getenv("REALTIME_CONNECT_MAX_TRIES", "3"))
# Unset means no frame size limit
_max_size = os.getenv("REALTIME_MAX_MESSAGE_SIZE")
REALTIME_MAX_MESSAGE_SIZE: Optional[int] = int(_max_size) if _max_size else None

# ------------------------------------------------------------------------------
# Session defaults
# ------------------------------------------------------------------------------
REALTIME_SESSION_CONFIG: Optional[str] = os.getenv("REALTIME_SESSION_CONFIG") or None
REALTIME_TARGET_SAMPLE_RATE: int = int(os.getenv("REALTIME_TARGET_SAMPLE_RATE", "24000"))

# Event types decoded to None and never delivered, e.g. "rate_limits.updated"
REALTIME_IGNORED_EVENTS: FrozenSet[str] = frozenset(
    event.strip() for event in os.getenv("REALTIME_IGNORED_EVENTS", "").split(",") if event.strip()
)

# ------------------------------------------------------------------------------
# Telemetry
# ------------------------------------------------------------------------------
REALTIME_ENABLE_TRACING: bool = os.getenv("REALTIME_ENABLE_TRACING", "false").lower() in ("1", "true", "yes")
