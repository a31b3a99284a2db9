"""
Small helpers shared by the message codec, the configuration loader and the CLI.
"""

from __future__ import annotations
import re
import time
from typing import Any

# ========================================
#           TIME / NAMING HELPERS
# ========================================

_SNAKE_PART_RE = re.compile(r'_([a-z0-9])')

def now_seconds() -> int:
    """Current Unix time in whole seconds, as carried in the ``timestamp`` field."""
    return int(time.time())

def to_wire_name(name: str) -> str:
    """
    snake_case attribute name -> camelCase wire field name.

    'game_session_id' -> 'gameSessionId', 'player1' -> 'player1'
    """
    return _SNAKE_PART_RE.sub(lambda m: m.group(1).upper(), name)

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================

def is_valid_port(value: Any) -> bool:
    """
    Port must be an integer between 1 and 65535 (bools are rejected).
    """
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= 65535

def is_valid_host(host: Any) -> bool:
    """
    Accepts a bare hostname or IPv4 address: non-empty, no scheme, no port, no whitespace.

    Examples: "localhost", "10.0.0.5", "match.example.com"
    """
    if not isinstance(host, str) or not host:
        return False
    if "://" in host or ":" in host or "/" in host:
        return False
    return not any(c.isspace() for c in host)

def parse_bool(value: Any) -> bool:
    """
    Interpret config/env style booleans ("1", "true", "yes", "on" / "0", "false", "no", "off").

    Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean value: {value!r}")
