"""Helpers for safe debug logging.

Push payloads and RPC replies can carry broker credentials or API keys and
NGSI-LD documents can be large. :func:`redact_for_log` masks sensitive keys
and truncates long values before they reach DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

# Compared after lower-casing and dropping "_" / "-".
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "mqttpassword",
        "passwd",
        "secret",
        "token",
        "accesstoken",
        "refreshtoken",
        "apikey",
        "authorization",
        "cookie",
    }
)

_MAX_DEPTH = 20


def _is_sensitive(key: str) -> bool:
    return key.lower().replace("_", "").replace("-", "") in _SENSITIVE_KEYS


def redact_for_log(value: Any, *, max_string: int = 256, max_items: int = 50) -> Any:
    """Return a redacted, size-capped copy of *value* for debug logs."""

    def walk(node: Any, depth: int) -> Any:
        if depth > _MAX_DEPTH:
            return "<max-depth>"
        if node is None or isinstance(node, (bool, int, float)):
            return node
        if isinstance(node, str):
            return node if len(node) <= max_string else f"{node[:max_string]}…<truncated>"
        if isinstance(node, (bytes, bytearray)):
            return f"<bytes:{len(node)}b>"
        if isinstance(node, Mapping):
            return {
                str(key): "<redacted>" if _is_sensitive(str(key)) else walk(item, depth + 1)
                for key, item in node.items()
            }
        if isinstance(node, Sequence):
            items = [walk(item, depth + 1) for item in node[:max_items]]
            if len(node) > max_items:
                items.append(f"<+{len(node) - max_items} more>")
            return items
        return repr(node)

    return walk(value, 0)
