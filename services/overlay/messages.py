"""
Overlay wire contract.

Outbound: {} clears the overlay, a HighlightPayload message sets it.
Inbound: an object whose "id" (string, or absent/null) is the authoritative
selection. Everything else on the wire is malformed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "!~*'()"


class MalformedMessage(ValueError):
    """Raised when an inbound frame cannot be interpreted."""


@dataclass(frozen=True)
class InboundSelection:
    item_id: Optional[str]


def clear_message() -> Dict[str, Any]:
    return {}


def encode(message: Dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


def decode_inbound(data: Union[str, bytes, bytearray]) -> InboundSelection:
    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"binary frame is not UTF-8: {e}") from e

    try:
        parsed = json.loads(data)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"frame is not JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise MalformedMessage(f"frame root is {type(parsed).__name__}, expected object")

    item_id = parsed.get("id")
    if item_id is not None and not isinstance(item_id, str):
        raise MalformedMessage(f"id must be a string or null, got {type(item_id).__name__}")

    return InboundSelection(item_id=item_id or None)


def namespace_segment(namespace: str) -> str:
    return quote(namespace, safe=_URI_COMPONENT_SAFE)


def endpoint_url(origin: str, namespace: str, role: str = "extension") -> str:
    return f"{origin.rstrip('/')}/{namespace_segment(namespace)}/{role}"
