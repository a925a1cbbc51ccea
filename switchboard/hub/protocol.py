"""JSON hub protocol framing: handshake, invocations, completions, pings."""

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

RECORD_SEPARATOR = "\x1e"

INVOCATION = 1
COMPLETION = 3
PING = 6
CLOSE = 7

HANDSHAKE = {"protocol": "json", "version": 1}


@dataclass
class Frame:
    type: int
    target: str | None = None
    arguments: list[Any] = field(default_factory=list)
    invocation_id: str | None = None
    result: Any = None
    error: str | None = None


def encode(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":")) + RECORD_SEPARATOR


def encode_handshake() -> str:
    return encode(HANDSHAKE)


def encode_invocation(target: str, arguments: list[Any], invocation_id: str | None = None) -> str:
    payload: dict[str, Any] = {"type": INVOCATION, "target": target, "arguments": arguments}
    if invocation_id is not None:
        payload["invocationId"] = invocation_id
    return encode(payload)


def encode_ping() -> str:
    return encode({"type": PING})


def split(data: str) -> list[str]:
    """Split a text payload into records. Trailing partial records are dropped."""
    return [part for part in data.split(RECORD_SEPARATOR) if part.strip()]


def parse_handshake(record: str) -> str | None:
    """Return the handshake error, or None on success."""
    payload = json.loads(record)
    return payload.get("error") if isinstance(payload, dict) else "malformed handshake"


def parse(record: str) -> Frame | None:
    """Decode one record. Returns None for records that are not frames."""
    try:
        payload = json.loads(record)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), int):
        return None
    return Frame(
        type=payload["type"],
        target=payload.get("target"),
        arguments=list(payload.get("arguments") or []),
        invocation_id=payload.get("invocationId"),
        result=payload.get("result"),
        error=payload.get("error"),
    )


def hub_url_with_token(hub_url: str, token: str) -> str:
    sep = "&" if "?" in hub_url else "?"
    return f"{hub_url}{sep}access_token={quote(token, safe='')}"


def websocket_url(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url[len("https://") :]
    if url.startswith("http://"):
        return "ws://" + url[len("http://") :]
    return url
