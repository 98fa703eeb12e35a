"""Identity and mailbox data definitions."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Union

INVITE = "INVITE"
REJECT = "REJECT"
SYSTEM_SENDER_PREFIX = "SYSTEM:"


@dataclass(frozen=True)
class Identity:
    tag: str
    secret: str

    def to_dict(self) -> dict[str, str]:
        return {"tag": self.tag, "secret": self.secret}


@dataclass(frozen=True)
class Invite:
    ip: str
    world_name: str
    timestamp: int

    def to_dict(self) -> dict[str, object]:
        return {
            "type": INVITE,
            "ip": self.ip,
            "worldName": self.world_name,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Reject:
    timestamp: int

    def to_dict(self) -> dict[str, object]:
        return {"type": REJECT, "timestamp": self.timestamp}


Notification = Union[Invite, Reject]


# ---------------------------------------------------------------------------
# Store layout
# ---------------------------------------------------------------------------


def make_tag(username: str, number: int) -> str:
    return f"{username}#{number}"


def counter_key(username: str) -> str:
    return f"counter:{username}"


def secret_key(tag: str) -> str:
    return f"secret:{tag}"


def inbox_key(tag: str) -> str:
    return f"inbox:{tag}"


def system_sender(tag: str) -> str:
    """Sender key for notices the service writes on behalf of ``tag``.

    Kept apart from the plain tag so a denial from a counterpart never
    replaces a pending invite from that same counterpart.
    """
    return SYSTEM_SENDER_PREFIX + tag


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def encode_notification(notification: Notification) -> str:
    return json.dumps(notification.to_dict(), separators=(",", ":"))


def _required_field(data: dict[str, object], key: str, kind: type) -> object:
    value = data.get(key)
    # bool is an int subclass; a timestamp of True is not a timestamp.
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ValueError(f"notification field {key} must be {kind.__name__}")
    return value


def decode_notification(raw: str | bytes) -> Notification:
    """Parse a stored notification, rejecting anything not in the union."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("notification must be a JSON object")
    kind = data.get("type")
    if kind == INVITE:
        return Invite(
            ip=str(_required_field(data, "ip", str)),
            world_name=str(_required_field(data, "worldName", str)),
            timestamp=int(_required_field(data, "timestamp", int)),  # type: ignore[arg-type]
        )
    if kind == REJECT:
        return Reject(timestamp=int(_required_field(data, "timestamp", int)))  # type: ignore[arg-type]
    raise ValueError(f"unknown notification type: {kind!r}")


def notification_entry(sender_key: str, notification: Notification) -> dict[str, object]:
    """Wire shape of one polled entry: the sender key merged with the payload."""
    entry: dict[str, object] = {"from": sender_key}
    entry.update(notification.to_dict())
    return entry
