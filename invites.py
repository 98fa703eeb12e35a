"""Invite/response micro-protocol written into recipients' mailboxes."""

from __future__ import annotations

import enum
import logging
import time
from typing import Callable

from errors import InvalidInput
from kvs import Store
from models import Invite, Notification, Reject, encode_notification, inbox_key, system_sender

log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _required_string(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} is required")
    return value


class Action(str, enum.Enum):
    DENY = "DENY"
    JOIN = "JOIN"

    @classmethod
    def parse(cls, raw: object) -> "Action":
        if isinstance(raw, Action):
            return raw
        if isinstance(raw, str):
            try:
                return cls(raw.strip().upper())
            except ValueError:
                pass
        raise InvalidInput(f"action must be one of: {[a.value for a in cls]}")


class InviteProtocolHandler:
    """Writes notifications and keeps each touched mailbox's expiry sliding."""

    def __init__(
        self,
        store: Store,
        mailbox_ttl_seconds: int = 600,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._mailbox_ttl_seconds = mailbox_ttl_seconds
        self._clock = clock

    def _deliver(self, recipient_tag: str, sender_key: str, notification: Notification) -> None:
        key = inbox_key(recipient_tag)
        self._store.hash_set(key, sender_key, encode_notification(notification))
        self._store.expire(key, self._mailbox_ttl_seconds)

    def invite(self, target_tag: object, sender_tag: object, ip: object, world_name: object) -> None:
        """Leave an invite from ``sender_tag`` in ``target_tag``'s mailbox.

        Neither tag has to be registered. A newer invite from the same sender
        replaces the older one.
        """
        target = _required_string(target_tag, "targetTag")
        sender = _required_string(sender_tag, "senderTag")
        invite = Invite(
            ip=_required_string(ip, "ip"),
            world_name=_required_string(world_name, "worldName"),
            timestamp=self._clock(),
        )
        self._deliver(target, sender, invite)
        log.info("invite %s -> %s", sender, target)

    def respond(self, sender_tag: object, target_tag: object, action: object) -> None:
        """Answer an invite.

        ``sender_tag`` receives the outcome and ``target_tag`` is the tag
        answering. A denial lands under ``SYSTEM:<target_tag>`` so it does not
        overwrite a pending invite between the same pair.
        """
        parsed = Action.parse(action)
        # JOIN needs nothing from the relay: the joining client pulls the
        # world through the git proxy.
        if parsed is Action.JOIN:
            log.info("join %s <- %s", sender_tag, target_tag)
            return
        recipient = _required_string(sender_tag, "senderTag")
        responder = _required_string(target_tag, "targetTag")
        self._deliver(recipient, system_sender(responder), Reject(timestamp=self._clock()))
        log.info("deny %s <- %s", recipient, responder)
