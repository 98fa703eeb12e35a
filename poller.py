"""Authenticated, drain-on-read mailbox polling."""

from __future__ import annotations

import logging
import secrets

from errors import Unauthorized
from kvs import Store
from models import decode_notification, inbox_key, notification_entry, secret_key

log = logging.getLogger(__name__)


class NotificationPoller:
    def __init__(self, store: Store) -> None:
        self._store = store

    def _authenticate(self, tag: object, secret: object) -> str:
        if not isinstance(tag, str) or not tag or not isinstance(secret, str):
            raise Unauthorized("Unauthorized")
        stored = self._store.get(secret_key(tag))
        if stored is None or not secrets.compare_digest(stored.encode(), secret.encode()):
            raise Unauthorized("Unauthorized")
        return tag

    def notifications(self, tag: object, secret: object) -> list[dict[str, object]]:
        """Return and consume every pending notification for ``tag``.

        The mailbox is never touched unless the secret matches. Entries come
        back at most once: the drain removes them before they are returned,
        so a client that fails after this call has lost them.
        """
        owner = self._authenticate(tag, secret)
        raw_entries = self._store.hash_drain(inbox_key(owner))
        entries: list[dict[str, object]] = []
        for sender_key, raw in raw_entries.items():
            try:
                notification = decode_notification(raw)
            except ValueError:
                log.warning("dropping undecodable notification for %s from %s", owner, sender_key)
                continue
            entries.append(notification_entry(sender_key, notification))
        log.info("poll %s: %d notification(s)", owner, len(entries))
        return entries
