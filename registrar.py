"""Issues unique ``name#n`` tags and their bearer secrets."""

from __future__ import annotations

import logging
import secrets

from errors import InvalidInput
from kvs import Store
from models import Identity, counter_key, make_tag, secret_key

log = logging.getLogger(__name__)

SECRET_BYTES = 32


def _utf16_length(text: str) -> int:
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


def _validate_username(username: object, max_length: int) -> str:
    # Length is in UTF-16 code units, as the game clients count it.
    if not isinstance(username, str) or not username or _utf16_length(username) > max_length:
        raise InvalidInput("Invalid username")
    return username


class IdentityRegistrar:
    def __init__(self, store: Store, username_max_length: int = 16) -> None:
        self._store = store
        self._username_max_length = username_max_length

    def register(self, username: object) -> Identity:
        """Allocate the next tag for ``username`` and bind a fresh secret to it.

        The counter increment is the only uniqueness mechanism; two
        concurrent registrations for one name get distinct numbers because
        the store increments atomically. A failure after the increment
        leaves a skipped number behind.
        """
        name = _validate_username(username, self._username_max_length)
        number = self._store.increment(counter_key(name))
        tag = make_tag(name, number)
        secret = secrets.token_urlsafe(SECRET_BYTES)
        self._store.set(secret_key(tag), secret)
        log.info("registered %s", tag)
        return Identity(tag=tag, secret=secret)
