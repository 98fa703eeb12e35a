"""Error taxonomy shared by the relay components and the HTTP layer."""

from __future__ import annotations


class InvalidInput(ValueError):
    """Malformed or oversized request input."""


class Unauthorized(PermissionError):
    """Tag/secret pair did not authenticate."""


class Forbidden(PermissionError):
    """Path is outside the proxied namespace."""


class StorageFailure(RuntimeError):
    """A call to the backing store failed."""


class UpstreamUnavailable(RuntimeError):
    """The git upstream could not be reached."""
