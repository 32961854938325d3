"""Credential lookups used for TURN long-term authentication."""
from __future__ import annotations

from collections.abc import Mapping


class StaticCredentialStore:
    """Serve long-term credentials from the ``auth.users`` configuration section.

    Lookups are keyed by realm first; the relay engine calls :meth:`verify` with
    the user name and realm taken from an incoming request.
    """

    def __init__(self, users: Mapping[str, Mapping[str, str]]) -> None:
        """Index *users* by lower-cased realm."""
        self._users = {realm.lower(): dict(entries) for realm, entries in users.items()}

    def verify(self, user: str, realm: str) -> str | None:
        """Return the stored password for *user* in *realm*, or ``None``."""
        return self._users.get(realm.lower(), {}).get(user)


__all__ = ["StaticCredentialStore"]
