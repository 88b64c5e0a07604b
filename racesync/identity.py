"""
Identity provider backed by the team roster.

A member is identified by their display name. Registration adds the name
to the roster through the controller; sign-in only checks that the name is
on it. Credentials and session lifetime are not handled here.
"""

from __future__ import annotations

from racesync.config import FORBIDDEN_NAME_CHARS, MAX_NAME_LENGTH
from racesync.errors import DuplicateNameError, InvalidNameError, NotFoundError
from racesync.sync import SyncController


def sanitize_username(username: str | None) -> str:
    """Trim whitespace and cut to the maximum name length."""
    if not username:
        return ""
    return username.strip()[:MAX_NAME_LENGTH].strip()


class RosterIdentityProvider:
    def __init__(self, controller: SyncController) -> None:
        self._controller = controller

    @property
    def current_member(self) -> str | None:
        return self._controller.state.current_member

    def register(self, username: str) -> str:
        """
        Add a new member and sign them in.

        Raises InvalidNameError for an empty name or one containing a
        character the remote store cannot use as a key, and
        DuplicateNameError if the name is taken.
        """
        name = sanitize_username(username)
        if not name:
            raise InvalidNameError("Please enter a valid username")
        if any(ch in FORBIDDEN_NAME_CHARS for ch in name):
            raise InvalidNameError(f"Username cannot contain any of: {' '.join(FORBIDDEN_NAME_CHARS)}")
        if name in self._controller.state.roster:
            raise DuplicateNameError("Username already exists. Please choose a different username or sign in.")
        self._controller.add_member(name)
        self._controller.state.current_member = name
        return name

    def sign_in(self, username: str) -> str:
        name = sanitize_username(username)
        if not name or name not in self._controller.state.roster:
            raise NotFoundError(f"No member named {username!r}")
        self._controller.state.current_member = name
        return name

    def sign_out(self) -> None:
        self._controller.state.current_member = None
