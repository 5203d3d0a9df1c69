"""Room roster, as announced by USER_JOINED / USER_LEFT."""

import logging

logger = logging.getLogger(__name__)


class Roster:
    """The users currently in the room, minus ourselves for `peers()`."""

    def __init__(self) -> None:
        self._users: list[str] = []
        self.local_user: str = ""

    def update(self, users: list[str], joined: str = "", left: str = "") -> None:
        """Replace the user list with the server's latest snapshot."""
        self._users = sorted(set(users))
        if joined:
            logger.info(f"{joined} joined ({len(self._users)} online)")
        if left:
            logger.info(f"{left} left ({len(self._users)} online)")

    def users(self) -> list[str]:
        return list(self._users)

    def peers(self) -> list[str]:
        return [u for u in self._users if u != self.local_user]
