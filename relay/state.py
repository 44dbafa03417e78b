"""
In-memory state for the single room: connected sessions and the last
known playback state
"""
from typing import Dict, Iterator, Optional


class SessionRegistry:
    """Active connections, each tagged with an authenticated flag"""

    def __init__(self):
        # connection -> authenticated
        self._connections: Dict[object, bool] = {}

    def add(self, connection) -> None:
        self._connections[connection] = False

    def remove(self, connection) -> bool:
        """Forget a connection, returning whether it had authenticated"""
        return self._connections.pop(connection, False)

    def mark_authenticated(self, connection) -> None:
        if connection in self._connections:
            self._connections[connection] = True

    def is_authenticated(self, connection) -> bool:
        return self._connections.get(connection, False)

    def count(self) -> int:
        """Number of authenticated connections"""
        return sum(1 for authed in self._connections.values() if authed)

    def authenticated(self, excluding=None) -> Iterator:
        """Yield authenticated, open connections except `excluding`

        Works on a snapshot, so connections may be removed while the
        caller is iterating; removed or closed ones are skipped.
        """
        for connection in list(self._connections):
            if connection is excluding:
                continue
            if not self._connections.get(connection, False):
                continue
            if connection.closed:
                continue
            yield connection

    def __contains__(self, connection) -> bool:
        return connection in self._connections

    def __len__(self) -> int:
        return len(self._connections)


class RoomState:
    """Last recorded playback state, overwritten on every state-update

    Holds the wire object exactly as the sender wrote it, so late joiners
    get the same payload the other participants saw.
    """

    def __init__(self):
        self._state: Optional[dict] = None

    @property
    def state(self) -> Optional[dict]:
        return self._state

    def update(self, state: dict) -> None:
        self._state = state
